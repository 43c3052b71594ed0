"""Conversion between persisted rows and in-memory messages."""
from __future__ import annotations

import json
import logging
from typing import Iterable, List

from tripchat.models import Itinerary, ItineraryBody, Message, Sender, StoredMessage, TextBody
from tripchat.services.llm.base import ChatTurn

logger = logging.getLogger(__name__)

# Field name whose presence marks a legacy row as a serialized itinerary.
ITINERARY_MARKER = '"trip_title"'


def looks_like_itinerary(content: str) -> bool:
    return content.strip().startswith("{") and ITINERARY_MARKER in content


def _parse_itinerary(content: str, *, require_title: bool) -> Itinerary | None:
    try:
        data = json.loads(content)
    except ValueError as exc:
        logger.warning("Stored itinerary could not be parsed, showing it as text: %s", exc)
        return None
    if not isinstance(data, dict) or (require_title and "trip_title" not in data):
        return None
    return Itinerary.model_validate(data)


def decode_stored(row: StoredMessage) -> Message:
    """Rebuild a message from its persisted row.

    Rows tagged ``kind="itinerary"`` are parsed as itineraries. Untagged AI
    rows count as one when they hold a JSON object with a ``trip_title`` key.
    Content that is not a JSON object stays text.
    """

    sender = Sender.USER if row.role == "user" else Sender.AI
    body: TextBody | ItineraryBody = TextBody(text=row.content)

    if sender is Sender.AI and row.kind != "text":
        itinerary: Itinerary | None = None
        if row.kind == "itinerary":
            itinerary = _parse_itinerary(row.content, require_title=False)
        elif looks_like_itinerary(row.content):
            itinerary = _parse_itinerary(row.content, require_title=True)
        if itinerary is not None:
            body = ItineraryBody(itinerary=itinerary, text="")

    return Message(id=row.id, sender=sender, timestamp=row.created_at, body=body)


def decode_history(rows: Iterable[StoredMessage]) -> List[Message]:
    return [decode_stored(row) for row in rows]


def encode_reply(text: str, itinerary: Itinerary | None) -> tuple[str, str]:
    """Return ``(content, kind)`` to persist for a resolved AI reply."""

    if itinerary is not None:
        return itinerary.model_dump_json(), "itinerary"
    return text, "text"


def to_chat_turns(messages: Iterable[Message]) -> List[ChatTurn]:
    """Seed turns for a fresh model session from a loaded conversation."""

    turns: List[ChatTurn] = []
    for msg in messages:
        if msg.is_streaming:
            continue
        if msg.sender is Sender.USER:
            if msg.text:
                turns.append(ChatTurn(role="user", text=msg.text))
            continue
        if msg.itinerary is not None:
            text = f"[Proposed itinerary]\n{json.dumps(msg.itinerary.model_dump(mode='json'))}"
        else:
            text = msg.text
        if text:
            turns.append(ChatTurn(role="model", text=text))
    return turns
