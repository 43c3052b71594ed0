"""Turns a streamed model reply into one resolved message.

Per event, in arrival order:

* ``TextDelta``: appended to the running buffer and published to the visible
  message straight away.
* ``CandidateUpdate``: kept as the latest candidate, replacing any earlier one.
* ``EmptyChunk``: ignored.

Once the stream has drained, the latest candidate's parts are scanned for a
``propose_itinerary`` call. The scan does not stop at the first match, so the
last qualifying part wins. The message is then resolved exactly once, either
to plain text or to an itinerary (keeping any text that streamed alongside).
An exception from the stream propagates untouched and the message is left for
the caller to discard.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, AsyncIterable

from tripchat.models import Itinerary, ItineraryBody, PendingBody, TextBody
from tripchat.services.conversation import ConversationStore
from tripchat.services.llm.events import (
    CandidateUpdate,
    EmptyChunk,
    FunctionCallPart,
    StreamEvent,
    TextDelta,
)
from tripchat.services.llm.prompts import ITINERARY_TOOL_NAME

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccumulationResult:
    text: str
    itinerary: Itinerary | None = None

    @property
    def body(self) -> TextBody | ItineraryBody:
        if self.itinerary is not None:
            return ItineraryBody(itinerary=self.itinerary, text=self.text)
        return TextBody(text=self.text)


class StreamAccumulator:
    """Accumulates one in-flight reply into the message ``message_id``.

    One instance per send or regenerate call; it is not reusable.
    """

    def __init__(
        self,
        store: ConversationStore,
        message_id: str,
        *,
        tool_name: str = ITINERARY_TOOL_NAME,
    ) -> None:
        self._store = store
        self._message_id = message_id
        self._tool_name = tool_name
        self.full_text = ""
        self.last_candidate: CandidateUpdate | None = None
        self._result: AccumulationResult | None = None

    @property
    def result(self) -> AccumulationResult | None:
        return self._result

    def feed(self, event: StreamEvent) -> None:
        if self._result is not None:
            raise RuntimeError("Accumulator already resolved")

        if isinstance(event, TextDelta):
            self.full_text += event.text
            self._store.update(self._message_id, body=PendingBody(text=self.full_text))
        elif isinstance(event, CandidateUpdate):
            self.last_candidate = event
        elif isinstance(event, EmptyChunk):
            pass
        else:
            raise TypeError(f"Unexpected stream event: {event!r}")

    def find_function_call(self) -> dict[str, Any] | None:
        """Arguments of the last ``propose_itinerary`` part in the latest candidate."""

        if self.last_candidate is None:
            return None
        found: dict[str, Any] | None = None
        for part in self.last_candidate.parts:
            if isinstance(part, FunctionCallPart) and part.name == self._tool_name:
                found = part.args
        return found

    def resolve(self) -> AccumulationResult:
        """Apply the termination rule and settle the message. Runs once."""

        if self._result is not None:
            return self._result

        itinerary: Itinerary | None = None
        args = self.find_function_call()
        if isinstance(args, dict):
            itinerary = Itinerary.model_validate(args)
        elif args is not None:
            logger.warning("Ignoring %s call with non-object arguments: %r", self._tool_name, args)

        self._result = AccumulationResult(text=self.full_text, itinerary=itinerary)
        self._store.update(self._message_id, body=self._result.body)
        logger.debug(
            "Resolved message id=%s kind=%s chars=%d",
            self._message_id,
            self._result.body.kind,
            len(self.full_text),
        )
        return self._result

    async def consume(self, events: AsyncIterable[StreamEvent]) -> AccumulationResult:
        """Drain *events* into the message, then resolve it."""

        async for event in events:
            self.feed(event)
        return self.resolve()
