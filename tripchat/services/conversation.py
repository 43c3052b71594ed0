"""In-memory state of the active conversation.

Messages are immutable; every change swaps the stored instance for a copy,
looked up by ``id``. Listeners see each mutation synchronously, which is how
partial text reaches the SSE stream and the terminal client while a reply is
still streaming.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, List, Literal, Optional

from tripchat.models import Message

logger = logging.getLogger(__name__)

StoreEvent = Literal["append", "update", "remove", "replace"]
Listener = Callable[[StoreEvent, Optional[Message]], None]


class ConversationStore:
    """Ordered list of messages for one conversation."""

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._messages: List[Message] = list(messages)
        self._listeners: List[Listener] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def snapshot(self) -> list[Message]:
        return list(self._messages)

    def index_of(self, message_id: str) -> int:
        for index, msg in enumerate(self._messages):
            if msg.id == message_id:
                return index
        return -1

    def get(self, message_id: str) -> Message | None:
        index = self.index_of(message_id)
        return self._messages[index] if index >= 0 else None

    def previous(self, message_id: str) -> Message | None:
        """Return the message directly before *message_id*, if any."""

        index = self.index_of(message_id)
        if index <= 0:
            return None
        return self._messages[index - 1]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        self._notify("append", message)
        return message

    def update(self, message_id: str, **changes: Any) -> Message | None:
        """Replace the message with a copy carrying *changes*.

        Unknown ids are ignored; the caller may have switched sessions while a
        reply was still streaming.
        """

        index = self.index_of(message_id)
        if index < 0:
            logger.debug("Update for unknown message id=%s ignored", message_id)
            return None
        updated = self._messages[index].model_copy(update=changes)
        self._messages[index] = updated
        self._notify("update", updated)
        return updated

    def remove(self, message_id: str) -> Message | None:
        index = self.index_of(message_id)
        if index < 0:
            return None
        removed = self._messages.pop(index)
        self._notify("remove", removed)
        return removed

    def replace(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)
        self._notify("replace", None)

    def clear(self) -> None:
        self.replace(())

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unsubscribes it."""

        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, event: StoreEvent, message: Message | None) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, message)
            except Exception:
                logger.exception("Conversation listener failed on %s", event)
