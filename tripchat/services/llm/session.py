from __future__ import annotations

import logging
from typing import AsyncIterator, Sequence

from tripchat.config import get_settings
from tripchat.services.images import prepare_image

from .base import ChatHandle, ChatTurn, LLMProvider
from .events import StreamEvent
from .prompts import ITINERARY_TOOL, SYSTEM_INSTRUCTION

logger = logging.getLogger(__name__)


class ModelSession:
    """Owns one conversation handle with the model backend.

    The handle is opened lazily on the first ``send`` and reused afterwards, so
    follow-up and regenerate requests see the earlier turns. ``reset`` drops
    it; the conversation lifecycle (login, logout, new chat, session switch)
    decides when.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        system_instruction: str = SYSTEM_INSTRUCTION,
        temperature: float | None = None,
    ) -> None:
        self._provider = provider
        self._system_instruction = system_instruction
        self._temperature = temperature if temperature is not None else get_settings().llm_temperature
        self._handle: ChatHandle | None = None
        self._seed: tuple[ChatTurn, ...] = ()

    @property
    def is_open(self) -> bool:
        return self._handle is not None

    def _chat(self) -> ChatHandle:
        if self._handle is None:
            self._handle = self._provider.open_chat(
                system_instruction=self._system_instruction,
                tools=[ITINERARY_TOOL],
                temperature=self._temperature,
                history=self._seed,
            )
        return self._handle

    async def send(self, message: str, image: str | None = None) -> AsyncIterator[StreamEvent]:
        """Send *message* (and an optional image data URI); return the event stream."""

        inline = prepare_image(image) if image else None
        logger.debug("Sending message chars=%d image=%s", len(message), inline.mime_type if inline else None)
        return await self._chat().send_message_stream(message, inline)

    def reset(self, history: Sequence[ChatTurn] = ()) -> None:
        self._handle = None
        self._seed = tuple(history)
        logger.debug("Model session reset seeded_turns=%d", len(self._seed))
