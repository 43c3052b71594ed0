from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Literal, Sequence

from tripchat.services.images import InlineImage

from .events import StreamEvent


@dataclass(frozen=True)
class ChatTurn:
    """One prior turn used to seed a fresh chat handle."""

    role: Literal["user", "model"]
    text: str


class ChatHandle(ABC):
    """A stateful conversation with the model backend.

    History accumulates across ``send_message_stream`` calls on the same handle.
    """

    @abstractmethod
    async def send_message_stream(
        self, text: str, image: InlineImage | None = None
    ) -> AsyncIterator[StreamEvent]:
        """Open a streamed reply.

        Awaiting this opens the request; the returned iterator yields decoded
        events in arrival order. Failures while opening raise here, failures
        mid-stream raise from the iterator.
        """


class LLMProvider(ABC):
    """Abstract interface for a language-model provider."""

    name: str = "abstract"

    @abstractmethod
    def open_chat(
        self,
        *,
        system_instruction: str,
        tools: Sequence[dict[str, Any]],
        temperature: float,
        history: Sequence[ChatTurn] = (),
    ) -> ChatHandle:
        """Create a new chat handle bound to the given configuration."""
