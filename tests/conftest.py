from __future__ import annotations

from typing import Any, AsyncIterator, List, Sequence

import pytest

from tripchat.models import UserProfile
from tripchat.services.chat import ChatService
from tripchat.services.images import InlineImage
from tripchat.services.llm.base import ChatHandle, ChatTurn, LLMProvider
from tripchat.services.llm.events import StreamEvent
from tripchat.services.llm.session import ModelSession
from tripchat.services.local_db import LocalDB

LISBON = {
    "trip_title": "Lisbon Getaway",
    "destination": "Lisbon, Portugal",
    "duration": "3 Days",
    "budget_estimate": "$$",
    "vibe": "Relaxed",
    "summary": "Tiles, trams and pastel de nata.",
    "days": [
        {
            "day_number": 1,
            "theme": "Old Town",
            "activities": [
                {
                    "time_of_day": "Morning",
                    "title": "Tram 28",
                    "description": "Ride through Alfama.",
                    "location": "Alfama",
                },
                {
                    "time_of_day": "Evening",
                    "title": "Fado dinner",
                    "description": "Live music with dinner.",
                    "location": "Bairro Alto",
                },
            ],
        }
    ],
}


class ScriptedChat(ChatHandle):
    """Replays one scripted reply per send.

    Each script entry is a list of events; an ``Exception`` instance inside the
    list is raised mid-stream, and an ``Exception`` in place of the list is
    raised when the stream is opened. An async generator is returned as is.
    """

    def __init__(self, provider: "ScriptedProvider") -> None:
        self._provider = provider

    async def send_message_stream(
        self, text: str, image: InlineImage | None = None
    ) -> AsyncIterator[StreamEvent]:
        self._provider.sent.append((text, image))
        step = self._provider.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if hasattr(step, "__anext__"):
            return step
        return self._events(step)

    @staticmethod
    async def _events(step: List[Any]) -> AsyncIterator[StreamEvent]:
        for event in step:
            if isinstance(event, Exception):
                raise event
            yield event


class ScriptedProvider(LLMProvider):
    name = "scripted"

    def __init__(self, script: List[Any] | None = None) -> None:
        self.script: List[Any] = list(script or [])
        self.sent: List[tuple[str, InlineImage | None]] = []
        self.opened: List[tuple[ChatTurn, ...]] = []

    def open_chat(
        self,
        *,
        system_instruction: str,
        tools: Sequence[dict[str, Any]],
        temperature: float,
        history: Sequence[ChatTurn] = (),
    ) -> ChatHandle:
        self.opened.append(tuple(history))
        return ScriptedChat(self)


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def backend():
    return LocalDB(None)


@pytest.fixture
async def user(backend) -> UserProfile:
    result = await backend.sign_in_as_guest()
    return result.user


@pytest.fixture
def service(user, backend, provider) -> ChatService:
    return ChatService(user, backend, ModelSession(provider, temperature=0.5))
