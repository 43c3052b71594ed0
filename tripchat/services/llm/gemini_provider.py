from __future__ import annotations

import base64
import logging
from typing import Any, AsyncIterator, Sequence

from google import genai
from google.genai import types

from tripchat.config import get_settings
from tripchat.services.images import InlineImage

from .base import ChatHandle, ChatTurn, LLMProvider
from .events import (
    CandidateUpdate,
    ContentPart,
    EmptyChunk,
    FunctionCallPart,
    StreamEvent,
    TextDelta,
    TextPart,
)
from .prompts import to_gemini_schema

logger = logging.getLogger(__name__)
settings = get_settings()


def decode_chunk(chunk: types.GenerateContentResponse) -> list[StreamEvent]:
    """Translate one streamed Gemini response into stream events.

    A chunk can carry a text delta, a candidate, both or neither; text is
    emitted before the candidate so arrival order is kept.
    """

    candidates = chunk.candidates or []
    if not candidates:
        return [EmptyChunk()]

    raw_parts = []
    content = candidates[0].content
    if content is not None and content.parts:
        raw_parts = content.parts

    parts: list[ContentPart] = []
    text = ""
    for part in raw_parts:
        if part.function_call is not None:
            parts.append(
                FunctionCallPart(
                    name=part.function_call.name or "",
                    args=dict(part.function_call.args or {}),
                )
            )
        elif part.text and not part.thought:
            text += part.text
            parts.append(TextPart(part.text))

    events: list[StreamEvent] = []
    if text:
        events.append(TextDelta(text))
    events.append(CandidateUpdate(tuple(parts)))
    return events


class GeminiChat(ChatHandle):
    def __init__(self, chat: Any) -> None:
        self._chat = chat

    async def send_message_stream(
        self, text: str, image: InlineImage | None = None
    ) -> AsyncIterator[StreamEvent]:
        message: Any = text
        if image is not None:
            message = [
                types.Part.from_text(text=text),
                types.Part.from_bytes(data=base64.b64decode(image.data), mime_type=image.mime_type),
            ]
        stream = await self._chat.send_message_stream(message=message)
        return self._events(stream)

    @staticmethod
    async def _events(stream: AsyncIterator[types.GenerateContentResponse]) -> AsyncIterator[StreamEvent]:
        async for chunk in stream:
            for event in decode_chunk(chunk):
                yield event


class GeminiProvider(LLMProvider):
    name = "gemini"

    def __init__(self) -> None:
        self._client = genai.Client(api_key=settings.gemini_api_key)

    def open_chat(
        self,
        *,
        system_instruction: str,
        tools: Sequence[dict[str, Any]],
        temperature: float,
        history: Sequence[ChatTurn] = (),
    ) -> ChatHandle:
        declarations = [
            types.FunctionDeclaration(
                name=tool["name"],
                description=tool.get("description"),
                parameters=types.Schema.model_validate(to_gemini_schema(tool["parameters"])),
            )
            for tool in tools
        ]
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=temperature,
            max_output_tokens=settings.llm_max_tokens,
            tools=[types.Tool(function_declarations=declarations)] if declarations else None,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
        )
        seeded = [
            types.Content(role=turn.role, parts=[types.Part.from_text(text=turn.text)])
            for turn in history
        ]
        logger.debug("Opening Gemini chat model=%s seeded_turns=%d", settings.gemini_model, len(seeded))
        chat = self._client.aio.chats.create(model=settings.gemini_model, config=config, history=seeded)
        return GeminiChat(chat)
