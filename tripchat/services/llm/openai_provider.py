from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    message_chunk_to_message,
)
from langchain_openai import ChatOpenAI

from tripchat.config import get_settings
from tripchat.services.images import InlineImage

from .base import ChatHandle, ChatTurn, LLMProvider
from .events import (
    CandidateUpdate,
    EmptyChunk,
    FunctionCallPart,
    StreamEvent,
    TextDelta,
)

logger = logging.getLogger(__name__)
settings = get_settings()

TOOL_ACK = "The itinerary was shown to the user."


def _chunk_text(chunk: AIMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    return "".join(
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


def decode_chunk(chunk: AIMessageChunk, merged: AIMessageChunk) -> list[StreamEvent]:
    """Translate one LangChain chunk into stream events.

    *merged* is the running sum of all chunks so far; its parsed ``tool_calls``
    become the candidate snapshot, which grows more complete as argument
    fragments arrive.
    """

    events: list[StreamEvent] = []
    text = _chunk_text(chunk)
    if text:
        events.append(TextDelta(text))
    if chunk.tool_call_chunks:
        parts = tuple(
            FunctionCallPart(name=call["name"], args=dict(call["args"]))
            for call in merged.tool_calls
            if call.get("name")
        )
        events.append(CandidateUpdate(parts))
    return events or [EmptyChunk()]


class OpenAIChat(ChatHandle):
    def __init__(self, llm: Any, system_instruction: str, history: Sequence[ChatTurn] = ()) -> None:
        self._llm = llm
        self._history: list[BaseMessage] = [SystemMessage(content=system_instruction)]
        for turn in history:
            if turn.role == "user":
                self._history.append(HumanMessage(content=turn.text))
            else:
                self._history.append(AIMessage(content=turn.text))

    @property
    def history(self) -> list[BaseMessage]:
        return list(self._history)

    async def send_message_stream(
        self, text: str, image: InlineImage | None = None
    ) -> AsyncIterator[StreamEvent]:
        if image is None:
            human = HumanMessage(content=text)
        else:
            human = HumanMessage(
                content=[
                    {"type": "text", "text": text},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:{image.mime_type};base64,{image.data}"},
                    },
                ]
            )
        stream = self._llm.astream([*self._history, human])
        # Pull the first chunk here so connection errors surface on await.
        try:
            first = await stream.__anext__()
        except StopAsyncIteration:
            first = None
        return self._events(human, first, stream)

    async def _events(
        self,
        human: HumanMessage,
        first: AIMessageChunk | None,
        stream: AsyncIterator[AIMessageChunk],
    ) -> AsyncIterator[StreamEvent]:
        merged: AIMessageChunk | None = None
        if first is not None:
            merged = first
            for event in decode_chunk(first, merged):
                yield event
            async for chunk in stream:
                merged = merged + chunk
                for event in decode_chunk(chunk, merged):
                    yield event
        self._commit(human, merged)

    def _commit(self, human: HumanMessage, merged: AIMessageChunk | None) -> None:
        self._history.append(human)
        if merged is None:
            self._history.append(AIMessage(content=""))
            return
        reply = message_chunk_to_message(merged)
        self._history.append(reply)
        # OpenAI rejects a user turn that follows unanswered tool calls.
        for call in getattr(reply, "tool_calls", []) or []:
            self._history.append(ToolMessage(content=TOOL_ACK, tool_call_id=call["id"]))


class OpenAIProvider(LLMProvider):
    name = "openai"

    def open_chat(
        self,
        *,
        system_instruction: str,
        tools: Sequence[dict[str, Any]],
        temperature: float,
        history: Sequence[ChatTurn] = (),
    ) -> ChatHandle:
        llm = ChatOpenAI(
            model=settings.openai_model,
            api_key=settings.openai_api_key,
            temperature=temperature,
            max_tokens=settings.llm_max_tokens,
        )
        chain = llm.bind_tools(tools=list(tools)) if tools else llm
        logger.debug("Opening OpenAI chat model=%s seeded_turns=%d", settings.openai_model, len(history))
        return OpenAIChat(chain, system_instruction, history)
