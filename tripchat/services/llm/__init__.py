from __future__ import annotations

from .base import ChatHandle, ChatTurn, LLMProvider
from .events import (
    CandidateUpdate,
    EmptyChunk,
    FunctionCallPart,
    StreamEvent,
    TextDelta,
    TextPart,
)
from .prompts import ITINERARY_TOOL, ITINERARY_TOOL_NAME, SYSTEM_INSTRUCTION
from .session import ModelSession

__all__ = [
    "CandidateUpdate",
    "ChatHandle",
    "ChatTurn",
    "EmptyChunk",
    "FunctionCallPart",
    "ITINERARY_TOOL",
    "ITINERARY_TOOL_NAME",
    "LLMProvider",
    "ModelSession",
    "StreamEvent",
    "SYSTEM_INSTRUCTION",
    "TextDelta",
    "TextPart",
]
