"""Backend-neutral stream events.

Every provider decodes its native response chunks into these variants as soon
as a chunk arrives, so the accumulator only ever deals with a closed set of
cases instead of probing optional attributes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class FunctionCallPart:
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TextPart:
    text: str


ContentPart = Union[FunctionCallPart, TextPart]


@dataclass(frozen=True)
class TextDelta:
    """Incremental text appended to the reply."""

    text: str


@dataclass(frozen=True)
class CandidateUpdate:
    """Latest snapshot of the response candidate.

    A later update supersedes an earlier one; only the last one seen matters
    once the stream has drained.
    """

    parts: tuple[ContentPart, ...] = ()


@dataclass(frozen=True)
class EmptyChunk:
    """Heartbeat or metadata-only chunk."""


StreamEvent = Union[TextDelta, CandidateUpdate, EmptyChunk]
