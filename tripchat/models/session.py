from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class ChatSession(BaseModel):
    """Metadata for one conversation, independent of its messages."""

    id: str
    title: str
    created_at: datetime
    user_id: str | None = None


class StoredMessage(BaseModel):
    """A message row as the persistence backend returns it.

    ``kind`` is ``None`` for rows written before the content type was stored.
    """

    id: str
    content: str
    role: Literal["user", "ai"]
    created_at: datetime
    kind: Literal["text", "itinerary"] | None = None
