from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from .itinerary import Itinerary


class Sender(str, Enum):
    USER = "user"
    AI = "ai"


class PendingBody(BaseModel):
    """Reply still streaming; ``text`` is the partial buffer."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["pending"] = "pending"
    text: str = ""


class TextBody(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str = ""


class ItineraryBody(BaseModel):
    """Reply resolved to a ``propose_itinerary`` call.

    ``text`` keeps whatever free text streamed alongside the call.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["itinerary"] = "itinerary"
    itinerary: Itinerary
    text: str = ""


MessageBody = Annotated[Union[PendingBody, TextBody, ItineraryBody], Field(discriminator="kind")]


def new_message_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """Represents a single chat turn, user or AI."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_message_id)
    sender: Sender
    timestamp: datetime = Field(default_factory=utcnow)
    body: MessageBody = Field(default_factory=TextBody)
    image: str | None = None  # data URI, user messages only

    @property
    def text(self) -> str:
        return self.body.text

    @property
    def itinerary(self) -> Itinerary | None:
        if isinstance(self.body, ItineraryBody):
            return self.body.itinerary
        return None

    @property
    def is_streaming(self) -> bool:
        return isinstance(self.body, PendingBody)

    @classmethod
    def user(cls, text: str, image: str | None = None) -> "Message":
        return cls(sender=Sender.USER, body=TextBody(text=text), image=image)

    @classmethod
    def ai_pending(cls) -> "Message":
        return cls(sender=Sender.AI, body=PendingBody())

    @classmethod
    def ai_text(cls, text: str) -> "Message":
        return cls(sender=Sender.AI, body=TextBody(text=text))

    def to_client(self) -> dict[str, Any]:
        """Flat JSON shape consumed by the browser client."""

        return {
            "id": self.id,
            "text": self.text,
            "sender": self.sender.value,
            "timestamp": int(self.timestamp.timestamp() * 1000),
            "isStreaming": self.is_streaming,
            "image": self.image,
            "itinerary": self.itinerary.model_dump(mode="json") if self.itinerary else None,
        }
