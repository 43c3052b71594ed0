from __future__ import annotations

from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _objects(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


class Activity(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    time_of_day: str = ""
    title: str = ""
    description: str = ""
    location: str = ""

    @field_validator("time_of_day", "title", "description", "location", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _text(value)


class DayPlan(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    day_number: int = 0
    theme: str = ""
    activities: List[Activity] = Field(default_factory=list)

    @field_validator("day_number", mode="before")
    @classmethod
    def coerce_day_number(cls, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    @field_validator("theme", mode="before")
    @classmethod
    def coerce_theme(cls, value: Any) -> str:
        return _text(value)

    @field_validator("activities", mode="before")
    @classmethod
    def keep_activity_objects(cls, value: Any) -> list[dict[str, Any]]:
        return _objects(value)


class Itinerary(BaseModel):
    """Structured trip proposal delivered through the ``propose_itinerary`` tool.

    The model's arguments are accepted as they come: missing fields default
    to empty, off-schema values are coerced and unknown keys are kept so the
    stored JSON round-trips. Instances are immutable; regenerating a reply
    swaps in a new one. ``days`` is kept in the order the model produced it.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    trip_title: str = ""
    destination: str = ""
    duration: str = ""
    budget_estimate: str = ""
    vibe: str = ""
    summary: str = ""
    days: List[DayPlan] = Field(default_factory=list)

    @field_validator("trip_title", "destination", "duration", "budget_estimate", "vibe", "summary", mode="before")
    @classmethod
    def coerce_text(cls, value: Any) -> str:
        return _text(value)

    @field_validator("days", mode="before")
    @classmethod
    def keep_day_objects(cls, value: Any) -> list[dict[str, Any]]:
        return _objects(value)
