"""Plain-text / markdown rendering of messages and itinerary cards.

Used by the terminal client and returned alongside messages by the HTTP API
for clients that do not draw their own card.
"""
from __future__ import annotations

from typing import List

from tripchat.models import Itinerary, Message, Sender

TYPING_INDICATOR = "..."
STREAM_CURSOR = " ▍"
EMPTY_REPLY_FALLBACK = "I couldn't put together a reply this time. Try regenerating it."

_TIME_ICONS = {"Morning": "☀", "Afternoon": "◐", "Evening": "☾"}


def render_itinerary(itinerary: Itinerary) -> str:
    """Render *itinerary* as a markdown card."""

    lines: List[str] = [f"## {itinerary.trip_title or 'Your Trip'}", ""]
    facts = [f"**{itinerary.vibe} Vibes**"] if itinerary.vibe else []
    facts += [f for f in (itinerary.destination, itinerary.duration, itinerary.budget_estimate) if f]
    if facts:
        lines.extend([" · ".join(facts), ""])
    if itinerary.summary:
        lines.extend([f"> {itinerary.summary}", ""])

    for day in itinerary.days:
        heading = f"### Day {day.day_number}"
        if day.theme:
            heading += f": {day.theme}"
        lines.append(heading)
        for act in day.activities:
            icon = _TIME_ICONS.get(act.time_of_day, "-")
            label = f"**{act.time_of_day}**: " if act.time_of_day else ""
            entry = f"- {icon} {label}{act.title}"
            if act.location:
                entry += f" ({act.location})"
            lines.append(entry)
            if act.description:
                lines.append(f"  {act.description}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def render_message(message: Message) -> str:
    if message.sender is Sender.USER:
        return message.text

    parts: List[str] = []
    if message.text:
        text = message.text
        if message.is_streaming:
            text += STREAM_CURSOR
        parts.append(text)
    if message.itinerary is not None:
        parts.append(render_itinerary(message.itinerary))
    if not parts:
        parts.append(TYPING_INDICATOR if message.is_streaming else EMPTY_REPLY_FALLBACK)
    return "\n\n".join(parts)
