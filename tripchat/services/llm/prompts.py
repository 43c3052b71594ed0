"""System instruction and tool declaration shared by every provider."""
from __future__ import annotations

import copy
from typing import Any

ITINERARY_TOOL_NAME = "propose_itinerary"

SYSTEM_INSTRUCTION = """
You are an elite "Agentic Travel Planner". Your goal is to design bespoke, highly detailed travel itineraries.

**CORE DIRECTIVE:**
You MUST use the provided tool `propose_itinerary` to present the final plan. Do not write the itinerary in plain text.

**WORKFLOW:**
1. **Analyze Request:** Identify destination, duration, budget, and "Vibe".
2. **Analyze Image (if present):** Extract the aesthetic (e.g. "Minimalist Nordic", "Chaotic Cyberpunk", "Rustic Italian") and apply this mood to the activity choices.
3. **Construct Itinerary:** Call the `propose_itinerary` function with specific, real-world locations and activities.
4. **Fallback:** If the user just says "Hello", reply conversationally in text. Only call the function when planning a trip.

**TONE:**
Sophisticated, enthusiastic, and highly organized.
""".strip()

# JSON-schema flavoured parameters; Gemini wants upper-case type names, see
# ``to_gemini_schema``.
ITINERARY_PARAMETERS: dict[str, Any] = {
    "type": "object",
    "properties": {
        "trip_title": {"type": "string", "description": "A catchy name for the trip"},
        "destination": {"type": "string"},
        "duration": {"type": "string"},
        "budget_estimate": {"type": "string"},
        "vibe": {"type": "string", "description": "The detected mood/aesthetic of the trip"},
        "summary": {"type": "string", "description": "A simplified 2-sentence overview of the experience"},
        "days": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "day_number": {"type": "integer"},
                    "theme": {"type": "string"},
                    "activities": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "time_of_day": {
                                    "type": "string",
                                    "enum": ["Morning", "Afternoon", "Evening"],
                                },
                                "title": {"type": "string"},
                                "description": {"type": "string"},
                                "location": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
    },
    "required": ["trip_title", "destination", "days", "summary", "vibe"],
}

ITINERARY_TOOL: dict[str, Any] = {
    "name": ITINERARY_TOOL_NAME,
    "description": "Generates a structured travel itinerary based on user preferences.",
    "parameters": ITINERARY_PARAMETERS,
}


def to_gemini_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of *schema* with every ``type`` value upper-cased."""

    out = copy.deepcopy(schema)

    def _walk(node: Any) -> None:
        if isinstance(node, dict):
            if isinstance(node.get("type"), str):
                node["type"] = node["type"].upper()
            for key, value in node.items():
                # property names may legitimately be called "type"
                if key == "properties":
                    for prop in value.values():
                        _walk(prop)
                elif key != "type":
                    _walk(value)
        elif isinstance(node, list):
            for item in node:
                _walk(item)

    _walk(out)
    return out
