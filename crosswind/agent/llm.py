"""
OpenAI chat-completions client for reschedule suggestions.

The prompt carries the booking, the conflict, the student's minimums, the
relevant rule chunks and every open slot with its forecast, and asks for
exactly three suggestions as a JSON object.
"""
import json
import logging
from datetime import date
from typing import Optional

from openai import OpenAI

from crosswind.config import config
from crosswind.dispatch.engine import WEATHER_MINIMUMS, LEVEL_ALIASES
from crosswind.reschedule.candidates import RescheduleContext, Suggestion, SUGGESTION_COUNT
from crosswind.scheduling.availability import parse_time

logger = logging.getLogger(__name__)

DAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]

SYSTEM_PROMPT = """You are an expert flight scheduling assistant for a Part 61 flight training school. You know:

1. FAA weather minimums for each pilot training level (student, private, instrument, commercial)
2. Meteorological patterns and weather forecasting
3. Flight training operations and scheduling practice
4. Aircraft performance and limitations
5. Student learning progression and continuity

When a weather conflict arises you propose safe, practical and educationally sound reschedule options.
Safety comes first: every suggestion must meet or exceed the weather minimums for the student's level.
Only propose slots from the list you are given. Respond with a JSON object only."""


def _clamp(value, default: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return max(0.0, min(1.0, v))


class RescheduleLLM:
    def __init__(self, client: Optional[OpenAI] = None):
        if client is None:
            if not config.openai.is_configured:
                raise ValueError("OPENAI_API_KEY not set")
            client = OpenAI(api_key=config.openai.api_key)
        self.client = client
        self.model = config.openai.model

    def generate(self, context: RescheduleContext) -> list[Suggestion]:
        """Raises on API errors or unusable output; the workflow falls back."""
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": self.build_prompt(context)},
            ],
            max_tokens=config.openai.max_tokens,
            temperature=config.openai.temperature,
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ValueError("No response content from OpenAI")
        return self.parse_response(content)

    # ── Prompt ────────────────────────────────────────────────────────────────

    def build_prompt(self, context: RescheduleContext) -> str:
        cur = context.current_conditions
        level_key = LEVEL_ALIASES.get(context.training_level.lower(), "student-pilot")
        minimums = WEATHER_MINIMUMS[level_key]
        arrival = f"{context.arrival[0]}, {context.arrival[1]}" if context.arrival else "local flight"

        slots = "\n".join(
            f"{i + 1}. {s.date:%a %Y-%m-%d} at {s.time} (Aircraft ID: {s.aircraft_id}, "
            f"Instructor ID: {s.instructor_id}) forecast: {s.forecast_summary()}"
            for i, s in enumerate(context.slots)
        ) or "No open slots in the horizon."

        rules = "\n".join(f"- {r}" for r in context.rules) or "- (no rule documents ingested)"
        c = context.constraints
        days = ", ".join(DAY_NAMES[d] for d in c.preferred_days_of_week) or "Any"
        times = ", ".join(f"{r.start}-{r.end}" for r in c.preferred_time_ranges) or "Any"
        source = "Live fetch" if cur.get("source") == "live_fetch" else "Recent report"

        return f"""Analyze the following weather conflict and provide {SUGGESTION_COUNT} reschedule suggestions.

ORIGINAL BOOKING:
- Booking ID: {context.booking_id}
- Scheduled: {context.scheduled_date.isoformat()}
- Student: {context.student_name} (Training Level: {context.training_level})
- Instructor: {context.instructor_name}
- Aircraft: {context.aircraft_model}
- Route: {context.departure[0]}, {context.departure[1]} to {arrival}

WEATHER CONFLICT:
- Current issues: {", ".join(context.violation_reasons)}
- Conditions: {cur.get("conditions")}
- Wind: {cur.get("wind_speed")} knots (gusting to {cur.get("wind_gust") or "N/A"} knots)
- Visibility: {cur.get("visibility")} miles
- Temperature: {cur.get("temperature")}°C
- Weather source: {source}

TRAINING LEVEL WEATHER MINIMUMS:
{json.dumps(minimums, indent=2)}

RELEVANT SCHOOL RULES:
{rules}

AVAILABLE TIME SLOTS WITH FORECAST:
{slots}

CONSTRAINTS:
- Max days in future: {c.max_days_in_future}
- Preferred days: {days}
- Preferred times: {times}

Respond with exactly {SUGGESTION_COUNT} suggestions in this JSON format:
{{
  "suggestions": [
    {{
      "proposed_date": "YYYY-MM-DD",
      "proposed_time": "HH:MM",
      "confidence": 0.85,
      "reason": "Why this time works",
      "weather_summary": "Expected weather conditions",
      "advantages": ["advantage 1", "advantage 2"],
      "considerations": ["consideration 1"],
      "estimated_success_probability": 0.9
    }}
  ]
}}

Prioritize slots that are within the student's minimums, have the highest chance of completion,
keep training continuity, and avoid very early or late times."""

    # ── Parsing ───────────────────────────────────────────────────────────────

    @staticmethod
    def parse_response(content: str) -> list[Suggestion]:
        """
        JSON → Suggestions. Malformed JSON or a missing suggestions array
        raises ValueError; individual entries with a bad date/time are dropped.
        """
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON from model: {e}") from e

        raw = parsed.get("suggestions") if isinstance(parsed, dict) else None
        if not isinstance(raw, list):
            raise ValueError("Invalid response format: missing suggestions array")

        suggestions = []
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                continue
            try:
                proposed_date = date.fromisoformat(str(item.get("proposed_date") or item.get("proposedDate")))
                proposed_time = str(item.get("proposed_time") or item.get("proposedTime"))
                t = parse_time(proposed_time)
            except (TypeError, ValueError):
                logger.warning("Dropping suggestion %d with bad date/time: %r", i, item)
                continue

            advantages = item.get("advantages")
            considerations = item.get("considerations")
            suggestions.append(Suggestion(
                proposed_date=proposed_date,
                proposed_time=f"{t.hour:02d}:{t.minute:02d}",
                confidence=_clamp(item.get("confidence"), 0.5),
                reason=item.get("reason") or f"AI-generated option {i + 1}",
                weather_summary=item.get("weather_summary") or item.get("weatherSummary")
                                or "Expected favorable conditions",
                advantages=advantages if isinstance(advantages, list) else [],
                considerations=considerations if isinstance(considerations, list) else [],
                success_probability=_clamp(
                    item.get("estimated_success_probability",
                             item.get("estimatedSuccessProbability")), 0.8),
                source="ai",
            ))
        return suggestions
