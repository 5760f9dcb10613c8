"""
Weather minimums engine.

Takes a weather observation + a student's training level → safety result.
Thresholds mirror data/bucket/weather_minimums.md.

Decision flow:
  weather unavailable          → unsafe, manual review
  visibility/ceiling below min → unsafe (not suitable for VFR)
  wind/crosswind above max     → unsafe (marginal, wind limited)
  all ok                       → safe
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from crosswind.errors import UnknownTrainingLevel
from crosswind.weather.fetcher import WeatherObservation

logger = logging.getLogger(__name__)


# ── Minimums table (mirrors weather_minimums.md) ──────────────────────────────
# level → {visibility_sm, ceiling_ft, wind_kt, crosswind_kt}

WEATHER_MINIMUMS = {
    "student-pilot":    {"visibility_sm": 5, "ceiling_ft": 3000, "wind_kt": 10, "crosswind_kt": 10},
    "private-pilot":    {"visibility_sm": 3, "ceiling_ft": 1000, "wind_kt": 15, "crosswind_kt": 12},
    "instrument-rated": {"visibility_sm": 0, "ceiling_ft": 0,    "wind_kt": 20, "crosswind_kt": 15},
}

LEVEL_ALIASES = {
    "student": "student-pilot",
    "student-pilot": "student-pilot",
    "private": "private-pilot",
    "private-pilot": "private-pilot",
    "instrument": "instrument-rated",
    "instrument-rated": "instrument-rated",
    # Commercial pilots and instructors fly to instrument minimums
    "commercial": "instrument-rated",
    "commercial-pilot": "instrument-rated",
    "instructor": "instrument-rated",
    "atp": "instrument-rated",
    "airline_transport": "instrument-rated",
}

UNAVAILABLE_VIOLATION = "Weather data unavailable"
STRONG_WIND_KT = 15


@dataclass
class SafetyResult:
    is_safe: bool
    violated_minimums: list[str]
    evaluated_minimums: dict        # name → {"required", "actual", "is_safe"}
    training_level: str
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_safe": self.is_safe,
            "violated_minimums": self.violated_minimums,
            "evaluated_minimums": self.evaluated_minimums,
            "training_level": self.training_level,
            "recommendations": self.recommendations,
        }


def normalize_training_level(level: str) -> str:
    """'Private' → 'private-pilot'. Raises UnknownTrainingLevel."""
    key = (level or "").strip().lower()
    if key not in LEVEL_ALIASES:
        raise UnknownTrainingLevel(level)
    return LEVEL_ALIASES[key]


def minimums_for(level: str) -> dict:
    return dict(WEATHER_MINIMUMS[normalize_training_level(level)])


def evaluate_weather_safety(observation: WeatherObservation, training_level: str) -> SafetyResult:
    """
    Compare one observation against the minimums for training_level.
    Missing visibility/wind count as 0; unknown crosswind is not checked.
    """
    training_level = normalize_training_level(training_level)
    minimums = dict(WEATHER_MINIMUMS[training_level])
    violations = []
    recommendations = []

    visibility = float(observation.visibility or 0)
    wind = float(observation.wind_speed or 0)
    ceiling = observation.ceiling_ft
    crosswind = observation.crosswind_kt

    visibility_ok = visibility >= minimums["visibility_sm"]
    if not visibility_ok:
        violations.append(
            f"Visibility: {visibility} miles (required: {minimums['visibility_sm']}+ miles)"
        )
        recommendations.append(
            f"Wait for visibility to improve to {minimums['visibility_sm']}+ miles"
        )

    # Ceiling only matters for levels flying VFR
    ceiling_ok = ceiling >= minimums["ceiling_ft"]
    if not ceiling_ok and minimums["ceiling_ft"] > 0:
        violations.append(
            f"Ceiling: {ceiling} ft (required: {minimums['ceiling_ft']}+ ft)"
        )
        recommendations.append(f"Wait for ceiling to rise to {minimums['ceiling_ft']}+ ft")

    wind_ok = wind <= minimums["wind_kt"]
    if not wind_ok:
        violations.append(f"Wind Speed: {wind:.1f} kts (max: {minimums['wind_kt']} kts)")
        recommendations.append(f"Wait for wind to decrease to {minimums['wind_kt']} kts or less")

    crosswind_ok = crosswind is None or crosswind <= minimums["crosswind_kt"]
    if not crosswind_ok:
        violations.append(f"Crosswind: {crosswind:.1f} kts (max: {minimums['crosswind_kt']} kts)")
        recommendations.append("Consider runway change or wait for crosswind to decrease")

    if observation.confidence == "unknown":
        violations.append(UNAVAILABLE_VIOLATION)
        recommendations.append("Verify conditions manually before dispatch")

    recommendations.extend(_advisories(observation.conditions, wind))

    return SafetyResult(
        is_safe=not violations,
        violated_minimums=violations,
        evaluated_minimums={
            "visibility": {"required": minimums["visibility_sm"], "actual": visibility, "is_safe": visibility_ok},
            "ceiling":    {"required": minimums["ceiling_ft"], "actual": ceiling, "is_safe": ceiling_ok},
            "wind_speed": {"required": minimums["wind_kt"], "actual": wind, "is_safe": wind_ok},
            "crosswind":  {"required": minimums["crosswind_kt"], "actual": crosswind, "is_safe": crosswind_ok},
        },
        training_level=training_level,
        recommendations=recommendations,
    )


def get_weather_assessment(result: SafetyResult) -> str:
    if result.is_safe:
        return "Weather conditions are suitable for flight operations."

    if UNAVAILABLE_VIOLATION in result.violated_minimums:
        return "Weather data is unavailable. Manual review required before flight."

    critical = [v for v in result.violated_minimums
                if v.startswith("Visibility") or v.startswith("Ceiling")]
    if critical:
        return ("Weather conditions are NOT suitable for VFR flight operations "
                "due to visibility or ceiling restrictions.")

    return ("Weather conditions are marginal due to wind limitations. "
            "Use caution or consider alternative timing.")


def get_weather_trend(current: WeatherObservation,
                      previous: Optional[WeatherObservation] = None) -> str:
    """'improving' | 'deteriorating' | 'stable' from visibility + wind deltas."""
    if previous is None:
        return "stable"

    points = 0
    cur_vis, prev_vis = current.visibility or 0, previous.visibility or 0
    cur_wind, prev_wind = current.wind_speed or 0, previous.wind_speed or 0

    if cur_vis > prev_vis:
        points += 1
    elif cur_vis < prev_vis:
        points -= 1

    if cur_wind < prev_wind:
        points += 1
    elif cur_wind > prev_wind:
        points -= 1

    if points > 0:
        return "improving"
    if points < 0:
        return "deteriorating"
    return "stable"


def is_forecast_safe(observation: Optional[WeatherObservation], training_level: str) -> bool:
    """Forecast check used when ranking reschedule slots."""
    if observation is None:
        return False
    try:
        return evaluate_weather_safety(observation, training_level).is_safe
    except UnknownTrainingLevel:
        logger.warning("No minimums for training level %r", training_level)
        return False


# ── Helpers ───────────────────────────────────────────────────────────────────

def _advisories(conditions: Optional[str], wind: float) -> list[str]:
    notes = []
    text = (conditions or "").lower()
    if "rain" in text:
        notes.append("Be cautious of reduced visibility in rain")
    if "snow" in text:
        notes.append("Check runway conditions for snow/ice contamination")
    if "fog" in text:
        notes.append("Fog conditions may change rapidly - monitor closely")
    if wind > STRONG_WIND_KT:
        notes.append("Strong winds may affect aircraft handling")
    return notes
