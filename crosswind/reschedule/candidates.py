"""
Reschedule candidates.

generate_candidate_slots() → open slots over the next N days (preferred days,
                             preferred time ranges, no aircraft clash) with the
                             corridor forecast for each day attached
rule_based_suggestions()   → greedy pick of three slots, used whenever the LLM
                             is unavailable or returns nothing usable

Ranking tiers for the rule-based pick:
  1. forecast within the student's minimums
  2. forecast better than current conditions (visibility up AND wind down)
  3. anything else, in date order
"""
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Optional

from pydantic import BaseModel, field_validator
from sqlalchemy.orm import Session

from crosswind.dispatch.engine import is_forecast_safe
from crosswind.models import Booking, ACTIVE_STATUSES
from crosswind.scheduling.availability import (
    utcnow, parse_time, time_in_any_window, day_of_week,
)
from crosswind.weather.fetcher import WeatherObservation, get_forecast, get_weather

logger = logging.getLogger(__name__)

SLOT_TIMES = ["09:00", "11:00", "14:00", "16:00"]
MAX_SLOTS_PER_DAY = 3
AIRCRAFT_BUFFER_HOURS = 2
SUGGESTION_COUNT = 3

DEFAULT_DAYS = [1, 2, 3, 4, 5]      # Mon–Fri, 0 = Sunday
DEFAULT_RANGES = [{"start": "08:00", "end": "12:00"}, {"start": "14:00", "end": "18:00"}]


# ── Constraints ───────────────────────────────────────────────────────────────

class TimeRange(BaseModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def valid_time_format(cls, v):
        parse_time(v)
        h, m = v.split(":")
        if len(m) != 2:
            raise ValueError(f"Bad time: {v}")
        return f"{int(h):02d}:{m}"


class RescheduleConstraints(BaseModel):
    training_level: Optional[str] = None
    preferred_days_of_week: list[int] = DEFAULT_DAYS
    preferred_time_ranges: list[TimeRange] = [TimeRange(**r) for r in DEFAULT_RANGES]
    blackout_dates: list[date] = []
    max_days_in_future: int = 7
    available_aircraft_ids: list[int] = []
    available_instructor_ids: list[int] = []

    @field_validator("preferred_days_of_week")
    @classmethod
    def valid_days(cls, v):
        for d in v:
            if not 0 <= d <= 6:
                raise ValueError(f"Day of week must be 0-6 (0 = Sunday), got {d}")
        return v

    @field_validator("max_days_in_future")
    @classmethod
    def valid_horizon(cls, v):
        if not 1 <= v <= 30:
            raise ValueError("max_days_in_future must be between 1 and 30")
        return v

    @field_validator("available_aircraft_ids", "available_instructor_ids")
    @classmethod
    def positive_ids(cls, v):
        if any(i <= 0 for i in v):
            raise ValueError("ids must be positive")
        return v

    def ranges(self) -> list[dict]:
        return [r.model_dump() for r in self.preferred_time_ranges]


# ── Value types ───────────────────────────────────────────────────────────────

@dataclass
class CandidateSlot:
    date: date
    time: str                                  # "HH:MM"
    aircraft_id: int
    instructor_id: int
    forecast: Optional[WeatherObservation] = None

    @property
    def start(self) -> datetime:
        return combine_date_and_time(self.date, self.time)

    def forecast_summary(self) -> str:
        if self.forecast is None:
            return "Unknown forecast"
        return self.forecast.summary()

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "time": self.time,
            "aircraft_id": self.aircraft_id,
            "instructor_id": self.instructor_id,
            "forecast": self.forecast.to_dict() if self.forecast else None,
        }


@dataclass
class Suggestion:
    proposed_date: date
    proposed_time: str
    confidence: float
    reason: str
    weather_summary: str
    advantages: list[str] = field(default_factory=list)
    considerations: list[str] = field(default_factory=list)
    success_probability: float = 0.8
    source: str = "ai"

    @property
    def proposed_at(self) -> datetime:
        return combine_date_and_time(self.proposed_date, self.proposed_time)

    def to_dict(self) -> dict:
        return {
            "proposed_date": self.proposed_date.isoformat(),
            "proposed_time": self.proposed_time,
            "confidence": self.confidence,
            "reason": self.reason,
            "weather_summary": self.weather_summary,
            "advantages": self.advantages,
            "considerations": self.considerations,
            "success_probability": self.success_probability,
            "source": self.source,
        }


@dataclass
class RescheduleContext:
    booking_id: int
    scheduled_date: datetime
    student_name: str
    instructor_name: str
    aircraft_model: str
    training_level: str
    departure: tuple
    arrival: Optional[tuple]
    violation_reasons: list[str]
    current_conditions: dict            # visibility, wind_speed, wind_gust, temperature, conditions, source
    slots: list[CandidateSlot]
    constraints: RescheduleConstraints
    now: datetime
    rules: list[str] = field(default_factory=list)


# ── Helpers ───────────────────────────────────────────────────────────────────

def combine_date_and_time(d: date, hhmm: str) -> datetime:
    t = parse_time(hhmm)
    return datetime(d.year, d.month, d.day, t.hour, t.minute)


def find_aircraft_conflict(db: Session, aircraft_id: int, when: datetime,
                           exclude_booking_id: Optional[int] = None) -> Optional[Booking]:
    """Active booking on the same aircraft within ±2 h (inclusive), if any."""
    buffer = timedelta(hours=AIRCRAFT_BUFFER_HOURS)
    q = (
        db.query(Booking)
        .filter(Booking.aircraft_id == aircraft_id)
        .filter(Booking.scheduled_date >= when - buffer)
        .filter(Booking.scheduled_date <= when + buffer)
        .filter(Booking.status.in_(ACTIVE_STATUSES))
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)
    return q.first()


def has_aircraft_conflict(db: Session, aircraft_id: int, when: datetime,
                          exclude_booking_id: Optional[int] = None) -> bool:
    return find_aircraft_conflict(db, aircraft_id, when, exclude_booking_id) is not None


def _worse_of(a: WeatherObservation, b: WeatherObservation) -> WeatherObservation:
    """Per-day corridor forecast: the limiting value of both ends."""
    def lo(x, y):
        return min(v for v in (x, y) if v is not None) if (x is not None or y is not None) else None

    def hi(x, y):
        return max(v for v in (x, y) if v is not None) if (x is not None or y is not None) else None

    worse_conditions = a.conditions if (a.visibility or 0) <= (b.visibility or 0) else b.conditions
    return replace(
        a,
        location=f"{a.location} → {b.location}",
        visibility=lo(a.visibility, b.visibility),
        wind_speed=hi(a.wind_speed, b.wind_speed),
        wind_gust=hi(a.wind_gust, b.wind_gust),
        cloud_cover=hi(a.cloud_cover, b.cloud_cover),
        conditions=worse_conditions,
    )


def corridor_forecast(booking: Booking, days: int, scenario: Optional[str] = None) -> list[WeatherObservation]:
    forecast = get_forecast(booking.departure_lat, booking.departure_lon, days, scenario)
    if booking.arrival_lat is None or booking.arrival_lon is None:
        return forecast
    arrival = get_forecast(booking.arrival_lat, booking.arrival_lon, days, scenario)
    return [_worse_of(dep, arr) for dep, arr in zip(forecast, arrival)]


# ── Slot generation ───────────────────────────────────────────────────────────

def generate_candidate_slots(db: Session, booking: Booking,
                             constraints: RescheduleConstraints,
                             forecast: list[WeatherObservation],
                             now: Optional[datetime] = None) -> list[CandidateSlot]:
    """
    forecast[i] is the forecast for day i+1 after `now`. Days outside the
    preferred days or blacked out are skipped; at most 3 slots per day.
    """
    today = (now or utcnow()).date()
    aircraft_ids = constraints.available_aircraft_ids or [booking.aircraft_id]
    instructor_id = (constraints.available_instructor_ids or [booking.instructor_id])[0]
    ranges = constraints.ranges()
    blackout = set(constraints.blackout_dates)

    times = [t for t in SLOT_TIMES if time_in_any_window(t, ranges)][:MAX_SLOTS_PER_DAY]
    slots = []

    for offset in range(1, constraints.max_days_in_future + 1):
        day = today + timedelta(days=offset)
        if day_of_week(day) not in constraints.preferred_days_of_week or day in blackout:
            continue
        day_forecast = forecast[offset - 1] if offset - 1 < len(forecast) else None

        for t in times:
            when = combine_date_and_time(day, t)
            aircraft_id = next(
                (a for a in aircraft_ids
                 if not has_aircraft_conflict(db, a, when, exclude_booking_id=booking.id)),
                None,
            )
            if aircraft_id is None:
                continue
            slots.append(CandidateSlot(day, t, aircraft_id, instructor_id, day_forecast))

    return slots


def current_conditions_for(booking: Booking, scenario: Optional[str] = None) -> tuple[dict, list[str]]:
    """Latest stored report if any, otherwise a live departure fetch."""
    if booking.weather_reports:
        report = booking.weather_reports[0]
        conditions = {
            "visibility": report.visibility or 0,
            "wind_speed": report.wind_kts or 0,
            "wind_gust": report.wind_gust_kts,
            "temperature": report.temperature,
            "conditions": report.condition or "Unknown",
            "source": "recent_report",
        }
        reasons = report.violated_minimums or ["Weather conditions below minimums"]
        return conditions, reasons

    obs = get_weather(booking.departure_lat, booking.departure_lon, scenario)
    conditions = {
        "visibility": obs.visibility or 0,
        "wind_speed": obs.wind_speed or 0,
        "wind_gust": obs.wind_gust,
        "temperature": obs.temperature,
        "conditions": obs.conditions,
        "source": "live_fetch",
    }
    return conditions, ["Weather conditions below minimums"]


def build_reschedule_context(db: Session, booking: Booking,
                             constraints: RescheduleConstraints,
                             now: Optional[datetime] = None,
                             scenario: Optional[str] = None) -> RescheduleContext:
    now = now or utcnow()
    level = constraints.training_level or booking.student.training_level
    forecast = corridor_forecast(booking, constraints.max_days_in_future, scenario)
    conditions, reasons = current_conditions_for(booking, scenario)

    arrival = None
    if booking.arrival_lat is not None and booking.arrival_lon is not None:
        arrival = (booking.arrival_lat, booking.arrival_lon)

    return RescheduleContext(
        booking_id=booking.id,
        scheduled_date=booking.scheduled_date,
        student_name=booking.student.name,
        instructor_name=booking.instructor.name,
        aircraft_model=booking.aircraft.model,
        training_level=level,
        departure=(booking.departure_lat, booking.departure_lon),
        arrival=arrival,
        violation_reasons=list(reasons),
        current_conditions=conditions,
        slots=generate_candidate_slots(db, booking, constraints, forecast, now),
        constraints=constraints,
        now=now,
    )


# ── Rule-based fallback ───────────────────────────────────────────────────────

def _improved(forecast: Optional[WeatherObservation], baseline: dict) -> bool:
    if forecast is None:
        return False
    base_vis = baseline.get("visibility") or 0
    base_wind = baseline.get("wind_speed") or 0
    vis_ok = base_vis <= 0 or (forecast.visibility or 0) > base_vis
    wind_ok = base_wind <= 0 or (forecast.wind_speed or 0) < base_wind
    return vis_ok and wind_ok


TIER_TEXT = {
    "safe": (
        "Rule-based suggestion: forecast within {level} weather minimums",
        ["Forecast meets training level minimums", "Keeps the same aircraft and instructor"],
    ),
    "improved": (
        "Rule-based suggestion: Improved weather conditions expected",
        ["Better weather conditions than current slot", "Keeps the same aircraft and instructor"],
    ),
    "any": (
        "Opportunity to optimise schedule despite current weather.",
        ["Maintains proactive scheduling cadence"],
    ),
}


def rule_based_suggestions(context: RescheduleContext) -> list[Suggestion]:
    """Greedy tiered pick of the first three slots. Confidence 0.65/0.70/0.75."""
    tiers = {"safe": [], "improved": [], "any": []}
    for slot in context.slots:
        if is_forecast_safe(slot.forecast, context.training_level):
            tiers["safe"].append(slot)
        elif _improved(slot.forecast, context.current_conditions):
            tiers["improved"].append(slot)
        else:
            tiers["any"].append(slot)

    ranked = [(name, slot) for name in ("safe", "improved", "any") for slot in tiers[name]]
    suggestions = []

    for i, (tier, slot) in enumerate(ranked[:SUGGESTION_COUNT]):
        reason, advantages = TIER_TEXT[tier]
        considerations = ["AI suggestions temporarily unavailable", "Manual review recommended"]
        if tier != "safe":
            considerations.append("Forecast is not yet within minimums; recheck before flight")
        suggestions.append(Suggestion(
            proposed_date=slot.date,
            proposed_time=slot.time,
            confidence=round(0.65 + i * 0.05, 2),
            reason=reason.format(level=context.training_level),
            weather_summary=slot.forecast_summary(),
            advantages=list(advantages),
            considerations=considerations,
            success_probability=0.75,
            source="rule_based",
        ))

    logger.info("Rule-based fallback produced %d suggestions for booking %s",
                len(suggestions), context.booking_id)
    return suggestions
