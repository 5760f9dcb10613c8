"""
Utility functions for time/availability checks.
"""
from datetime import datetime, date, time, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC 'now'. All DateTime columns store naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_time(t: str) -> time:
    """'08:00' → time(8, 0). Raises ValueError on bad input."""
    return datetime.strptime(t, "%H:%M").time()


def time_in_window(t: str, start: str, end: str) -> bool:
    """'09:00' inside '08:00'-'12:00'? Both ends inclusive."""
    return parse_time(start) <= parse_time(t) <= parse_time(end)


def time_in_any_window(t: str, windows: list[dict]) -> bool:
    """windows: [{"start": "08:00", "end": "12:00"}, ...]"""
    return any(time_in_window(t, w["start"], w["end"]) for w in windows)


def day_of_week(d: date) -> int:
    """0 = Sunday … 6 = Saturday (the convention stored in preferred days)."""
    return (d.weekday() + 1) % 7


def get_day_name(d: date) -> str:
    """date → 'Mon', 'Tue', etc."""
    return d.strftime("%a")


def hours_between(a: datetime, b: datetime) -> float:
    """Signed hours from a to b."""
    return (b - a).total_seconds() / 3600


def within_hours(a: datetime, b: datetime, hours: float) -> bool:
    return abs(b - a) < timedelta(hours=hours)


def start_of_day(d: datetime) -> datetime:
    return d.replace(hour=0, minute=0, second=0, microsecond=0)
