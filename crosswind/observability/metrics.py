"""
Dashboard + analytics metrics.

Tracks:
- Today's / next-7-day flights, active conflicts, completion rate
- Period overview with previous-period trends and reschedule success rate
- Weather factors behind unsafe reports
- Per-instructor / per-aircraft completion
- Upcoming alerts and recent activity (role-scoped)
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from crosswind.bookings.service import scope_bookings
from crosswind.models import (
    Aircraft, AircraftStatus, AuditLog, Booking, BookingStatus, Instructor, Student,
    User, UserRole, ACTIVE_STATUSES,
)
from crosswind.reschedule.service import RESCHEDULE_CONFIRMED
from crosswind.scheduling.availability import utcnow, start_of_day

ALERT_HORIZON_DAYS = 7
FACTOR_KEYWORDS = [
    ("Crosswinds", ("wind", "crosswind")),
    ("Low Visibility", ("visibility",)),
    ("Thunderstorms", ("thunderstorm", "storm")),
    ("Icing Conditions", ("icing", "ice")),
    ("Low Ceiling", ("ceiling", "cloud")),
    ("Data Unavailable", ("unavailable",)),
]


def _pct(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0.0


def _trend(current: float, previous: float) -> str:
    change = (current - previous) / previous * 100 if previous else 0.0
    return f"{change:+.1f}%"


# ── Dashboard ─────────────────────────────────────────────────────────────────

def get_dashboard_stats(db: Session, now: Optional[datetime] = None) -> dict:
    today = start_of_day(now or utcnow())
    tomorrow = today + timedelta(days=1)
    week_end = today + timedelta(days=7)

    active = db.query(Booking).filter(Booking.status.in_(ACTIVE_STATUSES))
    completed = db.query(Booking).filter(Booking.status == BookingStatus.COMPLETED).count()
    counted = db.query(Booking).filter(Booking.status != BookingStatus.CONFLICT).count()

    return {
        "today_flights": active.filter(Booking.scheduled_date >= today,
                                       Booking.scheduled_date < tomorrow).count(),
        "weekly_scheduled": active.filter(Booking.scheduled_date >= today,
                                          Booking.scheduled_date <= week_end).count(),
        "active_conflicts": db.query(Booking).filter(Booking.status == BookingStatus.CONFLICT).count(),
        "completion_rate": round(completed / counted * 100) if counted else 0,
        "total_students": db.query(Student).count(),
        "total_instructors": db.query(Instructor).count(),
        "available_aircraft": db.query(Aircraft)
            .filter(Aircraft.status == AircraftStatus.AVAILABLE).count(),
    }


# ── Analytics ─────────────────────────────────────────────────────────────────

def _bookings_created_between(db: Session, start: datetime, end: datetime) -> list[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.created_at >= start, Booking.created_at <= end)
        .all()
    )


def _confirmed_reschedules(db: Session, bookings: list[Booking]) -> dict[int, datetime]:
    """booking id -> time of its first confirmed reschedule."""
    ids = [b.id for b in bookings]
    if not ids:
        return {}
    confirmed = {}
    rows = (
        db.query(AuditLog.booking_id, AuditLog.created_at)
        .filter(AuditLog.action == RESCHEDULE_CONFIRMED, AuditLog.booking_id.in_(ids))
        .order_by(AuditLog.created_at)
        .all()
    )
    for booking_id, created_at in rows:
        confirmed.setdefault(booking_id, created_at)
    return confirmed


def _period_numbers(db: Session, bookings: list[Booking]) -> dict:
    conflicted = [b for b in bookings if any(not r.is_safe for r in b.weather_reports)]
    confirmed = _confirmed_reschedules(db, bookings)

    minutes = []
    for b in bookings:
        at = confirmed.get(b.id)
        if at and b.created_at:
            minutes.append((at - b.created_at).total_seconds() / 60)

    return {
        "total_flights": len(bookings),
        "weather_conflicts": len(conflicted),
        "successful_reschedules": len(confirmed),
        "avg_reschedule_minutes": round(sum(minutes) / len(minutes)) if minutes else 0,
    }


def get_overview(db: Session, start: Optional[datetime] = None, end: Optional[datetime] = None,
                 days: int = 30) -> dict:
    """Current period vs the equally long period before it."""
    end = end or utcnow()
    start = start or end - timedelta(days=days)
    previous_start = start - (end - start)

    current = _period_numbers(db, _bookings_created_between(db, start, end))
    previous = _period_numbers(db, _bookings_created_between(db, previous_start, start))

    return {
        **current,
        "period": {"start": start.isoformat(), "end": end.isoformat()},
        "success_rate": _pct(current["successful_reschedules"], current["weather_conflicts"]),
        "trends": {
            "total_flights_change": _trend(current["total_flights"], previous["total_flights"]),
            "conflicts_change": _trend(current["weather_conflicts"], previous["weather_conflicts"]),
            "reschedule_time_change": _trend(current["avg_reschedule_minutes"],
                                             previous["avg_reschedule_minutes"]),
        },
    }


def categorize_violation(violation: str) -> str:
    text = violation.lower()
    for factor, words in FACTOR_KEYWORDS:
        if any(w in text for w in words):
            return factor
    return "Other"


def get_weather_impact(db: Session, start: Optional[datetime] = None,
                       end: Optional[datetime] = None, days: int = 90) -> dict:
    """Which minimums cause unsafe reports, top 5 by incidents."""
    end = end or utcnow()
    start = start or end - timedelta(days=days)

    counts = Counter()
    unsafe_reports = 0
    for booking in _bookings_created_between(db, start, end):
        for report in booking.weather_reports:
            if report.is_safe or not report.violated_minimums:
                continue
            unsafe_reports += 1
            counts.update(categorize_violation(v) for v in report.violated_minimums)

    return {
        "unsafe_reports": unsafe_reports,
        "weather_factors": [
            {"factor": factor, "incidents": n, "percentage": round(n / unsafe_reports * 100)}
            for factor, n in counts.most_common(5)
        ],
    }


def _completion_rows(db: Session, model, label, start: datetime, end: datetime) -> list[dict]:
    rows = []
    for entity in db.query(model).all():
        bookings = [b for b in entity.bookings if start <= b.scheduled_date <= end]
        completed = sum(1 for b in bookings if b.status == BookingStatus.COMPLETED)
        cancelled = sum(1 for b in bookings if b.status == BookingStatus.CANCELLED)
        rows.append({
            "id": entity.id,
            "name": label(entity),
            "bookings": len(bookings),
            "completed": completed,
            "cancelled": cancelled,
            "completion_rate": _pct(completed, len(bookings)),
        })
    rows.sort(key=lambda r: (-r["bookings"], r["id"]))
    return rows


def get_performance(db: Session, start: Optional[datetime] = None,
                    end: Optional[datetime] = None, days: int = 180) -> dict:
    end = end or utcnow()
    start = start or end - timedelta(days=days)
    return {
        "instructors": _completion_rows(db, Instructor, lambda i: i.name, start, end),
        "aircraft": _completion_rows(db, Aircraft, lambda a: f"{a.tail_number} ({a.model})", start, end),
    }


# ── Alerts + activity ─────────────────────────────────────────────────────────

def _alert(booking: Booking) -> dict:
    latest = booking.weather_reports[0] if booking.weather_reports else None
    pending = [s for s in booking.suggestions if not s.selected][:3]
    return {
        "booking_id": booking.id,
        "status": booking.status.value,
        "scheduled_date": booking.scheduled_date.isoformat(),
        "student": {"id": booking.student.id, "name": booking.student.name,
                    "training_level": booking.student.training_level},
        "instructor": {"id": booking.instructor.id, "name": booking.instructor.name},
        "aircraft": {"id": booking.aircraft.id, "tail_number": booking.aircraft.tail_number,
                     "model": booking.aircraft.model},
        "latest_weather": None if latest is None else {
            "location": latest.location.value,
            "is_safe": latest.is_safe,
            "violated_minimums": latest.violated_minimums or [],
            "condition": latest.condition,
            "created_at": latest.created_at.isoformat() if latest.created_at else None,
        },
        "pending_suggestions": len(pending),
        "severity": "high" if booking.status == BookingStatus.CONFLICT else "info",
    }


def get_alerts(db: Session, user: Optional[User] = None, status: str = "conflict",
               limit: int = 50, offset: int = 0, student_id: Optional[int] = None,
               instructor_id: Optional[int] = None, now: Optional[datetime] = None) -> dict:
    """Bookings in the next 7 days; conflicts only unless status == 'all'."""
    now = now or utcnow()
    q = scope_bookings(db.query(Booking), user) \
        .filter(Booking.scheduled_date >= now,
                Booking.scheduled_date <= now + timedelta(days=ALERT_HORIZON_DAYS))

    if status == "conflict":
        q = q.filter(Booking.status == BookingStatus.CONFLICT)
    if student_id is not None:
        q = q.filter(Booking.student_id == student_id)
    if instructor_id is not None:
        q = q.filter(Booking.instructor_id == instructor_id)

    total = q.count()
    bookings = q.order_by(Booking.scheduled_date).offset(offset).limit(limit).all()
    # conflicts first, then by date
    bookings.sort(key=lambda b: (b.status != BookingStatus.CONFLICT, b.scheduled_date))

    return {
        "alerts": [_alert(b) for b in bookings],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


def get_recent_activity(db: Session, user: Optional[User] = None, limit: int = 20) -> list[AuditLog]:
    q = db.query(AuditLog)
    if user is not None and user.role == UserRole.STUDENT:
        own = [row.id for row in scope_bookings(db.query(Booking.id), user)]
        q = q.filter(AuditLog.booking_id.in_(own))
    return q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()
