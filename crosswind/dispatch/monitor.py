"""
Corridor weather check + upcoming-booking monitor.

check_booking_weather()       → one booking, every corridor point, persists reports
check_all_upcoming_bookings() → next 48 h, reuses fresh reports, notifies new conflicts
run_alerts_job()              → entry point for the scheduler and POST /cron/run
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from crosswind.audit import record_audit
from crosswind.config import config
from crosswind.database import SessionLocal
from crosswind.dispatch.engine import (
    SafetyResult, evaluate_weather_safety, get_weather_assessment, minimums_for,
)
from crosswind.models import (
    Booking, BookingStatus, WeatherReport, ReportLocation, AuditLog,
    CLOSED_STATUSES, ACTIVE_STATUSES,
)
from crosswind.notifications.service import notify_weather_conflict, notify_flight_reminder
from crosswind.scheduling.availability import utcnow, hours_between
from crosswind.weather.fetcher import WeatherObservation, fetch_corridor_weather

logger = logging.getLogger(__name__)

CONFLICT_ACTION = "weather_conflict_detected"
REMINDER_ACTION = "FLIGHT_REMINDER_SENT"


@dataclass
class LocationCheck:
    location: str
    observation: WeatherObservation
    safety: SafetyResult

    @property
    def assessment(self) -> str:
        return get_weather_assessment(self.safety)

    def to_dict(self) -> dict:
        return {
            "location": self.location,
            "weather": self.observation.to_dict(),
            "safety": self.safety.to_dict(),
            "assessment": self.assessment,
            "is_safe": self.safety.is_safe,
        }


@dataclass
class BookingCheckResult:
    booking_id: int
    status: str
    locations: list[LocationCheck]
    reports_created: int
    newly_conflicted: bool = False

    @property
    def has_conflict(self) -> bool:
        return any(not loc.safety.is_safe for loc in self.locations)

    @property
    def violated_minimums(self) -> list[str]:
        return [v for loc in self.locations for v in loc.safety.violated_minimums]

    @property
    def overall_assessment(self) -> str:
        if self.has_conflict:
            return ("Weather conditions are not suitable for flight operations. "
                    "Booking status updated to conflict.")
        return "Weather conditions are suitable for flight operations."

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "status": self.status,
            "locations_checked": len(self.locations),
            "has_conflict": self.has_conflict,
            "results": [loc.to_dict() for loc in self.locations],
            "reports_created": self.reports_created,
            "overall_assessment": self.overall_assessment,
        }


@dataclass
class MonitoringResult:
    total_bookings: int = 0
    bookings_checked: int = 0
    conflicts_detected: int = 0
    notifications_sent: int = 0
    errors: list[dict] = field(default_factory=list)
    execution_time_ms: int = 0
    details: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_bookings": self.total_bookings,
            "bookings_checked": self.bookings_checked,
            "conflicts_detected": self.conflicts_detected,
            "notifications_sent": self.notifications_sent,
            "errors": self.errors,
            "execution_time_ms": self.execution_time_ms,
            "details": self.details,
        }


# ── Single booking ────────────────────────────────────────────────────────────

def check_booking_weather(db: Session, booking: Booking,
                          scenario: Optional[str] = None) -> BookingCheckResult:
    """
    Fetch + evaluate weather at every corridor point, persist one report per
    point. Any unsafe point (or missing weather) flips the booking to conflict.
    Raises UnknownTrainingLevel when the student's level has no minimums.
    """
    level = booking.student.training_level
    checks = []

    for name, observation in fetch_corridor_weather(booking, scenario).items():
        safety = evaluate_weather_safety(observation, level)
        checks.append(LocationCheck(name, observation, safety))
        db.add(WeatherReport(
            booking_id=booking.id,
            location=ReportLocation(name),
            wind_kts=observation.wind_speed,
            wind_gust_kts=observation.wind_gust,
            visibility=observation.visibility,
            ceiling_ft=observation.ceiling_ft if observation.is_available else None,
            condition=observation.conditions,
            temperature=observation.temperature,
            is_safe=safety.is_safe,
            violated_minimums=safety.violated_minimums,
            confidence=observation.confidence,
        ))

    result = BookingCheckResult(
        booking_id=booking.id,
        status=booking.status.value,
        locations=checks,
        reports_created=len(checks),
    )

    if result.has_conflict and booking.status != BookingStatus.CONFLICT \
            and booking.status not in CLOSED_STATUSES:
        booking.status = BookingStatus.CONFLICT
        record_audit(
            db, CONFLICT_ACTION, booking_id=booking.id,
            details="Weather conflict detected. Violated minimums: "
                    + "; ".join(result.violated_minimums),
        )
        result.newly_conflicted = True
        result.status = booking.status.value

    db.commit()
    return result


# ── Upcoming bookings ─────────────────────────────────────────────────────────

def _corridor_points(booking: Booking) -> list[ReportLocation]:
    if booking.has_arrival:
        return [ReportLocation.DEPARTURE, ReportLocation.ARRIVAL]
    return [ReportLocation.DEPARTURE]


def _recent_corridor_reports(booking: Booking, now: datetime) -> Optional[list[WeatherReport]]:
    """Newest report per corridor point, or None unless every point has a fresh one."""
    cutoff = now - timedelta(minutes=config.monitor.recent_report_minutes)
    latest = {}
    for report in booking.weather_reports:           # newest first
        latest.setdefault(report.location, report)
    reports = []
    for point in _corridor_points(booking):
        report = latest.get(point)
        if report is None or report.created_at is None or report.created_at < cutoff:
            return None
        reports.append(report)
    return reports


def upcoming_bookings(db: Session, now: datetime, hours: int) -> list[Booking]:
    return (
        db.query(Booking)
        .filter(Booking.scheduled_date >= now)
        .filter(Booking.scheduled_date <= now + timedelta(hours=hours))
        .filter(Booking.status.notin_(CLOSED_STATUSES))
        .order_by(Booking.scheduled_date)
        .all()
    )


def check_all_upcoming_bookings(db: Session, now: Optional[datetime] = None,
                                scenario: Optional[str] = None,
                                notify: bool = True) -> MonitoringResult:
    """
    Check every non-closed booking in the lookahead window. Per-booking
    failures are collected in result.errors, never raised.
    """
    started = time.monotonic()
    now = now or utcnow()
    result = MonitoringResult()

    bookings = upcoming_bookings(db, now, config.monitor.lookahead_hours)
    result.total_bookings = len(bookings)
    logger.info("Monitoring %d upcoming bookings", len(bookings))

    for i, booking in enumerate(bookings):
        try:
            points = [p.value for p in _corridor_points(booking)]
            recent = _recent_corridor_reports(booking, now)
            if recent is not None:
                logger.debug("Booking %s has fresh corridor reports, skipping fetch", booking.id)
                safe = all(r.is_safe for r in recent)
                result.details.append({
                    "booking_id": booking.id,
                    "student_name": booking.student.name,
                    "location": "departure",
                    "locations": points,
                    "status": "safe" if safe else "conflict",
                    "violated_minimums": [v for r in recent for v in (r.violated_minimums or [])],
                    "reused_report": True,
                })
                result.bookings_checked += 1
                if not safe:
                    result.conflicts_detected += 1
                continue

            check = check_booking_weather(db, booking, scenario)
            result.bookings_checked += 1
            if check.has_conflict:
                result.conflicts_detected += 1
            result.details.append({
                "booking_id": booking.id,
                "student_name": booking.student.name,
                "location": "departure",
                "locations": points,
                "status": "conflict" if check.has_conflict else "safe",
                "violated_minimums": check.violated_minimums,
                "reused_report": False,
            })

            if check.newly_conflicted and notify:
                sent = notify_weather_conflict(
                    booking, check.violated_minimums,
                    minimums_for(booking.student.training_level),
                )
                if sent.success:
                    result.notifications_sent += 1

            delay = config.monitor.request_delay_seconds
            if delay > 0 and i < len(bookings) - 1:
                time.sleep(delay)

        except Exception as e:
            db.rollback()
            logger.exception("Error checking booking %s", booking.id)
            result.errors.append({"booking_id": booking.id, "error": str(e)})
            result.details.append({
                "booking_id": booking.id,
                "location": "departure",
                "status": "error",
            })

    result.execution_time_ms = int((time.monotonic() - started) * 1000)
    logger.info(
        "Monitoring done: checked=%d conflicts=%d errors=%d in %dms",
        result.bookings_checked, result.conflicts_detected,
        len(result.errors), result.execution_time_ms,
    )
    return result


def send_flight_reminders(db: Session, now: Optional[datetime] = None,
                          within_hours: int = 24) -> int:
    """One reminder per safe booking departing within `within_hours`."""
    now = now or utcnow()
    reminded = {
        row.booking_id for row in
        db.query(AuditLog.booking_id).filter(AuditLog.action == REMINDER_ACTION).all()
    }
    sent = 0
    for booking in upcoming_bookings(db, now, within_hours):
        if booking.id in reminded or booking.status not in ACTIVE_STATUSES:
            continue
        latest = booking.weather_reports[0] if booking.weather_reports else None
        summary = None
        if latest is not None:
            summary = f"{latest.condition} - Wind: {latest.wind_kts or 0:.0f} knots, " \
                      f"Visibility: {latest.visibility or 0:g} miles"
        result = notify_flight_reminder(booking, hours_between(now, booking.scheduled_date), summary)
        if result.success:
            record_audit(db, REMINDER_ACTION, booking_id=booking.id,
                         details=f"Reminder sent to {booking.student.email}")
            sent += 1
    db.commit()
    return sent


# ── Stats ─────────────────────────────────────────────────────────────────────

def get_monitoring_stats(db: Session, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    horizon = now + timedelta(hours=config.monitor.lookahead_hours)
    in_window = (Booking.scheduled_date >= now, Booking.scheduled_date <= horizon)

    return {
        "total_bookings": db.query(Booking).count(),
        "upcoming_bookings": db.query(Booking).filter(*in_window)
            .filter(Booking.status.notin_(CLOSED_STATUSES)).count(),
        "conflicts_in_last_24h": db.query(WeatherReport)
            .filter(WeatherReport.is_safe.is_(False))
            .filter(WeatherReport.created_at >= now - timedelta(hours=24)).count(),
        "conflicts_in_next_48h": db.query(Booking).filter(*in_window)
            .filter(Booking.status == BookingStatus.CONFLICT).count(),
    }


# ── Job entry point ───────────────────────────────────────────────────────────

def run_alerts_job(db: Optional[Session] = None) -> dict:
    """Monitor + reminders. Opens its own session when none is given."""
    own_session = db is None
    db = db or SessionLocal()
    try:
        logger.info("Alerts job started")
        monitoring = check_all_upcoming_bookings(db)
        reminders = send_flight_reminders(db)
        logger.info("Alerts job completed: %d reminders sent", reminders)
        return {"monitoring": monitoring.to_dict(), "reminders_sent": reminders}
    finally:
        if own_session:
            db.close()
