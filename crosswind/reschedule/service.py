"""
Reschedule suggestions lifecycle: generate → (preview) → confirm | cancel.

A suggestion is "pending" while selected is False. Confirming one marks it and
every other pending suggestion of the booking as selected, so a booking never
carries stale options after a reschedule.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from crosswind.agent.workflow import run_reschedule_agent
from crosswind.audit import record_audit
from crosswind.bookings.service import get_booking_or_404
from crosswind.errors import ConflictError, NotFoundError
from crosswind.models import Booking, BookingStatus, RescheduleSuggestion, SuggestionSource
from crosswind.notifications.service import notify_reschedule_confirmed
from crosswind.reschedule.candidates import (
    RescheduleConstraints, combine_date_and_time, find_aircraft_conflict,
)

logger = logging.getLogger(__name__)

SUGGESTIONS_GENERATED = "RESCHEDULE_SUGGESTIONS_GENERATED"
AI_RESCHEDULE_REQUESTED = "AI_RESCHEDULE_REQUESTED"
RESCHEDULE_CONFIRMED = "RESCHEDULE_CONFIRMED"
SUGGESTIONS_CANCELLED = "RESCHEDULE_SUGGESTIONS_CANCELLED"
AI_SYSTEM = "AI System"

MAX_EXISTING = 10


@dataclass
class GenerationResult:
    booking_id: int
    suggestions: list[RescheduleSuggestion]
    source: str
    rejected: list[dict] = field(default_factory=list)

    @property
    def average_confidence(self) -> float:
        if not self.suggestions:
            return 0.0
        return sum(s.confidence for s in self.suggestions) / len(self.suggestions)


def _pending(db: Session, booking_id: int):
    return (
        db.query(RescheduleSuggestion)
        .filter(RescheduleSuggestion.booking_id == booking_id)
        .filter(RescheduleSuggestion.selected.is_(False))
    )


def get_existing_suggestions(db: Session, booking_id: int) -> list[RescheduleSuggestion]:
    """Pending suggestions, newest first."""
    return (
        _pending(db, booking_id)
        .order_by(RescheduleSuggestion.created_at.desc(), RescheduleSuggestion.id.desc())
        .limit(MAX_EXISTING)
        .all()
    )


def cancel_suggestions(db: Session, booking_id: int, performed_by: Optional[str] = None) -> int:
    get_booking_or_404(db, booking_id)
    count = _pending(db, booking_id).update({"selected": True}, synchronize_session="fetch")
    record_audit(db, SUGGESTIONS_CANCELLED, performed_by, booking_id,
                 details="Cancelled pending reschedule suggestions")
    db.commit()
    return count


# ── Generate ──────────────────────────────────────────────────────────────────

def generate_suggestions(
    db: Session,
    booking_id: int,
    constraints: Optional[RescheduleConstraints] = None,
    requested_by: Optional[str] = None,
    force_regenerate: bool = False,
    llm: Optional[Any] = None,
    now: Optional[datetime] = None,
    scenario: Optional[str] = None,
) -> GenerationResult:
    """
    Run the reschedule agent and persist what it returns. Pending suggestions
    block a new run (409) unless force_regenerate, which cancels them first.
    Any booking status may be rescheduled, not only conflicts.
    """
    get_booking_or_404(db, booking_id)

    existing = get_existing_suggestions(db, booking_id)
    if existing and not force_regenerate:
        raise ConflictError(
            "Existing reschedule suggestions found for this booking",
            details={
                "existing_count": len(existing),
                "suggestion": "Set force_regenerate to true to generate new suggestions",
            },
        )
    if existing:
        cancel_suggestions(db, booking_id, requested_by)

    outcome = run_reschedule_agent(
        db, booking_id, constraints or RescheduleConstraints(),
        llm=llm, now=now, scenario=scenario,
    )

    rows = []
    for s in outcome["suggestions"]:
        row = RescheduleSuggestion(
            booking_id=booking_id,
            proposed_date=s.proposed_date,
            proposed_time=s.proposed_time,
            weather_summary=s.weather_summary,
            confidence=s.confidence,
            reason=s.reason,
            advantages=s.advantages,
            considerations=s.considerations,
            success_probability=s.success_probability,
            source=SuggestionSource(s.source),
        )
        db.add(row)
        rows.append(row)

    result = GenerationResult(booking_id, rows, outcome["source"], outcome["rejected"])

    record_audit(
        db, SUGGESTIONS_GENERATED, AI_SYSTEM, booking_id,
        details=f"Generated {len(rows)} {result.source} reschedule suggestions "
                f"with average confidence: {result.average_confidence:.2f}",
    )
    record_audit(
        db, AI_RESCHEDULE_REQUESTED, requested_by, booking_id,
        details=f"Requested AI reschedule suggestions. Generated {len(rows)} options "
                f"with average confidence: {result.average_confidence * 100:.1f}%",
    )
    db.commit()
    for row in rows:
        db.refresh(row)

    logger.info("Booking %s: %d %s suggestions (%d rejected)",
                booking_id, len(rows), result.source, len(result.rejected))
    return result


# ── Preview / confirm ─────────────────────────────────────────────────────────

def _pending_suggestion(db: Session, booking_id: int, suggestion_id: int) -> RescheduleSuggestion:
    suggestion = db.get(RescheduleSuggestion, suggestion_id)
    if suggestion is None or suggestion.booking_id != booking_id:
        raise NotFoundError("Reschedule suggestion not found")
    if suggestion.selected:
        raise ConflictError("This suggestion has already been used")
    return suggestion


def time_difference(original: datetime, proposed: datetime) -> dict:
    total = (proposed - original).total_seconds()
    days = math.floor(total / 86400)
    return {
        "days": days,
        "hours": math.floor(math.fmod(total, 86400) / 3600),
        "total_hours": math.floor(total / 3600),
        "is_later": total > 0,
        "is_same_day": days == 0,
    }


def preview_suggestion(db: Session, booking_id: int, suggestion_id: int) -> dict:
    booking = get_booking_or_404(db, booking_id)
    suggestion = _pending_suggestion(db, booking_id, suggestion_id)
    proposed = combine_date_and_time(suggestion.proposed_date, suggestion.proposed_time)
    return {
        "booking": booking,
        "suggestion": suggestion,
        "current_schedule": booking.scheduled_date,
        "proposed_schedule": proposed,
        "time_difference": time_difference(booking.scheduled_date, proposed),
    }


def confirm_suggestion(db: Session, booking_id: int, suggestion_id: int,
                       confirmed_by: Optional[str] = None,
                       notes: Optional[str] = None) -> tuple[Booking, RescheduleSuggestion]:
    """Move the booking to the suggested slot and mark it confirmed."""
    booking = get_booking_or_404(db, booking_id)
    suggestion = _pending_suggestion(db, booking_id, suggestion_id)

    new_date = combine_date_and_time(suggestion.proposed_date, suggestion.proposed_time)
    clash = find_aircraft_conflict(db, booking.aircraft_id, new_date, exclude_booking_id=booking.id)
    if clash is not None:
        raise ConflictError(
            "Aircraft is already booked near the proposed time",
            details={"conflicting_booking_id": clash.id},
        )

    original_date = booking.scheduled_date
    booking.scheduled_date = new_date
    booking.status = BookingStatus.CONFIRMED
    if notes:
        booking.notes = notes

    suggestion.selected = True
    (
        _pending(db, booking_id)
        .filter(RescheduleSuggestion.id != suggestion.id)
        .update({"selected": True}, synchronize_session="fetch")
    )

    record_audit(
        db, RESCHEDULE_CONFIRMED, confirmed_by, booking_id,
        details=f"Rescheduled from {original_date.isoformat()} to "
                f"{suggestion.proposed_date.isoformat()} at {suggestion.proposed_time}. "
                f"Reason: {suggestion.reason}. Weather: {suggestion.weather_summary}",
    )
    db.commit()
    db.refresh(booking)

    try:
        sent = notify_reschedule_confirmed(booking, original_date, suggestion.reason)
        if not sent.success:
            logger.error("Reschedule confirmation email failed for booking %s: %s",
                         booking_id, sent.error)
    except Exception:
        logger.exception("Error sending reschedule confirmation for booking %s", booking_id)

    logger.info("Booking %s rescheduled to %s by %s", booking_id, new_date, confirmed_by)
    return booking, suggestion
