"""
Booking CRUD.

create → entities exist (404), no aircraft clash within ±2 h (409), audit
list   → filters + role scoping + pagination, ordered by scheduled date
update → partial; re-checks the aircraft when the slot moves
cancel → soft delete (status cancelled), audit
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, Query

from crosswind.audit import record_audit
from crosswind.errors import NotFoundError, ConflictError, InvalidRequest
from crosswind.models import (
    Aircraft, Booking, BookingStatus, Instructor, Student, User, UserRole, ACTIVE_STATUSES,
)
from crosswind.reschedule.candidates import find_aircraft_conflict
from crosswind.scheduling.availability import utcnow
from crosswind.schemas import BookingCreate, BookingUpdate

logger = logging.getLogger(__name__)

BOOKING_CREATED = "BOOKING_CREATED"
BOOKING_UPDATED = "BOOKING_UPDATED"
BOOKING_CANCELLED = "BOOKING_CANCELLED"

DEFAULT_PAGE_SIZE = 50


def get_booking_or_404(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise NotFoundError("Booking not found")
    return booking


def _require(db: Session, model, entity_id: int, label: str):
    obj = db.get(model, entity_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


def _check_aircraft_free(db: Session, aircraft_id: int, when: datetime,
                         exclude_booking_id: Optional[int] = None):
    clash = find_aircraft_conflict(db, aircraft_id, when, exclude_booking_id)
    if clash is not None:
        raise ConflictError(
            "Aircraft is not available at the requested time",
            details={
                "conflicting_booking_id": clash.id,
                "conflicting_time": clash.scheduled_date.isoformat(),
            },
        )


# ── Scoping ───────────────────────────────────────────────────────────────────

def scope_bookings(query: Query, user: Optional[User]) -> Query:
    """Students see their own bookings, instructors theirs, admins everything."""
    if user is None or user.role == UserRole.ADMIN:
        return query
    if user.role == UserRole.INSTRUCTOR:
        return query.join(Instructor, Booking.instructor_id == Instructor.id) \
                    .filter(Instructor.user_id == user.id)
    return query.join(Student, Booking.student_id == Student.id) \
                .filter(Student.user_id == user.id)


# ── CRUD ──────────────────────────────────────────────────────────────────────

def create_booking(db: Session, data: BookingCreate, performed_by: Optional[str] = None) -> Booking:
    student = _require(db, Student, data.student_id, "Student")
    _require(db, Instructor, data.instructor_id, "Instructor")
    aircraft = _require(db, Aircraft, data.aircraft_id, "Aircraft")
    _check_aircraft_free(db, aircraft.id, data.scheduled_date)

    booking = Booking(**data.model_dump(), status=BookingStatus.SCHEDULED)
    db.add(booking)
    db.flush()

    record_audit(
        db, BOOKING_CREATED, performed_by, booking.id,
        details=f"Booking created for {student.name} on {booking.scheduled_date.isoformat()}",
    )
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s created (aircraft %s at %s)", booking.id, aircraft.tail_number,
                booking.scheduled_date)
    return booking


def list_bookings(
    db: Session,
    user: Optional[User] = None,
    status: Optional[BookingStatus] = None,
    student_id: Optional[int] = None,
    instructor_id: Optional[int] = None,
    aircraft_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    upcoming: bool = False,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    now: Optional[datetime] = None,
) -> tuple[list[Booking], int]:
    """Returns (page of bookings, total matching)."""
    q = scope_bookings(db.query(Booking), user)

    if status is not None:
        q = q.filter(Booking.status == status)
    if student_id is not None:
        q = q.filter(Booking.student_id == student_id)
    if instructor_id is not None:
        q = q.filter(Booking.instructor_id == instructor_id)
    if aircraft_id is not None:
        q = q.filter(Booking.aircraft_id == aircraft_id)
    if start_date is not None:
        q = q.filter(Booking.scheduled_date >= start_date)
    if end_date is not None:
        q = q.filter(Booking.scheduled_date <= end_date)
    if upcoming:
        q = q.filter(Booking.scheduled_date >= (now or utcnow())) \
             .filter(Booking.status.in_(ACTIVE_STATUSES))

    total = q.count()
    bookings = (
        q.order_by(Booking.scheduled_date)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return bookings, total


def update_booking(db: Session, booking_id: int, data: BookingUpdate,
                   performed_by: Optional[str] = None) -> Booking:
    booking = get_booking_or_404(db, booking_id)
    changes = data.model_dump(exclude_unset=True)

    arrival_lat = changes.get("arrival_lat", booking.arrival_lat)
    arrival_lon = changes.get("arrival_lon", booking.arrival_lon)
    if (arrival_lat is None) != (arrival_lon is None):
        raise InvalidRequest(
            "arrival_lat and arrival_lon must be given together",
            details={"arrival_lat": arrival_lat, "arrival_lon": arrival_lon},
        )

    new_date = changes.get("scheduled_date", booking.scheduled_date)
    new_status = changes.get("status", booking.status)
    if "scheduled_date" in changes and new_status in ACTIVE_STATUSES:
        _check_aircraft_free(db, booking.aircraft_id, new_date, exclude_booking_id=booking.id)

    for key, value in changes.items():
        setattr(booking, key, value)

    record_audit(
        db, BOOKING_UPDATED, performed_by, booking.id,
        details="Updated fields: " + ", ".join(sorted(changes)) if changes else "No changes",
    )
    db.commit()
    db.refresh(booking)
    return booking


def cancel_booking(db: Session, booking_id: int, performed_by: Optional[str] = None) -> Booking:
    booking = get_booking_or_404(db, booking_id)
    booking.status = BookingStatus.CANCELLED
    record_audit(db, BOOKING_CANCELLED, performed_by, booking.id,
                 details=f"Booking for {booking.scheduled_date.isoformat()} cancelled")
    db.commit()
    db.refresh(booking)
    logger.info("Booking %s cancelled", booking.id)
    return booking
