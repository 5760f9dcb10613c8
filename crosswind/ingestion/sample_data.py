"""
Sample flights for a newly signed-up student: two conflicts with unsafe
weather reports, one confirmed, one scheduled. Creates a default fleet and
instructor roster when the school has none yet.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from crosswind.audit import record_audit
from crosswind.models import (
    Aircraft, Booking, BookingStatus, Instructor, ReportLocation, Student, WeatherReport,
)
from crosswind.reschedule.candidates import has_aircraft_conflict
from crosswind.scheduling.availability import utcnow, start_of_day

logger = logging.getLogger(__name__)

SAMPLE_DATA_CREATED = "SAMPLE_DATA_CREATED"

DEFAULT_INSTRUCTORS = [
    {"name": "Captain Dave", "email": "dave@flightschool.com"},
    {"name": "Instructor Lisa", "email": "lisa@flightschool.com"},
]
DEFAULT_AIRCRAFT = [
    {"tail_number": "N12345", "model": "Cessna 172"},
    {"tail_number": "N67890", "model": "Piper PA-28"},
    {"tail_number": "N24680", "model": "Beechcraft G36"},
]

SAN_FRANCISCO = (37.7749, -122.4194)

# (days ahead, hour, arrival, status)
SAMPLE_FLIGHTS = [
    (1, 9, (37.6213, -122.3790), BookingStatus.CONFLICT),
    (1, 14, (38.5816, -121.4944), BookingStatus.CONFIRMED),
    (2, 10, (36.7783, -119.4179), BookingStatus.SCHEDULED),
    (7, 15, (37.3382, -121.8863), BookingStatus.CONFLICT),
]

UNSAFE_REPORT = {
    "wind_kts": 28.0,
    "wind_gust_kts": 38.0,
    "visibility": 2.5,
    "ceiling_ft": 800,
    "condition": "Thunderstorm",
    "temperature": 15.0,
}


def _ensure_fleet(db: Session) -> tuple[list[Instructor], list[Aircraft]]:
    if db.query(Instructor).count() == 0:
        db.add_all(Instructor(**i) for i in DEFAULT_INSTRUCTORS)
    if db.query(Aircraft).count() == 0:
        db.add_all(Aircraft(**a) for a in DEFAULT_AIRCRAFT)
    db.flush()
    return (
        db.query(Instructor).order_by(Instructor.id).all(),
        db.query(Aircraft).order_by(Aircraft.id).all(),
    )


def _free_aircraft(db: Session, fleet: list[Aircraft], when: datetime, preferred: int) -> Aircraft:
    ordered = fleet[preferred:] + fleet[:preferred]
    for aircraft in ordered:
        if not has_aircraft_conflict(db, aircraft.id, when):
            return aircraft
    return ordered[0]


def generate_sample_data_for_student(db: Session, student: Student,
                                     now: Optional[datetime] = None) -> dict:
    """Commits. Returns counts of what was created."""
    instructors, fleet = _ensure_fleet(db)
    today = start_of_day(now or utcnow())
    bookings = []

    for i, (days, hour, arrival, status) in enumerate(SAMPLE_FLIGHTS):
        when = today + timedelta(days=days, hours=hour)
        aircraft = _free_aircraft(db, fleet, when, i % len(fleet))
        booking = Booking(
            student_id=student.id,
            instructor_id=instructors[i % len(instructors)].id,
            aircraft_id=aircraft.id,
            scheduled_date=when,
            departure_lat=SAN_FRANCISCO[0],
            departure_lon=SAN_FRANCISCO[1],
            arrival_lat=arrival[0],
            arrival_lon=arrival[1],
            status=status,
        )
        db.add(booking)
        db.flush()
        bookings.append(booking)

    conflicts = [b for b in bookings if b.status == BookingStatus.CONFLICT]
    for booking in conflicts:
        db.add(WeatherReport(
            booking_id=booking.id,
            location=ReportLocation.DEPARTURE,
            is_safe=False,
            violated_minimums=[
                "Wind Speed: 28.0 kts (max: 10 kts)",
                "Visibility: 2.5 miles (required: 5+ miles)",
                "Ceiling: 800 ft (required: 3000+ ft)",
            ],
            confidence="mock",
            **UNSAFE_REPORT,
        ))

    record_audit(db, SAMPLE_DATA_CREATED, details=f"Sample flights created for {student.email}")
    db.commit()
    logger.info("Created %d sample flights for %s", len(bookings), student.email)
    return {"bookings_created": len(bookings), "alerts_created": len(conflicts)}
