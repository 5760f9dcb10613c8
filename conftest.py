"""
Pytest configuration and shared fixtures.

The environment is pinned before crosswind is imported: config is read once at
import time, so the in-memory database, mock weather and the disabled
integrations must be in place first.
"""
import os

os.environ.update({
    "DATABASE_URL": "sqlite://",
    "WEATHER_MOCK": "1",
    "WEATHER_MOCK_SCENARIO": "good",
    "WEATHER_API_KEY": "",
    "OPENAI_API_KEY": "",
    "EMAIL_USER": "",
    "EMAIL_PASS": "",
    "ENABLE_SCHEDULER": "0",
    "CRON_SECRET": "",
    "MONITOR_REQUEST_DELAY": "0",
})

from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from crosswind.auth.security import create_access_token, hash_password
from crosswind.database import SessionLocal, engine, get_db
from crosswind.models import (
    Aircraft, Base, Booking, BookingStatus, Instructor, Student, User, UserRole,
)
from crosswind.notifications.service import (
    LoggingSender, NotificationService, set_notification_service,
)
from crosswind.scheduling.availability import start_of_day, utcnow
from crosswind.weather import fetcher

PASSWORD = "secret123"
SAN_FRANCISCO = (37.7749, -122.4194)
SACRAMENTO = (38.5816, -121.4944)


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
def db():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def clear_weather_cache():
    fetcher.clear_cache()
    yield
    fetcher.clear_cache()


@pytest.fixture(autouse=True)
def outbox():
    """Notification service that records instead of sending, with no back-off."""
    sender = LoggingSender()
    set_notification_service(NotificationService(sender, sleep=lambda s: None))
    yield sender.outbox
    set_notification_service(None)


# =============================================================================
# School fixtures
# =============================================================================

@pytest.fixture(scope="session")
def password_hash():
    """bcrypt is slow; hash once per run."""
    return hash_password(PASSWORD)


@pytest.fixture
def school(db, password_hash):
    """
    One admin, two instructors (one with a login), two students (one with a
    login) and two aircraft.
    """
    admin = User(email="ops@crosswind.app", name="Ops Admin",
                 role=UserRole.ADMIN, password_hash=password_hash)
    instructor_user = User(email="dave@flightschool.com", name="Captain Dave",
                           role=UserRole.INSTRUCTOR, password_hash=password_hash)
    student_user = User(email="sam@students.crosswind.app", name="Sam Carter",
                        role=UserRole.STUDENT, password_hash=password_hash)
    db.add_all([admin, instructor_user, student_user])
    db.flush()

    dave = Instructor(name="Captain Dave", email="dave@flightschool.com", user_id=instructor_user.id)
    lisa = Instructor(name="Instructor Lisa", email="lisa@flightschool.com")
    sam = Student(name="Sam Carter", email="sam@students.crosswind.app",
                  training_level="student-pilot", user_id=student_user.id)
    priya = Student(name="Priya Nair", email="priya@students.crosswind.app",
                    training_level="private-pilot")
    cessna = Aircraft(tail_number="N12345", model="Cessna 172")
    piper = Aircraft(tail_number="N67890", model="Piper PA-28")
    db.add_all([dave, lisa, sam, priya, cessna, piper])
    db.commit()

    return SimpleNamespace(
        admin=admin, instructor_user=instructor_user, student_user=student_user,
        dave=dave, lisa=lisa, sam=sam, priya=priya, cessna=cessna, piper=piper,
    )


@pytest.fixture
def make_booking(db, school):
    """Factory: a booking for Sam with Dave in the Cessna, tomorrow 10:00 by default."""
    def _make(**overrides):
        data = {
            "student_id": school.sam.id,
            "instructor_id": school.dave.id,
            "aircraft_id": school.cessna.id,
            "scheduled_date": start_of_day(utcnow()) + timedelta(days=1, hours=10),
            "departure_lat": SAN_FRANCISCO[0],
            "departure_lon": SAN_FRANCISCO[1],
            "status": BookingStatus.SCHEDULED,
        }
        data.update(overrides)
        booking = Booking(**data)
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking
    return _make


# =============================================================================
# HTTP
# =============================================================================

@pytest.fixture
def client(db):
    """TestClient on the app with get_db bound to the test session."""
    from crosswind.api.main import app

    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user):
        token, _ = create_access_token(user)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# =============================================================================
# LLM
# =============================================================================

class StubLLM:
    """Returns canned suggestions, or raises the given error."""

    def __init__(self, suggestions=None, error=None):
        self.suggestions = suggestions or []
        self.error = error
        self.contexts = []

    def generate(self, context):
        self.contexts.append(context)
        if self.error is not None:
            raise self.error
        return list(self.suggestions)


@pytest.fixture
def stub_llm():
    return StubLLM
