import enum

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, DateTime,
    Date, JSON, ForeignKey, Text, Enum as SAEnum
)
from sqlalchemy.orm import declarative_base, relationship

from crosswind.scheduling.availability import utcnow

Base = declarative_base()


def _enum(cls):
    # Persist the lowercase values ("in-use"), not the member names
    return SAEnum(cls, values_callable=lambda e: [m.value for m in e],
                  native_enum=False, length=32)


# ── Enums ────────────────────────────────────────────────────────────────────

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    INSTRUCTOR = "instructor"
    STUDENT = "student"

class BookingStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    CONFLICT = "conflict"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

class AircraftStatus(str, enum.Enum):
    AVAILABLE = "available"
    IN_USE = "in-use"
    MAINTENANCE = "maintenance"
    UNAVAILABLE = "unavailable"

class ReportLocation(str, enum.Enum):
    DEPARTURE = "departure"
    ARRIVAL = "arrival"

class SuggestionSource(str, enum.Enum):
    AI = "ai"
    RULE_BASED = "rule_based"


ACTIVE_STATUSES = (BookingStatus.SCHEDULED, BookingStatus.CONFIRMED)
CLOSED_STATUSES = (BookingStatus.CANCELLED, BookingStatus.COMPLETED)


# ── People & fleet ────────────────────────────────────────────────────────────

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(_enum(UserRole), nullable=False, default=UserRole.STUDENT)
    created_at = Column(DateTime, default=utcnow)

    student = relationship("Student", back_populates="user", uselist=False)
    instructor = relationship("Instructor", back_populates="user", uselist=False)


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    phone = Column(String, nullable=True)
    training_level = Column(String, nullable=False)    # e.g. "student-pilot", "private"
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="student")
    bookings = relationship("Booking", back_populates="student")


class Instructor(Base):
    __tablename__ = "instructors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    phone = Column(String, nullable=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="instructor")
    bookings = relationship("Booking", back_populates="instructor")


class Aircraft(Base):
    __tablename__ = "aircraft"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tail_number = Column(String, nullable=False, unique=True)   # e.g. "N172SP"
    model = Column(String, nullable=False)                      # e.g. "Cessna 172S"
    status = Column(_enum(AircraftStatus), nullable=False, default=AircraftStatus.AVAILABLE)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    bookings = relationship("Booking", back_populates="aircraft")


# ── Bookings ──────────────────────────────────────────────────────────────────

class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    instructor_id = Column(Integer, ForeignKey("instructors.id"), nullable=False)
    aircraft_id = Column(Integer, ForeignKey("aircraft.id"), nullable=False)

    scheduled_date = Column(DateTime, nullable=False, index=True)
    departure_lat = Column(Float, nullable=False)
    departure_lon = Column(Float, nullable=False)
    arrival_lat = Column(Float, nullable=True)
    arrival_lon = Column(Float, nullable=True)

    status = Column(_enum(BookingStatus), nullable=False, default=BookingStatus.SCHEDULED)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    student = relationship("Student", back_populates="bookings")
    instructor = relationship("Instructor", back_populates="bookings")
    aircraft = relationship("Aircraft", back_populates="bookings")
    weather_reports = relationship(
        "WeatherReport", back_populates="booking",
        order_by="WeatherReport.created_at.desc()", cascade="all, delete-orphan",
    )
    suggestions = relationship(
        "RescheduleSuggestion", back_populates="booking",
        order_by="RescheduleSuggestion.created_at.desc()", cascade="all, delete-orphan",
    )
    audit_logs = relationship(
        "AuditLog", back_populates="booking", order_by="AuditLog.created_at.desc()",
    )

    @property
    def has_arrival(self) -> bool:
        return self.arrival_lat is not None and self.arrival_lon is not None


# ── Weather + rescheduling ────────────────────────────────────────────────────

class WeatherReport(Base):
    __tablename__ = "weather_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    location = Column(_enum(ReportLocation), nullable=False)
    wind_kts = Column(Float, nullable=True)
    wind_gust_kts = Column(Float, nullable=True)
    visibility = Column(Float, nullable=True)           # statute miles
    ceiling_ft = Column(Integer, nullable=True)
    condition = Column(String, nullable=True)
    temperature = Column(Float, nullable=True)          # °C
    is_safe = Column(Boolean, nullable=False)
    violated_minimums = Column(JSON, default=list)      # ["Visibility: 2.0 miles (required: 5+ miles)"]
    confidence = Column(String, default="live")         # "live" | "cached" | "mock" | "unknown"
    created_at = Column(DateTime, default=utcnow, index=True)

    booking = relationship("Booking", back_populates="weather_reports")


class RescheduleSuggestion(Base):
    __tablename__ = "reschedule_suggestions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    proposed_date = Column(Date, nullable=False)
    proposed_time = Column(String, nullable=False)      # "HH:MM"
    weather_summary = Column(Text, nullable=False)
    confidence = Column(Float, nullable=False)          # 0..1
    reason = Column(Text, nullable=False)
    advantages = Column(JSON, default=list)
    considerations = Column(JSON, default=list)
    success_probability = Column(Float, nullable=True)
    source = Column(_enum(SuggestionSource), nullable=False, default=SuggestionSource.AI)
    selected = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)

    booking = relationship("Booking", back_populates="suggestions")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True, index=True)
    action = Column(String, nullable=False)             # "BOOKING_CREATED", ...
    performed_by = Column(String, nullable=False)       # email or "system"
    details = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    booking = relationship("Booking", back_populates="audit_logs")


# ── Seed tracking + rules corpus ─────────────────────────────────────────────

class IngestionRun(Base):
    __tablename__ = "ingestion_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_at = Column(DateTime, default=utcnow)
    source_hash = Column(String, nullable=False)       # hash of input files
    status = Column(String, default="success")
    diff_summary = Column(JSON, default=dict)          # what changed


class RulesDoc(Base):
    __tablename__ = "rules_docs"

    id = Column(String, primary_key=True)              # e.g. "doc_minimums"
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    chunks = Column(JSON, nullable=True)               # pre-chunked for retrieval
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
