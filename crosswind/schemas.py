"""
Request / response models for the HTTP API (pydantic v2).
"""
from datetime import date, datetime, timezone
from typing import ClassVar, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from crosswind.dispatch.engine import normalize_training_level
from crosswind.models import (
    AircraftStatus, BookingStatus, ReportLocation, SuggestionSource, UserRole,
)
from crosswind.reschedule.candidates import RescheduleConstraints


def to_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def _level(v: str) -> str:
    normalize_training_level(v)   # raises UnknownTrainingLevel (a ValueError)
    return v.strip().lower()


# ── Auth ──────────────────────────────────────────────────────────────────────

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)
    role: UserRole = UserRole.STUDENT
    training_level: str = "student-pilot"
    phone: Optional[str] = None

    @field_validator("training_level")
    @classmethod
    def known_level(cls, v):
        return _level(v)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    role: UserRole
    created_at: Optional[datetime] = None


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


# ── Resources ─────────────────────────────────────────────────────────────────

class PartialUpdate(BaseModel):
    """PATCH body. Omitted fields are left alone; NOT NULL columns cannot be cleared."""

    not_nullable: ClassVar[tuple[str, ...]] = ()

    @model_validator(mode="before")
    @classmethod
    def reject_null(cls, data):
        if isinstance(data, dict):
            cleared = [k for k in cls.not_nullable if k in data and data[k] is None]
            if cleared:
                raise ValueError(f"{', '.join(cleared)} cannot be null")
        return data


class StudentCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: Optional[str] = None
    training_level: str

    @field_validator("training_level")
    @classmethod
    def known_level(cls, v):
        return _level(v)


class StudentUpdate(PartialUpdate):
    not_nullable = ("name", "email", "training_level")

    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    training_level: Optional[str] = None

    @field_validator("training_level")
    @classmethod
    def known_level(cls, v):
        return _level(v) if v is not None else v


class StudentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: Optional[str] = None
    training_level: str
    created_at: Optional[datetime] = None


class InstructorCreate(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    phone: Optional[str] = None


class InstructorUpdate(PartialUpdate):
    not_nullable = ("name", "email")

    name: Optional[str] = Field(default=None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None


class InstructorOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone: Optional[str] = None
    created_at: Optional[datetime] = None


class AircraftCreate(BaseModel):
    tail_number: str = Field(min_length=1)
    model: str = Field(min_length=1)
    status: AircraftStatus = AircraftStatus.AVAILABLE

    @field_validator("tail_number")
    @classmethod
    def upper_tail(cls, v):
        return v.strip().upper()


class AircraftUpdate(PartialUpdate):
    not_nullable = ("tail_number", "model", "status")

    tail_number: Optional[str] = Field(default=None, min_length=1)
    model: Optional[str] = Field(default=None, min_length=1)
    status: Optional[AircraftStatus] = None

    @field_validator("tail_number")
    @classmethod
    def upper_tail(cls, v):
        return v.strip().upper() if v is not None else v


class AircraftOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tail_number: str
    model: str
    status: AircraftStatus
    created_at: Optional[datetime] = None


# ── Bookings ──────────────────────────────────────────────────────────────────

class BookingCreate(BaseModel):
    student_id: int = Field(gt=0)
    instructor_id: int = Field(gt=0)
    aircraft_id: int = Field(gt=0)
    scheduled_date: datetime
    departure_lat: float = Field(ge=-90, le=90)
    departure_lon: float = Field(ge=-180, le=180)
    arrival_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    arrival_lon: Optional[float] = Field(default=None, ge=-180, le=180)
    notes: Optional[str] = None

    @field_validator("scheduled_date")
    @classmethod
    def naive_utc(cls, v):
        return to_naive_utc(v)

    @model_validator(mode="after")
    def arrival_pair(self):
        if (self.arrival_lat is None) != (self.arrival_lon is None):
            raise ValueError("arrival_lat and arrival_lon must be given together")
        return self


class BookingUpdate(PartialUpdate):
    not_nullable = ("scheduled_date", "departure_lat", "departure_lon", "status")

    scheduled_date: Optional[datetime] = None
    departure_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    departure_lon: Optional[float] = Field(default=None, ge=-180, le=180)
    arrival_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    arrival_lon: Optional[float] = Field(default=None, ge=-180, le=180)
    notes: Optional[str] = None
    status: Optional[BookingStatus] = None

    @field_validator("scheduled_date")
    @classmethod
    def naive_utc(cls, v):
        return to_naive_utc(v) if v is not None else v


class WeatherReportOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    location: ReportLocation
    wind_kts: Optional[float] = None
    wind_gust_kts: Optional[float] = None
    visibility: Optional[float] = None
    ceiling_ft: Optional[int] = None
    condition: Optional[str] = None
    temperature: Optional[float] = None
    is_safe: bool
    violated_minimums: list[str] = []
    confidence: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("violated_minimums", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []


class SuggestionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: int
    proposed_date: date
    proposed_time: str
    weather_summary: str
    confidence: float
    reason: str
    advantages: list[str] = []
    considerations: list[str] = []
    success_probability: Optional[float] = None
    source: SuggestionSource
    selected: bool
    created_at: Optional[datetime] = None

    @field_validator("advantages", "considerations", mode="before")
    @classmethod
    def none_to_list(cls, v):
        return v or []


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    booking_id: Optional[int] = None
    action: str
    performed_by: str
    details: Optional[str] = None
    created_at: Optional[datetime] = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    student_id: int
    instructor_id: int
    aircraft_id: int
    scheduled_date: datetime
    departure_lat: float
    departure_lon: float
    arrival_lat: Optional[float] = None
    arrival_lon: Optional[float] = None
    status: BookingStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    student: Optional[StudentOut] = None
    instructor: Optional[InstructorOut] = None
    aircraft: Optional[AircraftOut] = None


class BookingDetailOut(BookingOut):
    weather_reports: list[WeatherReportOut] = []
    suggestions: list[SuggestionOut] = []
    audit_logs: list[AuditLogOut] = []


# ── Reschedule ────────────────────────────────────────────────────────────────

class GenerateRescheduleRequest(BaseModel):
    constraints: Optional[RescheduleConstraints] = None
    force_regenerate: bool = False
    weather_scenario: Optional[str] = None


class ConfirmRescheduleRequest(BaseModel):
    suggestion_id: int = Field(gt=0)
    notes: Optional[str] = None


def dump(model_cls, obj) -> dict:
    """ORM object → JSON-ready dict through the given pydantic model."""
    return model_cls.model_validate(obj).model_dump(mode="json")


def dump_all(model_cls, objs) -> list[dict]:
    return [dump(model_cls, o) for o in objs]
