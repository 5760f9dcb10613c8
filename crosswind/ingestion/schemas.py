from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from crosswind.dispatch.engine import normalize_training_level
from crosswind.models import AircraftStatus, UserRole


class UserSeed(BaseModel):
    email: EmailStr
    name: str
    role: UserRole = UserRole.STUDENT
    password: str = Field(min_length=6)


class StudentSeed(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    training_level: str
    user_email: Optional[EmailStr] = None    # links the profile to a login

    @field_validator("training_level")
    @classmethod
    def known_level(cls, v):
        normalize_training_level(v)
        return v.strip().lower()


class InstructorSeed(BaseModel):
    name: str
    email: EmailStr
    phone: Optional[str] = None
    user_email: Optional[EmailStr] = None


class AircraftSeed(BaseModel):
    tail_number: str
    model: str
    status: AircraftStatus = AircraftStatus.AVAILABLE

    @field_validator("tail_number")
    @classmethod
    def upper_tail(cls, v):
        return v.strip().upper()
