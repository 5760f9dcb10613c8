import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from crosswind.auth.security import authenticate, create_access_token, get_current_user, hash_password
from crosswind.database import get_db
from crosswind.errors import ConflictError, PermissionDenied
from crosswind.ingestion.sample_data import generate_sample_data_for_student
from crosswind.models import Instructor, Student, User, UserRole
from crosswind.schemas import (
    InstructorOut, LoginRequest, SignupRequest, StudentOut, TokenOut, UserOut, dump,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(user: User) -> dict:
    token, expires_in = create_access_token(user)
    return TokenOut(
        access_token=token, expires_in=expires_in, user=UserOut.model_validate(user),
    ).model_dump(mode="json")


def _link_profile(db: Session, model, user: User, **fields):
    """Reuse an unlinked profile with the same email, else create one."""
    profile = db.query(model).filter(model.email == user.email).first()
    if profile is not None and profile.user_id not in (None, user.id):
        raise ConflictError(f"{model.__name__} profile already linked to another account")
    if profile is None:
        profile = model(email=user.email, name=user.name, **fields)
        db.add(profile)
        created = True
    else:
        created = False
    profile.user_id = user.id
    return profile, created


@router.post("/signup", status_code=201)
def signup(body: SignupRequest, db: Session = Depends(get_db)):
    """
    Create an account. Instructors (role instructor, or training level
    "instructor") get an instructor profile, everyone else a student profile.
    New students get a few sample flights.
    """
    email = body.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise ConflictError(
            "User with this email already exists",
            details={"email": email, "suggestion": "Try logging in instead of creating a new account"},
        )
    if body.role == UserRole.ADMIN:
        raise PermissionDenied("Admin accounts cannot be created through signup")

    role = UserRole.INSTRUCTOR if body.training_level == "instructor" else body.role
    user = User(email=email, name=body.name, role=role, password_hash=hash_password(body.password))
    db.add(user)
    db.flush()

    if role == UserRole.INSTRUCTOR:
        profile, created = _link_profile(db, Instructor, user, phone=body.phone)
    else:
        profile, created = _link_profile(db, Student, user, phone=body.phone,
                                         training_level=body.training_level)
    db.commit()
    db.refresh(user)
    logger.info("User %s signed up as %s", user.email, role.value)

    sample_data = None
    if role == UserRole.STUDENT and created:
        try:
            sample_data = generate_sample_data_for_student(db, profile)
        except Exception:
            db.rollback()
            logger.exception("Sample data generation failed for %s", user.email)

    return {
        "message": "User created successfully",
        **_token_response(user),
        "sample_data": sample_data,
    }


@router.post("/login")
def login(body: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, body.email, body.password)
    logger.info("User %s logged in", user.email)
    return _token_response(user)


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {
        "user": dump(UserOut, user),
        "student": dump(StudentOut, user.student) if user.student else None,
        "instructor": dump(InstructorOut, user.instructor) if user.instructor else None,
    }
