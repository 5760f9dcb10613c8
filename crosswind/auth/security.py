"""
Password hashing, JWT issue/verify, and the FastAPI auth dependencies.

Role hierarchy: admin (3) > instructor (2) > student (1). require_role(r)
lets through r and everything above it.
"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from crosswind.config import config
from crosswind.database import get_db
from crosswind.errors import AuthenticationFailed, PermissionDenied
from crosswind.models import User, UserRole, Booking
from crosswind.scheduling.availability import utcnow

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer = HTTPBearer(auto_error=False)

ROLE_LEVELS = {UserRole.STUDENT: 1, UserRole.INSTRUCTOR: 2, UserRole.ADMIN: 3}


# ── Passwords + tokens ────────────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(user: User, expires_delta: Optional[timedelta] = None) -> tuple[str, int]:
    """Returns (token, expires_in_seconds)."""
    expires = expires_delta or timedelta(hours=config.auth.token_expire_hours)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "role": user.role.value,
        "exp": utcnow() + expires,
    }
    token = jwt.encode(payload, config.auth.secret_key, algorithm=config.auth.algorithm)
    return token, int(expires.total_seconds())


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.auth.secret_key, algorithms=[config.auth.algorithm])
    except JWTError as e:
        raise AuthenticationFailed("Invalid or expired token") from e


def authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email.lower()).first()
    if user is None or not verify_password(password, user.password_hash):
        raise AuthenticationFailed("Invalid email or password")
    return user


# ── Dependencies ──────────────────────────────────────────────────────────────

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationFailed("Authentication required")

    payload = decode_token(credentials.credentials)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise AuthenticationFailed("Invalid token payload")

    user = db.get(User, user_id)
    if user is None:
        raise AuthenticationFailed("User not found")
    return user


def has_role(user: User, role: UserRole) -> bool:
    return ROLE_LEVELS[user.role] >= ROLE_LEVELS[role]


def require_role(role: UserRole):
    """Dependency factory: 403 unless the user has `role` or higher."""
    def dependency(user: User = Depends(get_current_user)) -> User:
        if not has_role(user, role):
            raise PermissionDenied(f"Requires {role.value} role or higher")
        return user
    return dependency


# ── Booking access ────────────────────────────────────────────────────────────

def can_access_booking(user: User, booking: Booking) -> bool:
    """Staff see every booking; students only their own."""
    if has_role(user, UserRole.INSTRUCTOR):
        return True
    return booking.student is not None and booking.student.user_id == user.id


def ensure_booking_access(user: User, booking: Booking):
    if not can_access_booking(user, booking):
        raise PermissionDenied("Access denied")
