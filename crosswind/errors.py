"""
Domain errors. Services raise these; the API maps them to status codes.
"""
from typing import Any, Optional


class CrosswindError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(CrosswindError):
    status_code = 404


class ConflictError(CrosswindError):
    status_code = 409


class PermissionDenied(CrosswindError):
    status_code = 403


class InvalidRequest(CrosswindError):
    status_code = 400


class AuthenticationFailed(CrosswindError):
    status_code = 401


class UnknownTrainingLevel(ValueError):
    """Raised when a training level has no minimums mapping."""

    def __init__(self, level: str):
        super().__init__(f"Unknown training level: {level}")
        self.level = level