from typing import Optional

from sqlalchemy.orm import Session

from crosswind.models import AuditLog

SYSTEM = "system"


def record_audit(db: Session, action: str, performed_by: Optional[str] = None,
                 booking_id: Optional[int] = None, details: Optional[str] = None) -> AuditLog:
    """Adds an AuditLog row to the session. Caller commits."""
    entry = AuditLog(
        booking_id=booking_id,
        action=action,
        performed_by=performed_by or SYSTEM,
        details=details,
    )
    db.add(entry)
    return entry
