import math
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crosswind.auth.security import ensure_booking_access, get_current_user, has_role
from crosswind.bookings import service
from crosswind.database import get_db
from crosswind.errors import PermissionDenied
from crosswind.models import BookingStatus, Student, User, UserRole
from crosswind.schemas import BookingCreate, BookingDetailOut, BookingOut, BookingUpdate, dump, dump_all, to_naive_utc

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.get("")
def list_bookings(
    status: Optional[BookingStatus] = None,
    student_id: Optional[int] = None,
    instructor_id: Optional[int] = None,
    aircraft_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    upcoming: bool = False,
    page: int = Query(1, ge=1),
    limit: int = Query(service.DEFAULT_PAGE_SIZE, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    bookings, total = service.list_bookings(
        db, user=user, status=status,
        student_id=student_id, instructor_id=instructor_id, aircraft_id=aircraft_id,
        start_date=to_naive_utc(start_date) if start_date else None,
        end_date=to_naive_utc(end_date) if end_date else None,
        upcoming=upcoming, page=page, limit=limit,
    )
    return {
        "bookings": dump_all(BookingOut, bookings),
        "pagination": {"page": page, "limit": limit, "total": total,
                       "pages": math.ceil(total / limit)},
    }


@router.post("", status_code=201)
def create_booking(body: BookingCreate, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    if not has_role(user, UserRole.INSTRUCTOR):
        own = db.get(Student, body.student_id)
        if own is not None and own.user_id != user.id:
            raise PermissionDenied("Students can only book flights for themselves")
    booking = service.create_booking(db, body, performed_by=user.email)
    return dump(BookingOut, booking)


@router.get("/{booking_id}")
def get_booking(booking_id: int, user: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    booking = service.get_booking_or_404(db, booking_id)
    ensure_booking_access(user, booking)
    return dump(BookingDetailOut, booking)


@router.patch("/{booking_id}")
def update_booking(booking_id: int, body: BookingUpdate, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    ensure_booking_access(user, service.get_booking_or_404(db, booking_id))
    booking = service.update_booking(db, booking_id, body, performed_by=user.email)
    return dump(BookingOut, booking)


@router.delete("/{booking_id}")
def cancel_booking(booking_id: int, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    ensure_booking_access(user, service.get_booking_or_404(db, booking_id))
    booking = service.cancel_booking(db, booking_id, performed_by=user.email)
    return {"message": "Booking cancelled successfully", "booking": dump(BookingOut, booking)}
