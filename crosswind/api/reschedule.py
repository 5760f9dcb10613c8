from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from crosswind.auth.security import ensure_booking_access, get_current_user
from crosswind.bookings.service import get_booking_or_404
from crosswind.database import get_db
from crosswind.models import BookingStatus, User
from crosswind.reschedule import service
from crosswind.schemas import (
    BookingOut, ConfirmRescheduleRequest, GenerateRescheduleRequest, SuggestionOut, dump, dump_all,
)

router = APIRouter(prefix="/bookings/{booking_id}/reschedule", tags=["reschedule"])


def _accessible_booking(db: Session, booking_id: int, user: User):
    booking = get_booking_or_404(db, booking_id)
    ensure_booking_access(user, booking)
    return booking


@router.get("")
def existing_suggestions(booking_id: int, user: User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    booking = _accessible_booking(db, booking_id, user)
    suggestions = service.get_existing_suggestions(db, booking_id)
    return {
        "booking_id": booking_id,
        "status": booking.status.value,
        "has_conflict": booking.status == BookingStatus.CONFLICT,
        "suggestions": dump_all(SuggestionOut, suggestions),
        "count": len(suggestions),
    }


@router.post("")
def generate_suggestions(booking_id: int,
                         body: Optional[GenerateRescheduleRequest] = Body(default=None),
                         user: User = Depends(get_current_user),
                         db: Session = Depends(get_db)):
    _accessible_booking(db, booking_id, user)
    body = body or GenerateRescheduleRequest()
    result = service.generate_suggestions(
        db, booking_id,
        constraints=body.constraints,
        requested_by=user.email,
        force_regenerate=body.force_regenerate,
        scenario=body.weather_scenario,
    )
    return {
        "success": True,
        "booking_id": booking_id,
        "source": result.source,
        "suggestions": dump_all(SuggestionOut, result.suggestions),
        "count": len(result.suggestions),
        "message": f"Generated {len(result.suggestions)} reschedule suggestions",
    }


@router.delete("")
def cancel_suggestions(booking_id: int, user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    _accessible_booking(db, booking_id, user)
    cancelled = service.cancel_suggestions(db, booking_id, performed_by=user.email)
    return {
        "success": True,
        "cancelled": cancelled,
        "message": "All pending reschedule suggestions have been cancelled",
    }


@router.get("/confirm")
def preview_suggestion(booking_id: int, suggestion_id: int = Query(..., gt=0),
                       user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    _accessible_booking(db, booking_id, user)
    preview = service.preview_suggestion(db, booking_id, suggestion_id)
    return {
        "booking": dump(BookingOut, preview["booking"]),
        "suggestion": dump(SuggestionOut, preview["suggestion"]),
        "current_schedule": preview["current_schedule"].isoformat(),
        "proposed_schedule": preview["proposed_schedule"].isoformat(),
        "time_difference": preview["time_difference"],
    }


@router.post("/confirm")
def confirm_suggestion(booking_id: int, body: ConfirmRescheduleRequest,
                       user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    _accessible_booking(db, booking_id, user)
    booking, suggestion = service.confirm_suggestion(
        db, booking_id, body.suggestion_id, confirmed_by=user.email, notes=body.notes,
    )
    return {
        "success": True,
        "message": "Booking successfully rescheduled",
        "updated_booking": dump(BookingOut, booking),
        "confirmed_suggestion": dump(SuggestionOut, suggestion),
        "confirmed_by": user.email,
    }
