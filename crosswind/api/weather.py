from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from crosswind.auth.security import ensure_booking_access, get_current_user, require_role
from crosswind.bookings.service import get_booking_or_404
from crosswind.database import get_db
from crosswind.dispatch.engine import evaluate_weather_safety, get_weather_assessment
from crosswind.dispatch.monitor import (
    check_all_upcoming_bookings, check_booking_weather, get_monitoring_stats,
)
from crosswind.models import User, UserRole
from crosswind.schemas import WeatherReportOut, dump_all
from crosswind.scheduling.availability import utcnow
from crosswind.weather.fetcher import get_forecast, get_weather

router = APIRouter(prefix="/weather", tags=["weather"])


@router.get("/current")
def current_weather(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    training_level: Optional[str] = None,
    scenario: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    """Point lookup; with a training level, also the minimums check."""
    observation = get_weather(lat, lon, scenario)
    body = {"weather": observation.to_dict()}
    if training_level:
        safety = evaluate_weather_safety(observation, training_level)
        body["safety"] = safety.to_dict()
        body["assessment"] = get_weather_assessment(safety)
    return body


@router.get("/forecast")
def forecast(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    days: int = Query(7, ge=1, le=14),
    scenario: Optional[str] = None,
    user: User = Depends(get_current_user),
):
    return {"forecast": [obs.to_dict() for obs in get_forecast(lat, lon, days, scenario)]}


@router.post("/check/{booking_id}")
def check_booking(booking_id: int, scenario: Optional[str] = None,
                  user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    booking = get_booking_or_404(db, booking_id)
    ensure_booking_access(user, booking)
    result = check_booking_weather(db, booking, scenario)
    return {"success": True, **result.to_dict(), "checked_at": utcnow().isoformat()}


@router.get("/check/{booking_id}")
def booking_reports(booking_id: int, limit: int = Query(10, ge=1, le=100),
                    user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    booking = get_booking_or_404(db, booking_id)
    ensure_booking_access(user, booking)
    reports = booking.weather_reports[:limit]
    return {
        "booking_id": booking.id,
        "status": booking.status.value,
        "reports": dump_all(WeatherReportOut, reports),
        "count": len(reports),
    }


@router.post("/monitor", dependencies=[Depends(require_role(UserRole.INSTRUCTOR))])
def run_monitor(scenario: Optional[str] = None, dry_run: bool = False,
                db: Session = Depends(get_db)):
    if dry_run:
        return {"success": True, "type": "dry_run",
                "message": "Dry run completed - no actual weather checks performed"}

    result = check_all_upcoming_bookings(db, scenario=scenario)
    checked = result.bookings_checked
    return {
        "success": True,
        "type": "comprehensive",
        "result": result.to_dict(),
        "summary": {
            "conflicts_rate": f"{result.conflicts_detected / result.total_bookings * 100:.1f}%"
                              if result.total_bookings else "0%",
            "error_rate": f"{len(result.errors) / checked * 100:.1f}%" if checked else "0%",
            "average_check_ms": round(result.execution_time_ms / checked) if checked else 0,
        },
    }


@router.get("/monitor")
def monitor_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"success": True, "stats": get_monitoring_stats(db)}
