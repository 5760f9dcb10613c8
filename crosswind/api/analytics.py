import logging
import time
from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from crosswind.auth.security import get_current_user, require_role
from crosswind.config import config
from crosswind.database import get_db
from crosswind.dispatch.monitor import run_alerts_job
from crosswind.errors import AuthenticationFailed
from crosswind.ingestion.job import run_ingestion
from crosswind.models import User, UserRole
from crosswind.observability import metrics
from crosswind.schemas import AuditLogOut, dump_all, to_naive_utc
from crosswind.scheduling.availability import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analytics"])
staff = require_role(UserRole.INSTRUCTOR)


def _naive(dt: Optional[datetime]) -> Optional[datetime]:
    return to_naive_utc(dt) if dt else None


@router.get("/alerts")
def alerts(
    status: Literal["conflict", "all"] = "conflict",
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    student_id: Optional[int] = Query(None, gt=0),
    instructor_id: Optional[int] = Query(None, gt=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return metrics.get_alerts(db, user, status=status, limit=limit, offset=offset,
                              student_id=student_id, instructor_id=instructor_id)


@router.get("/activity")
def activity(limit: int = Query(20, ge=1, le=100),
             user: User = Depends(get_current_user),
             db: Session = Depends(get_db)):
    return {"activity": dump_all(AuditLogOut, metrics.get_recent_activity(db, user, limit))}


@router.get("/dashboard/stats")
def dashboard_stats(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return metrics.get_dashboard_stats(db)


@router.get("/analytics/overview", dependencies=[Depends(staff)])
def analytics_overview(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                       db: Session = Depends(get_db)):
    return {"success": True,
            "data": metrics.get_overview(db, _naive(start_date), _naive(end_date))}


@router.get("/analytics/weather-impact", dependencies=[Depends(staff)])
def analytics_weather_impact(start_date: Optional[datetime] = None,
                             end_date: Optional[datetime] = None,
                             db: Session = Depends(get_db)):
    return {"success": True,
            "data": metrics.get_weather_impact(db, _naive(start_date), _naive(end_date))}


@router.get("/analytics/performance", dependencies=[Depends(staff)])
def analytics_performance(start_date: Optional[datetime] = None,
                          end_date: Optional[datetime] = None,
                          db: Session = Depends(get_db)):
    return {"success": True,
            "data": metrics.get_performance(db, _naive(start_date), _naive(end_date))}


# ── Jobs ──────────────────────────────────────────────────────────────────────

@router.post("/cron/run")
def cron_run(x_cron_secret: Optional[str] = Header(default=None),
             db: Session = Depends(get_db)):
    """Hosted-cron entry point. Protected only when CRON_SECRET is set."""
    secret = config.monitor.cron_secret
    if secret and x_cron_secret != secret:
        raise AuthenticationFailed("Unauthorized")

    started_at = utcnow()
    started = time.monotonic()
    result = run_alerts_job(db)
    return {
        "ok": True,
        "started_at": started_at.isoformat(),
        "duration_ms": int((time.monotonic() - started) * 1000),
        "result": result,
    }


@router.post("/ingest/run", dependencies=[Depends(require_role(UserRole.ADMIN))])
def ingest_run(force: bool = False, db: Session = Depends(get_db)):
    """
    Run ingestion pipeline.
    - Reads data/bucket/*.json + weather_minimums.md
    - Validates, upserts to DB
    - Idempotent (skips if unchanged unless force=True)
    """
    return run_ingestion(db, force=force)
