"""
Background weather monitor. Runs run_alerts_job every
MONITOR_INTERVAL_MINUTES when ENABLE_SCHEDULER is set.
"""
import logging
from typing import Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crosswind.config import config
from crosswind.dispatch.monitor import run_alerts_job

logger = logging.getLogger(__name__)

JOB_ID = "weather_monitor"

_scheduler: Optional[BackgroundScheduler] = None


def _tick():
    try:
        result = run_alerts_job()
        logger.info("Scheduled monitor: %s conflicts, %s reminders",
                    result["monitoring"]["conflicts_detected"], result["reminders_sent"])
    except Exception:
        logger.exception("Scheduled weather monitor failed")


def start_scheduler(interval_minutes: Optional[int] = None) -> Optional[BackgroundScheduler]:
    """Idempotent. Returns None when the scheduler is disabled."""
    global _scheduler
    if not config.monitor.scheduler_enabled:
        logger.info("Scheduler disabled (set ENABLE_SCHEDULER=1 to enable)")
        return None

    interval = interval_minutes or config.monitor.interval_minutes
    if _scheduler is None:
        _scheduler = BackgroundScheduler()

    if not _scheduler.get_job(JOB_ID):
        _scheduler.add_job(
            func=_tick,
            trigger=IntervalTrigger(minutes=interval),
            id=JOB_ID,
            name="Weather monitor",
            replace_existing=True,
        )
    if not _scheduler.running:
        _scheduler.start()
        logger.info("Scheduler started with %dm interval", interval)
    return _scheduler


def stop_scheduler():
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    _scheduler = None
