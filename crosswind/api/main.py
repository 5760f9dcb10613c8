"""
Crosswind API.

  /auth/*                         signup, login, me
  /students /instructors /aircraft  resource CRUD
  /bookings                       booking CRUD
  /bookings/{id}/reschedule       AI reschedule suggestions
  /weather/*                      corridor checks + monitor
  /alerts /activity /dashboard /analytics/*  metrics
  /cron/run /ingest/run           jobs
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from crosswind.api import analytics, auth, bookings, reschedule, resources, weather
from crosswind.config import config
from crosswind.database import init_db
from crosswind.errors import CrosswindError, UnknownTrainingLevel
from crosswind.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Crosswind Flight Scheduling API", version="1.0.0")

app.include_router(auth.router)
app.include_router(resources.router)
app.include_router(bookings.router)
app.include_router(reschedule.router)
app.include_router(weather.router)
app.include_router(analytics.router)


@app.on_event("startup")
def startup():
    init_db()
    logger.info("Database initialized")
    start_scheduler()


@app.on_event("shutdown")
def shutdown():
    stop_scheduler()


# ── Error mapping ─────────────────────────────────────────────────────────────

@app.exception_handler(CrosswindError)
def crosswind_error(request: Request, exc: CrosswindError):
    body = {"error": exc.message}
    if exc.details is not None:
        body["details"] = jsonable_encoder(exc.details)
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


@app.exception_handler(RequestValidationError)
def validation_error(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Validation failed", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(UnknownTrainingLevel)
def unknown_level(request: Request, exc: UnknownTrainingLevel):
    return JSONResponse(status_code=400, content={"error": str(exc), "details": {"level": exc.level}})


@app.exception_handler(Exception)
def unexpected_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ── Health check ──────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "healthy",
        "weather_provider": "mock" if config.weather.use_mock else "weatherapi",
        "llm_configured": config.openai.is_configured,
        "email_configured": config.email.is_configured,
        "scheduler_enabled": config.monitor.scheduler_enabled,
    }


@app.get("/")
def root():
    return {
        "service": "Crosswind Flight Scheduling API",
        "version": "1.0.0",
        "docs": "/docs",
    }
