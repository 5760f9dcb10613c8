"""
Notification delivery.

NotificationService.send() fans a template out to every recipient, retrying
each one with linear back-off (delay × attempt). It reports per-recipient
failures in its result and never raises.

Senders:
  SMTPSender    → real delivery (EMAIL_USER / EMAIL_PASS configured)
  LoggingSender → logs the message instead (local runs, tests)
"""
import logging
import smtplib
import time
import uuid
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Callable, Optional

from crosswind.config import config
from crosswind.notifications.templates import (
    EmailTemplate, weather_conflict_email, reschedule_confirmation_email,
    flight_reminder_email,
)

logger = logging.getLogger(__name__)

WEATHER_CONFLICT = "weather_conflict"
RESCHEDULE_CONFIRMED = "reschedule_confirmed"
FLIGHT_REMINDER = "flight_reminder"


@dataclass
class NotificationResult:
    success: bool
    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)     # email → last error
    message_id: Optional[str] = None

    @property
    def error(self) -> Optional[str]:
        if not self.failed:
            return None
        total = len(self.sent) + len(self.failed)
        return f"{len(self.failed)} out of {total} notifications failed"

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "sent": self.sent,
            "failed": self.failed,
            "message_id": self.message_id,
            "error": self.error,
        }


# ── Senders ───────────────────────────────────────────────────────────────────

class SMTPSender:
    def __init__(self, host: str, port: int, username: str, password: str, from_address: str):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_address = from_address

    def send(self, to: str, template: EmailTemplate) -> str:
        msg = EmailMessage()
        msg["Subject"] = template.subject
        msg["From"] = self.from_address
        msg["To"] = to
        msg["Message-ID"] = f"<{uuid.uuid4()}@crosswind>"
        msg.set_content(template.text)
        msg.add_alternative(template.html, subtype="html")

        with smtplib.SMTP(self.host, self.port, timeout=30) as smtp:
            smtp.starttls()
            smtp.login(self.username, self.password)
            smtp.send_message(msg)
        return msg["Message-ID"]


class LoggingSender:
    """Keeps an outbox so callers (and tests) can inspect what would be sent."""

    def __init__(self):
        self.outbox: list[tuple[str, EmailTemplate]] = []

    def send(self, to: str, template: EmailTemplate) -> str:
        self.outbox.append((to, template))
        logger.info("Email (not sent, SMTP not configured) to=%s subject=%r", to, template.subject)
        return f"log-{uuid.uuid4()}"


def default_sender():
    email = config.email
    if email.is_configured:
        return SMTPSender(email.smtp_host, email.smtp_port, email.username,
                          email.password, email.from_address)
    return LoggingSender()


# ── Service ───────────────────────────────────────────────────────────────────

class NotificationService:
    def __init__(self, sender=None, retry_attempts: Optional[int] = None,
                 retry_delay: Optional[float] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.sender = sender or default_sender()
        self.retry_attempts = retry_attempts or config.email.retry_attempts
        self.retry_delay = config.email.retry_delay_seconds if retry_delay is None else retry_delay
        self.sleep = sleep

    def send(self, notification_type: str, recipients: list[str],
             template: EmailTemplate) -> NotificationResult:
        logger.info("Sending %s notification to %s", notification_type, recipients)
        result = NotificationResult(success=True)

        for to in recipients:
            ok, value = self._send_with_retry(to, template)
            if ok:
                result.sent.append(to)
                result.message_id = result.message_id or value
            else:
                result.failed[to] = value

        result.success = not result.failed
        if result.failed:
            logger.error("%s notification: %s (%s)", notification_type, result.error, result.failed)
        return result

    def _send_with_retry(self, to: str, template: EmailTemplate) -> tuple[bool, str]:
        last_error = "not attempted"
        for attempt in range(1, self.retry_attempts + 1):
            try:
                return True, self.sender.send(to, template)
            except Exception as e:
                last_error = str(e)
                logger.warning("Email attempt %d/%d to %s failed: %s",
                               attempt, self.retry_attempts, to, e)
                if attempt < self.retry_attempts:
                    self.sleep(self.retry_delay * attempt)
        return False, last_error


_service: Optional[NotificationService] = None


def get_notification_service() -> NotificationService:
    global _service
    if _service is None:
        _service = NotificationService()
    return _service


def set_notification_service(service: Optional[NotificationService]):
    """Swap the process-wide service (tests install one with a LoggingSender)."""
    global _service
    _service = service


# ── Booking helpers ───────────────────────────────────────────────────────────

def _booking_recipients(booking) -> list[str]:
    emails = [booking.student.email, booking.instructor.email]
    return [e for i, e in enumerate(emails) if e and e not in emails[:i]]


def notify_weather_conflict(booking, violations: list[str],
                            minimums: Optional[dict] = None) -> NotificationResult:
    template = weather_conflict_email(booking, violations, minimums)
    return get_notification_service().send(WEATHER_CONFLICT, _booking_recipients(booking), template)


def notify_reschedule_confirmed(booking, original_date, reason: Optional[str] = None) -> NotificationResult:
    template = reschedule_confirmation_email(booking, original_date, reason)
    return get_notification_service().send(RESCHEDULE_CONFIRMED, _booking_recipients(booking), template)


def notify_flight_reminder(booking, hours_until: float,
                           weather_summary: Optional[str] = None) -> NotificationResult:
    template = flight_reminder_email(booking, hours_until, weather_summary)
    return get_notification_service().send(FLIGHT_REMINDER, [booking.student.email], template)
