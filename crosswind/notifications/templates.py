"""
Email templates. Each builder returns an EmailTemplate with an HTML and a
plain-text body; the notification service sends both as multipart/alternative.

Bodies are jinja2 templates. `.html` templates are autoescaped, `.txt` ones
are not.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jinja2 import DictLoader, Environment, select_autoescape

from crosswind.config import config


@dataclass
class EmailTemplate:
    subject: str
    html: str
    text: str


LAYOUT_HTML = """<!DOCTYPE html>
<html lang="en">
<head><meta charset="UTF-8"><title>{{ title }} - Crosswind</title></head>
<body style="font-family: -apple-system, 'Segoe UI', Roboto, sans-serif; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
  <div style="background: {{ color }}; color: white; padding: 24px; border-radius: 10px 10px 0 0; text-align: center;">
    <h1 style="margin: 0;">{{ title }}</h1>
  </div>
  <div style="padding: 24px; border: 1px solid #e5e7eb; border-top: none;">
    <p>Hi {{ student.name }},</p>
{% block content %}{% endblock %}
    <p><a href="{{ dashboard_url }}">Open the Crosswind dashboard</a></p>
  </div>
</body>
</html>
"""

MACROS_HTML = """
{% macro details(rows) %}
    <table>
    {% for label, value in rows %}
      <tr><td style="font-weight: 600; color: #6b7280; padding: 6px 12px 6px 0;">{{ label }}</td><td>{{ value }}</td></tr>
    {% endfor %}
    </table>
{% endmacro %}
{% macro bullets(items) %}
    <ul>
    {% for item in items %}
      <li>{{ item }}</li>
    {% endfor %}
    </ul>
{% endmacro %}
"""

WEATHER_CONFLICT_HTML = """{% extends "layout.html" %}
{% block content %}
{% from "macros.html" import details, bullets %}
    <p>Forecast conditions for your flight are below the minimums for your training level.</p>
{{ details(rows) }}
    <h3 style="color: #dc2626;">Violated minimums</h3>
{{ bullets(violations) }}
{% if minimum_lines %}
    <h3>Your minimums</h3>
{{ bullets(minimum_lines) }}
{% endif %}
    <p>Reschedule options are available from the booking page.</p>
{% endblock %}
"""

WEATHER_CONFLICT_TXT = """Hi {{ student.name }},

Your flight on {{ when }} has a weather conflict.
{% for label, value in rows %}
{{ label }}: {{ value }}
{% endfor %}

Violated minimums:
{% for v in violations %}
  - {{ v }}
{% endfor %}

Dashboard: {{ dashboard_url }}
"""

RESCHEDULE_HTML = """{% extends "layout.html" %}
{% block content %}
{% from "macros.html" import details %}
    <p>Your flight has been rescheduled.</p>
{{ details(rows) }}
{% if reason %}
    <p><strong>Why this slot:</strong> {{ reason }}</p>
{% endif %}
{% endblock %}
"""

RESCHEDULE_TXT = """Hi {{ student.name }},

Your flight has been rescheduled.
{% for label, value in rows %}
{{ label }}: {{ value }}
{% endfor %}
{% if reason %}
Why this slot: {{ reason }}
{% endif %}

Dashboard: {{ dashboard_url }}
"""

REMINDER_HTML = """{% extends "layout.html" %}
{% block content %}
{% from "macros.html" import details %}
    <p>Your flight starts in about {{ "%.0f"|format(hours_until) }} hours.</p>
{{ details(rows) }}
{% endblock %}
"""

REMINDER_TXT = """Hi {{ student.name }},

Your flight starts in about {{ "%.0f"|format(hours_until) }} hours.
{% for label, value in rows %}
{{ label }}: {{ value }}
{% endfor %}
"""

env = Environment(
    loader=DictLoader({
        "layout.html": LAYOUT_HTML,
        "macros.html": MACROS_HTML,
        "weather_conflict.html": WEATHER_CONFLICT_HTML,
        "weather_conflict.txt": WEATHER_CONFLICT_TXT,
        "reschedule_confirmation.html": RESCHEDULE_HTML,
        "reschedule_confirmation.txt": RESCHEDULE_TXT,
        "flight_reminder.html": REMINDER_HTML,
        "flight_reminder.txt": REMINDER_TXT,
    }),
    autoescape=select_autoescape(["html", "xml"]),
    trim_blocks=True,
    lstrip_blocks=True,
)


def _fmt(dt: datetime) -> str:
    return dt.strftime("%a %b %d, %Y at %H:%M UTC")


def _render(name: str, subject: str, **context) -> EmailTemplate:
    context.setdefault("dashboard_url", config.email.dashboard_url)
    return EmailTemplate(
        subject=subject,
        html=env.get_template(f"{name}.html").render(**context),
        text=env.get_template(f"{name}.txt").render(**context),
    )


def _aircraft_label(aircraft) -> str:
    return f"{aircraft.tail_number} ({aircraft.model})"


# ── Weather conflict ──────────────────────────────────────────────────────────

def weather_conflict_email(booking, violations: list[str],
                           minimums: Optional[dict] = None) -> EmailTemplate:
    when = _fmt(booking.scheduled_date)
    minimum_lines = []
    if minimums:
        minimum_lines = [
            f"Visibility: {minimums['visibility_sm']}+ miles",
            f"Ceiling: {minimums['ceiling_ft']}+ ft",
            f"Wind: max {minimums['wind_kt']} kts",
            f"Crosswind: max {minimums['crosswind_kt']} kts",
        ]
    return _render(
        "weather_conflict",
        f"Weather Conflict Alert - Flight on {booking.scheduled_date:%Y-%m-%d}",
        title="Weather Conflict Alert",
        color="#dc2626",
        student=booking.student,
        when=when,
        rows=[
            ("Date", when),
            ("Instructor", booking.instructor.name),
            ("Aircraft", _aircraft_label(booking.aircraft)),
            ("Training level", booking.student.training_level),
        ],
        violations=violations,
        minimum_lines=minimum_lines,
    )


# ── Reschedule confirmation ───────────────────────────────────────────────────

def reschedule_confirmation_email(booking, original_date: datetime,
                                  reason: Optional[str] = None) -> EmailTemplate:
    return _render(
        "reschedule_confirmation",
        f"Flight Rescheduled - {booking.scheduled_date:%Y-%m-%d} at {booking.scheduled_date:%H:%M}",
        title="Flight Rescheduled",
        color="#16a34a",
        student=booking.student,
        rows=[
            ("Previous time", _fmt(original_date)),
            ("New time", _fmt(booking.scheduled_date)),
            ("Instructor", booking.instructor.name),
            ("Aircraft", _aircraft_label(booking.aircraft)),
        ],
        reason=reason,
    )


# ── Flight reminder ───────────────────────────────────────────────────────────

def flight_reminder_email(booking, hours_until: float,
                          weather_summary: Optional[str] = None) -> EmailTemplate:
    rows = [
        ("Date", _fmt(booking.scheduled_date)),
        ("Instructor", booking.instructor.name),
        ("Aircraft", _aircraft_label(booking.aircraft)),
    ]
    if weather_summary:
        rows.append(("Weather", weather_summary))
    prefix = "Urgent: " if hours_until <= 2 else ""
    return _render(
        "flight_reminder",
        f"{prefix}Flight Reminder - {booking.scheduled_date:%Y-%m-%d} at {booking.scheduled_date:%H:%M}",
        title="Flight Reminder",
        color="#2563eb",
        student=booking.student,
        rows=rows,
        hours_until=hours_until,
    )
