"""Suggestion lifecycle: generate, preview, confirm, cancel."""
from datetime import date, datetime

import pytest

from crosswind.errors import ConflictError, NotFoundError
from crosswind.models import AuditLog, BookingStatus, RescheduleSuggestion, SuggestionSource
from crosswind.reschedule.candidates import Suggestion, combine_date_and_time
from crosswind.reschedule.service import (
    AI_RESCHEDULE_REQUESTED, RESCHEDULE_CONFIRMED, SUGGESTIONS_CANCELLED, SUGGESTIONS_GENERATED,
    cancel_suggestions, confirm_suggestion, generate_suggestions, get_existing_suggestions,
    preview_suggestion, time_difference,
)

SUNDAY = datetime(2026, 10, 18, 8, 0)


@pytest.fixture
def booking(make_booking):
    return make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0), status=BookingStatus.CONFLICT)


def generate(db, booking, **kwargs):
    kwargs.setdefault("now", SUNDAY)
    return generate_suggestions(db, booking.id, requested_by="dave@flightschool.com", **kwargs)


def audit_actions(db, booking_id):
    rows = db.query(AuditLog).filter(AuditLog.booking_id == booking_id).order_by(AuditLog.id)
    return [(a.action, a.performed_by) for a in rows]


# =============================================================================
# Generate
# =============================================================================

def test_generate_persists_rule_based_suggestions(db, booking):
    result = generate(db, booking)

    assert result.source == "rule_based"
    assert len(result.suggestions) == 3
    assert all(s.id and s.source == SuggestionSource.RULE_BASED for s in result.suggestions)
    assert result.average_confidence == pytest.approx(0.7)
    assert audit_actions(db, booking.id) == [
        (SUGGESTIONS_GENERATED, "AI System"),
        (AI_RESCHEDULE_REQUESTED, "dave@flightschool.com"),
    ]


def test_generate_with_llm_persists_ai_source(db, booking, stub_llm):
    llm = stub_llm([Suggestion(date(2026, 10, 20), "09:00", 0.9, "Clear", "Clear skies")])
    result = generate(db, booking, llm=llm)
    assert result.source == "ai"
    [row] = result.suggestions
    assert row.source == SuggestionSource.AI
    assert row.proposed_date == date(2026, 10, 20)


def test_pending_suggestions_block_regeneration(db, booking):
    generate(db, booking)
    with pytest.raises(ConflictError) as exc:
        generate(db, booking)
    assert exc.value.details["existing_count"] == 3


def test_force_regenerate_replaces_pending(db, booking):
    first = generate(db, booking)
    second = generate(db, booking, force_regenerate=True)

    pending = get_existing_suggestions(db, booking.id)
    assert {s.id for s in pending} == {s.id for s in second.suggestions}
    assert all(db.get(RescheduleSuggestion, s.id).selected for s in first.suggestions)
    assert (SUGGESTIONS_CANCELLED, "dave@flightschool.com") in audit_actions(db, booking.id)


def test_generate_for_missing_booking(db, school):
    with pytest.raises(NotFoundError):
        generate_suggestions(db, 404)


def test_cancel_suggestions(db, booking):
    generate(db, booking)
    assert cancel_suggestions(db, booking.id, performed_by="dave@flightschool.com") == 3
    assert get_existing_suggestions(db, booking.id) == []
    assert cancel_suggestions(db, booking.id) == 0


# =============================================================================
# Preview + confirm
# =============================================================================

def test_time_difference():
    diff = time_difference(datetime(2026, 10, 19, 9, 0), datetime(2026, 10, 21, 14, 0))
    assert diff == {"days": 2, "hours": 5, "total_hours": 53, "is_later": True, "is_same_day": False}


def test_preview(db, booking):
    suggestion = generate(db, booking).suggestions[0]
    preview = preview_suggestion(db, booking.id, suggestion.id)

    assert preview["current_schedule"] == datetime(2026, 10, 18, 9, 0)
    assert preview["proposed_schedule"].date() == suggestion.proposed_date
    assert preview["time_difference"]["is_later"]


def test_confirm_moves_booking_and_closes_other_options(db, booking, outbox):
    result = generate(db, booking)
    chosen, *others = result.suggestions

    updated, confirmed = confirm_suggestion(db, booking.id, chosen.id,
                                            confirmed_by="dave@flightschool.com", notes="Moved for weather")

    assert updated.status == BookingStatus.CONFIRMED
    assert updated.scheduled_date.date() == chosen.proposed_date
    assert updated.notes == "Moved for weather"
    assert confirmed.selected
    assert all(db.get(RescheduleSuggestion, s.id).selected for s in others)
    assert get_existing_suggestions(db, booking.id) == []
    assert audit_actions(db, booking.id)[-1] == (RESCHEDULE_CONFIRMED, "dave@flightschool.com")
    assert sorted(to for to, _ in outbox) == ["dave@flightschool.com", "sam@students.crosswind.app"]
    assert outbox[0][1].subject.startswith("Flight Rescheduled")


def test_confirm_twice_is_rejected(db, booking):
    chosen = generate(db, booking).suggestions[0]
    confirm_suggestion(db, booking.id, chosen.id)
    with pytest.raises(ConflictError, match="already been used"):
        confirm_suggestion(db, booking.id, chosen.id)


def test_confirm_suggestion_of_other_booking(db, school, booking, make_booking):
    other = make_booking(scheduled_date=datetime(2026, 10, 18, 15, 0), student_id=school.priya.id)
    chosen = generate(db, booking).suggestions[0]
    with pytest.raises(NotFoundError):
        confirm_suggestion(db, other.id, chosen.id)


def test_confirm_rejects_aircraft_clash(db, school, booking, make_booking):
    chosen = generate(db, booking).suggestions[0]
    taken = combine_date_and_time(chosen.proposed_date, chosen.proposed_time)
    clash = make_booking(scheduled_date=taken, student_id=school.priya.id)

    with pytest.raises(ConflictError) as exc:
        confirm_suggestion(db, booking.id, chosen.id)

    assert exc.value.details == {"conflicting_booking_id": clash.id}
    db.refresh(booking)
    assert booking.status == BookingStatus.CONFLICT


def test_notification_failure_does_not_undo_confirm(db, booking, monkeypatch):
    from crosswind.reschedule import service

    def broken(*args, **kwargs):
        raise RuntimeError("smtp down")

    monkeypatch.setattr(service, "notify_reschedule_confirmed", broken)
    chosen = generate(db, booking).suggestions[0]
    updated, _ = confirm_suggestion(db, booking.id, chosen.id)
    assert updated.status == BookingStatus.CONFIRMED
