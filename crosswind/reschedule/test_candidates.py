"""Constraints, aircraft conflicts, slot generation and the rule-based fallback."""
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from crosswind.models import BookingStatus
from crosswind.reschedule.candidates import (
    CandidateSlot, RescheduleConstraints, RescheduleContext, _worse_of,
    build_reschedule_context, combine_date_and_time, find_aircraft_conflict,
    generate_candidate_slots, rule_based_suggestions,
)
from crosswind.weather.fetcher import WeatherObservation, get_forecast_mock

SUNDAY = datetime(2026, 10, 18, 8, 0)


def forecast_day(day, visibility, wind, cloud=10):
    return WeatherObservation(
        location="KSFO", timestamp=datetime.combine(day, datetime.min.time()),
        visibility=visibility, wind_speed=wind, wind_gust=None, wind_direction=270,
        temperature=18.0, conditions="Clear", cloud_cover=cloud,
        lat=37.77, lon=-122.42, confidence="mock",
    )


def context_with(slots, conditions=None, level="student-pilot"):
    return RescheduleContext(
        booking_id=1, scheduled_date=SUNDAY, student_name="Sam Carter",
        instructor_name="Captain Dave", aircraft_model="Cessna 172", training_level=level,
        departure=(37.77, -122.42), arrival=None, violation_reasons=["Visibility"],
        current_conditions=conditions or {"visibility": 2.0, "wind_speed": 12.0},
        slots=slots, constraints=RescheduleConstraints(), now=SUNDAY,
    )


# =============================================================================
# Constraints
# =============================================================================

def test_default_constraints():
    constraints = RescheduleConstraints()
    assert constraints.preferred_days_of_week == [1, 2, 3, 4, 5]
    assert constraints.ranges() == [{"start": "08:00", "end": "12:00"}, {"start": "14:00", "end": "18:00"}]
    assert constraints.max_days_in_future == 7


def test_time_range_is_normalized():
    constraints = RescheduleConstraints(preferred_time_ranges=[{"start": "8:00", "end": "9:30"}])
    assert constraints.ranges() == [{"start": "08:00", "end": "09:30"}]


@pytest.mark.parametrize("field,value", [
    ("preferred_days_of_week", [7]),
    ("max_days_in_future", 0),
    ("max_days_in_future", 31),
    ("available_aircraft_ids", [0]),
    ("preferred_time_ranges", [{"start": "25:00", "end": "26:00"}]),
])
def test_invalid_constraints(field, value):
    with pytest.raises(ValidationError):
        RescheduleConstraints(**{field: value})


# =============================================================================
# Aircraft conflicts
# =============================================================================

def test_combine_date_and_time():
    assert combine_date_and_time(date(2026, 10, 19), "14:30") == datetime(2026, 10, 19, 14, 30)


def test_aircraft_conflict_window_is_inclusive(db, school, make_booking):
    booked = make_booking(scheduled_date=datetime(2026, 10, 19, 10, 0))
    aircraft = school.cessna.id

    assert find_aircraft_conflict(db, aircraft, datetime(2026, 10, 19, 12, 0)).id == booked.id
    assert find_aircraft_conflict(db, aircraft, datetime(2026, 10, 19, 8, 0)).id == booked.id
    assert find_aircraft_conflict(db, aircraft, datetime(2026, 10, 19, 12, 1)) is None
    assert find_aircraft_conflict(db, school.piper.id, datetime(2026, 10, 19, 10, 0)) is None
    assert find_aircraft_conflict(db, aircraft, datetime(2026, 10, 19, 10, 0),
                                  exclude_booking_id=booked.id) is None


@pytest.mark.parametrize("status", [BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.CONFLICT])
def test_inactive_bookings_do_not_block_aircraft(db, school, make_booking, status):
    make_booking(scheduled_date=datetime(2026, 10, 19, 10, 0), status=status)
    assert find_aircraft_conflict(db, school.cessna.id, datetime(2026, 10, 19, 10, 0)) is None


# =============================================================================
# Slot generation
# =============================================================================

def test_slots_follow_preferred_days_and_times(db, make_booking):
    booking = make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0))
    slots = generate_candidate_slots(db, booking, RescheduleConstraints(), [], now=SUNDAY)

    # Mon 19th to Fri 23rd, three slots a day
    assert len(slots) == 15
    assert {s.date for s in slots} == {date(2026, 10, d) for d in range(19, 24)}
    assert [s.time for s in slots[:3]] == ["09:00", "11:00", "14:00"]
    assert all(s.forecast is None for s in slots)


def test_slots_skip_blackouts_and_busy_aircraft(db, school, make_booking):
    booking = make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0))
    make_booking(scheduled_date=datetime(2026, 10, 19, 10, 0), student_id=school.priya.id)
    constraints = RescheduleConstraints(blackout_dates=[date(2026, 10, 20)])

    slots = generate_candidate_slots(db, booking, constraints, [], now=SUNDAY)

    assert date(2026, 10, 20) not in {s.date for s in slots}
    monday = [s.time for s in slots if s.date == date(2026, 10, 19)]
    assert monday == ["14:00"]


def test_slots_use_another_allowed_aircraft(db, school, make_booking):
    booking = make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0))
    make_booking(scheduled_date=datetime(2026, 10, 19, 10, 0), student_id=school.priya.id)
    constraints = RescheduleConstraints(
        preferred_days_of_week=[1], available_aircraft_ids=[school.cessna.id, school.piper.id],
        available_instructor_ids=[school.lisa.id],
    )

    slots = generate_candidate_slots(db, booking, constraints, [], now=SUNDAY)

    assert [(s.time, s.aircraft_id) for s in slots] == [
        ("09:00", school.piper.id), ("11:00", school.piper.id), ("14:00", school.cessna.id),
    ]
    assert {s.instructor_id for s in slots} == {school.lisa.id}


def test_slot_gets_forecast_for_its_day(db, make_booking):
    booking = make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0))
    forecast = get_forecast_mock(37.77, -122.42, days=7, start=SUNDAY)
    slots = generate_candidate_slots(db, booking, RescheduleConstraints(), forecast, now=SUNDAY)
    assert slots[0].forecast.timestamp.date() == slots[0].date


def test_context_uses_latest_report_as_current_conditions(db, make_booking):
    from crosswind.dispatch.monitor import check_booking_weather

    booking = make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0))
    check_booking_weather(db, booking, scenario="low_vis")

    context = build_reschedule_context(db, booking, RescheduleConstraints(), now=SUNDAY)

    assert context.current_conditions["source"] == "recent_report"
    assert context.current_conditions["visibility"] == 2.0
    assert context.violation_reasons == [
        "Visibility: 2.0 miles (required: 5+ miles)",
        "Ceiling: 2500 ft (required: 3000+ ft)",
    ]
    assert context.training_level == "student-pilot"
    assert context.arrival is None


def test_context_without_reports_fetches_live(db, make_booking):
    booking = make_booking(scheduled_date=datetime(2026, 10, 18, 9, 0))
    context = build_reschedule_context(db, booking, RescheduleConstraints(training_level="private"),
                                       now=SUNDAY, scenario="high_wind")
    assert context.current_conditions["source"] == "live_fetch"
    assert context.current_conditions["wind_speed"] == 25.0
    assert context.training_level == "private"
    assert context.slots
    assert {slot.forecast.wind_speed for slot in context.slots} == {25.0}


def test_corridor_forecast_takes_worse_end():
    dep = forecast_day(date(2026, 10, 19), visibility=10.0, wind=6.0, cloud=10)
    arr = forecast_day(date(2026, 10, 19), visibility=3.0, wind=4.0, cloud=80)
    arr.conditions = "Mist"
    worse = _worse_of(dep, arr)
    assert (worse.visibility, worse.wind_speed, worse.cloud_cover) == (3.0, 6.0, 80)
    assert worse.conditions == "Mist"


# =============================================================================
# Rule-based fallback
# =============================================================================

def test_rule_based_ranks_safe_then_improved_then_rest():
    days = [date(2026, 10, 19), date(2026, 10, 20), date(2026, 10, 21), date(2026, 10, 22)]
    slots = [
        CandidateSlot(days[0], "09:00", 1, 1, None),                                  # unknown forecast
        CandidateSlot(days[1], "09:00", 1, 1, forecast_day(days[1], 4.0, 8.0)),       # better, not safe
        CandidateSlot(days[2], "09:00", 1, 1, forecast_day(days[2], 10.0, 5.0)),      # within minimums
        CandidateSlot(days[3], "09:00", 1, 1, forecast_day(days[3], 9.0, 6.0)),       # within minimums
    ]

    suggestions = rule_based_suggestions(context_with(slots))

    assert [s.proposed_date for s in suggestions] == [days[2], days[3], days[1]]
    assert [s.confidence for s in suggestions] == [0.65, 0.7, 0.75]
    assert all(s.source == "rule_based" for s in suggestions)
    assert suggestions[0].reason == "Rule-based suggestion: forecast within student-pilot weather minimums"
    assert suggestions[2].reason == "Rule-based suggestion: Improved weather conditions expected"
    assert "Forecast is not yet within minimums; recheck before flight" in suggestions[2].considerations
    assert suggestions[0].weather_summary == "Clear - Wind: 5 knots, Visibility: 10 miles"


def test_rule_based_falls_back_to_any_slot():
    slot = CandidateSlot(date(2026, 10, 19), "11:00", 1, 1, None)
    [suggestion] = rule_based_suggestions(context_with([slot]))
    assert suggestion.reason == "Opportunity to optimise schedule despite current weather."
    assert suggestion.weather_summary == "Unknown forecast"


def test_rule_based_without_slots_is_empty():
    assert rule_based_suggestions(context_with([])) == []
