"""Weather lookups, booking checks and the monitor endpoints."""
from crosswind.models import BookingStatus

SAN_FRANCISCO = {"lat": 37.7749, "lon": -122.4194}


def test_current_weather_with_minimums(client, school, auth_headers):
    headers = auth_headers(school.student_user)

    body = client.get("/weather/current", params={**SAN_FRANCISCO, "training_level": "student-pilot"},
                      headers=headers).json()
    assert body["weather"]["conditions"] == "Clear"
    assert body["safety"]["is_safe"] is True

    body = client.get("/weather/current", params={**SAN_FRANCISCO, "training_level": "Private",
                                                  "scenario": "high_wind"}, headers=headers).json()
    assert body["safety"]["is_safe"] is False
    assert body["safety"]["training_level"] == "private-pilot"


def test_current_weather_without_level(client, school, auth_headers):
    body = client.get("/weather/current", params=SAN_FRANCISCO, headers=auth_headers(school.admin)).json()
    assert set(body) == {"weather"}


def test_unknown_training_level(client, school, auth_headers):
    resp = client.get("/weather/current", params={**SAN_FRANCISCO, "training_level": "astronaut"},
                      headers=auth_headers(school.admin))
    assert resp.status_code == 400
    assert resp.json()["details"] == {"level": "astronaut"}


def test_forecast(client, school, auth_headers):
    headers = auth_headers(school.admin)
    body = client.get("/weather/forecast", params={**SAN_FRANCISCO, "days": 3}, headers=headers).json()
    assert len(body["forecast"]) == 3

    assert client.get("/weather/forecast", params={**SAN_FRANCISCO, "days": 30}, headers=headers).status_code == 400
    assert client.get("/weather/forecast", params={"lat": 120, "lon": 0}, headers=headers).status_code == 400


def test_check_booking_flags_conflict(client, db, school, auth_headers, make_booking, outbox):
    booking = make_booking()
    headers = auth_headers(school.student_user)

    resp = client.post(f"/weather/check/{booking.id}", params={"scenario": "high_wind"}, headers=headers)
    body = resp.json()
    assert body["success"] is True
    assert body["has_conflict"] is True
    assert body["locations_checked"] == 1

    db.refresh(booking)
    assert booking.status == BookingStatus.CONFLICT

    reports = client.get(f"/weather/check/{booking.id}", headers=headers).json()
    assert reports["status"] == "conflict"
    assert reports["count"] == 1
    assert reports["reports"][0]["is_safe"] is False


def test_check_requires_access(client, school, auth_headers, make_booking):
    other = make_booking(student_id=school.priya.id)
    headers = auth_headers(school.student_user)
    assert client.post(f"/weather/check/{other.id}", headers=headers).status_code == 403
    assert client.post("/weather/check/999", headers=headers).status_code == 404


def test_monitor_run(client, school, auth_headers, make_booking):
    make_booking()
    make_booking(aircraft_id=school.piper.id, student_id=school.priya.id)

    assert client.post("/weather/monitor", headers=auth_headers(school.student_user)).status_code == 403

    headers = auth_headers(school.instructor_user)
    body = client.post("/weather/monitor", params={"dry_run": True}, headers=headers).json()
    assert body["type"] == "dry_run"

    body = client.post("/weather/monitor", params={"scenario": "high_wind"}, headers=headers).json()
    assert body["result"]["total_bookings"] == 2
    assert body["result"]["conflicts_detected"] == 2
    assert body["summary"]["conflicts_rate"] == "100.0%"
    assert body["summary"]["error_rate"] == "0.0%"

    stats = client.get("/weather/monitor", headers=headers).json()["stats"]
    assert stats["total_bookings"] == 2
