"""Booking endpoints, role scoping and error bodies."""
from crosswind.models import BookingStatus

MONDAY_10 = "2026-10-19T10:00:00"


def payload(school, **overrides):
    body = {
        "student_id": school.sam.id,
        "instructor_id": school.dave.id,
        "aircraft_id": school.cessna.id,
        "scheduled_date": MONDAY_10,
        "departure_lat": 37.7749,
        "departure_lon": -122.4194,
    }
    body.update(overrides)
    return body


def test_student_books_own_flight(client, school, auth_headers):
    resp = client.post("/bookings", json=payload(school), headers=auth_headers(school.student_user))

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "scheduled"
    assert body["scheduled_date"] == MONDAY_10


def test_student_cannot_book_for_someone_else(client, school, auth_headers):
    resp = client.post("/bookings", json=payload(school, student_id=school.priya.id),
                       headers=auth_headers(school.student_user))
    assert resp.status_code == 403
    assert resp.json()["error"] == "Students can only book flights for themselves"


def test_aircraft_clash_returns_details(client, school, auth_headers):
    headers = auth_headers(school.instructor_user)
    first = client.post("/bookings", json=payload(school), headers=headers).json()

    resp = client.post("/bookings", headers=headers,
                       json=payload(school, student_id=school.priya.id, scheduled_date="2026-10-19T08:00:00"))

    assert resp.status_code == 409
    assert resp.json()["details"] == {
        "conflicting_booking_id": first["id"],
        "conflicting_time": MONDAY_10,
    }


def test_invalid_payloads(client, school, auth_headers):
    headers = auth_headers(school.admin)

    resp = client.post("/bookings", json=payload(school, arrival_lat=38.5), headers=headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation failed"

    assert client.post("/bookings", json=payload(school, departure_lat=91), headers=headers).status_code == 400
    assert client.post("/bookings", json=payload(school, aircraft_id=999), headers=headers).status_code == 404


def test_list_is_scoped_and_paginated(client, school, auth_headers, make_booking):
    own = make_booking()
    make_booking(student_id=school.priya.id, aircraft_id=school.piper.id)

    body = client.get("/bookings", params={"limit": 1}, headers=auth_headers(school.admin)).json()
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}

    body = client.get("/bookings", headers=auth_headers(school.student_user)).json()
    assert [b["id"] for b in body["bookings"]] == [own.id]


def test_detail_includes_history(client, school, auth_headers, make_booking):
    own = make_booking()
    other = make_booking(student_id=school.priya.id, aircraft_id=school.piper.id)
    headers = auth_headers(school.student_user)

    body = client.get(f"/bookings/{own.id}", headers=headers).json()
    assert body["weather_reports"] == []
    assert body["suggestions"] == []

    assert client.get(f"/bookings/{other.id}", headers=headers).status_code == 403
    assert client.get("/bookings/999", headers=headers).status_code == 404


def test_update_and_cancel(client, db, school, auth_headers, make_booking):
    booking = make_booking()
    headers = auth_headers(school.instructor_user)

    resp = client.patch(f"/bookings/{booking.id}", json={"notes": "Crosswind landings", "status": "confirmed"},
                        headers=headers)
    assert resp.json()["notes"] == "Crosswind landings"
    assert resp.json()["status"] == "confirmed"

    resp = client.delete(f"/bookings/{booking.id}", headers=headers)
    assert resp.json()["booking"]["status"] == "cancelled"
    db.refresh(booking)
    assert booking.status == BookingStatus.CANCELLED

    body = client.get(f"/bookings/{booking.id}", headers=headers).json()
    assert {a["action"] for a in body["audit_logs"]} == {"BOOKING_UPDATED", "BOOKING_CANCELLED"}


def test_patch_cannot_null_required_fields(client, db, school, auth_headers, make_booking):
    booking = make_booking()
    headers = auth_headers(school.instructor_user)

    for field in ("scheduled_date", "departure_lat", "status"):
        resp = client.patch(f"/bookings/{booking.id}", json={field: None}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"] == "Validation failed"

    resp = client.patch(f"/bookings/{booking.id}", json={"notes": None}, headers=headers)
    assert resp.status_code == 200
    db.refresh(booking)
    assert booking.scheduled_date is not None
    assert booking.status == BookingStatus.SCHEDULED


def test_patch_rejects_half_an_arrival(client, school, auth_headers, make_booking):
    booking = make_booking()
    resp = client.patch(f"/bookings/{booking.id}", json={"arrival_lat": 38.5816},
                        headers=auth_headers(school.instructor_user))
    assert resp.status_code == 400
    assert resp.json()["error"] == "arrival_lat and arrival_lon must be given together"
