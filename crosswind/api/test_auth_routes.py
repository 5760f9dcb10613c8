"""Signup, login and the current-user endpoint."""
from crosswind.models import Booking, Instructor, Student, User, UserRole

PASSWORD = "secret123"


def signup(client, **overrides):
    body = {"email": "New.Pilot@Example.com", "password": "flyhigh1", "name": "New Pilot"}
    body.update(overrides)
    return client.post("/auth/signup", json=body)


def test_signup_creates_student_with_sample_flights(client, db):
    resp = signup(client)

    assert resp.status_code == 201
    body = resp.json()
    assert body["user"]["email"] == "new.pilot@example.com"
    assert body["user"]["role"] == "student"
    assert body["token_type"] == "bearer"
    assert body["sample_data"] == {"bookings_created": 4, "alerts_created": 2}

    student = db.query(Student).one()
    assert student.user.email == "new.pilot@example.com"
    assert db.query(Booking).filter(Booking.student_id == student.id).count() == 4


def test_signup_links_existing_profile(client, db, school):
    db.add(Student(name="Walk In", email="walkin@students.crosswind.app", training_level="private-pilot"))
    db.commit()

    resp = signup(client, email="walkin@students.crosswind.app")

    assert resp.status_code == 201
    assert resp.json()["sample_data"] is None
    assert db.query(Student).filter(Student.email == "walkin@students.crosswind.app").one().user_id is not None


def test_instructor_training_level_creates_instructor(client, db):
    resp = signup(client, training_level="instructor")

    assert resp.json()["user"]["role"] == "instructor"
    assert db.query(Instructor).one().email == "new.pilot@example.com"
    assert db.query(Student).count() == 0


def test_duplicate_signup_is_rejected(client, school):
    resp = signup(client, email="Sam@Students.Crosswind.App")
    assert resp.status_code == 409
    assert resp.json()["details"]["email"] == "sam@students.crosswind.app"


def test_signup_cannot_create_admins(client, db):
    resp = signup(client, role="admin")
    assert resp.status_code == 403
    assert db.query(User).filter(User.role == UserRole.ADMIN).count() == 0


def test_signup_validation(client):
    resp = signup(client, password="abc")
    assert resp.status_code == 400
    assert resp.json()["error"] == "Validation failed"

    assert signup(client, training_level="astronaut").status_code == 400


def test_login(client, school):
    resp = client.post("/auth/login", json={"email": "dave@flightschool.com", "password": PASSWORD})
    assert resp.status_code == 200
    assert resp.json()["user"]["role"] == "instructor"

    resp = client.post("/auth/login", json={"email": "dave@flightschool.com", "password": "wrong-password"})
    assert resp.status_code == 401
    assert resp.json() == {"error": "Invalid email or password"}


def test_me_returns_linked_profile(client, school, auth_headers):
    resp = client.get("/auth/me", headers=auth_headers(school.student_user))
    body = resp.json()
    assert body["user"]["email"] == "sam@students.crosswind.app"
    assert body["student"]["training_level"] == "student-pilot"
    assert body["instructor"] is None


def test_me_requires_a_token(client):
    resp = client.get("/auth/me")
    assert resp.status_code == 401
    assert resp.json()["error"] == "Authentication required"

    resp = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert resp.status_code == 401
