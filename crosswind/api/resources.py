"""
Students, instructors, aircraft. Reads need a login; writes need instructor+.
"""
import math
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from crosswind.auth.security import get_current_user, require_role
from crosswind.database import get_db
from crosswind.errors import ConflictError, NotFoundError
from crosswind.models import (
    Aircraft, AircraftStatus, Booking, Instructor, Student, UserRole, CLOSED_STATUSES,
)
from crosswind.schemas import (
    AircraftCreate, AircraftOut, AircraftUpdate,
    InstructorCreate, InstructorOut, InstructorUpdate,
    StudentCreate, StudentOut, StudentUpdate,
    dump, dump_all,
)

router = APIRouter(tags=["resources"], dependencies=[Depends(get_current_user)])
staff = require_role(UserRole.INSTRUCTOR)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _get(db: Session, model, entity_id: int, label: str):
    obj = db.get(model, entity_id)
    if obj is None:
        raise NotFoundError(f"{label} not found")
    return obj


def _ensure_unique(db: Session, column, value, label: str, exclude_id: Optional[int] = None):
    q = db.query(column.class_).filter(func.lower(column) == value.lower())
    if exclude_id is not None:
        q = q.filter(column.class_.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"{label} already exists", details={column.key: value})


def _ensure_deletable(db: Session, fk_column, entity_id: int, label: str):
    bookings = db.query(Booking).filter(fk_column == entity_id)
    active = bookings.filter(Booking.status.notin_(CLOSED_STATUSES)).count()
    if active:
        raise ConflictError(
            f"Cannot delete {label} with active bookings. Cancel or complete bookings first.",
            details={"active_bookings": active},
        )
    if bookings.count():
        raise ConflictError(f"Cannot delete {label} with booking history")


def _page(q, page: int, limit: int) -> tuple[list, dict]:
    total = q.count()
    items = q.offset((page - 1) * limit).limit(limit).all()
    return items, {"page": page, "limit": limit, "total": total, "pages": math.ceil(total / limit)}


def _apply(obj, changes: dict):
    for key, value in changes.items():
        setattr(obj, key, value)


# ── Students ──────────────────────────────────────────────────────────────────

@router.get("/students")
def list_students(
    training_level: Optional[str] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    q = db.query(Student)
    if training_level:
        q = q.filter(Student.training_level == training_level.lower())
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(Student.name).like(like), func.lower(Student.email).like(like)))
    students, pagination = _page(q.order_by(Student.name), page, limit)
    return {"students": dump_all(StudentOut, students), "pagination": pagination}


@router.post("/students", status_code=201, dependencies=[Depends(staff)])
def create_student(body: StudentCreate, db: Session = Depends(get_db)):
    _ensure_unique(db, Student.email, body.email, "Student with this email")
    student = Student(**body.model_dump())
    student.email = student.email.lower()
    db.add(student)
    db.commit()
    db.refresh(student)
    return dump(StudentOut, student)


@router.get("/students/{student_id}")
def get_student(student_id: int, db: Session = Depends(get_db)):
    return dump(StudentOut, _get(db, Student, student_id, "Student"))


@router.patch("/students/{student_id}", dependencies=[Depends(staff)])
def update_student(student_id: int, body: StudentUpdate, db: Session = Depends(get_db)):
    student = _get(db, Student, student_id, "Student")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("email"):
        _ensure_unique(db, Student.email, changes["email"], "Student with this email", student.id)
        changes["email"] = changes["email"].lower()
    _apply(student, changes)
    db.commit()
    db.refresh(student)
    return dump(StudentOut, student)


@router.delete("/students/{student_id}", dependencies=[Depends(staff)])
def delete_student(student_id: int, db: Session = Depends(get_db)):
    student = _get(db, Student, student_id, "Student")
    _ensure_deletable(db, Booking.student_id, student.id, "student")
    db.delete(student)
    db.commit()
    return {"message": "Student deleted successfully"}


# ── Instructors ───────────────────────────────────────────────────────────────

@router.get("/instructors")
def list_instructors(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    q = db.query(Instructor)
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(Instructor.name).like(like), func.lower(Instructor.email).like(like)))
    instructors, pagination = _page(q.order_by(Instructor.name), page, limit)
    return {"instructors": dump_all(InstructorOut, instructors), "pagination": pagination}


@router.post("/instructors", status_code=201, dependencies=[Depends(staff)])
def create_instructor(body: InstructorCreate, db: Session = Depends(get_db)):
    _ensure_unique(db, Instructor.email, body.email, "Instructor with this email")
    instructor = Instructor(**body.model_dump())
    instructor.email = instructor.email.lower()
    db.add(instructor)
    db.commit()
    db.refresh(instructor)
    return dump(InstructorOut, instructor)


@router.get("/instructors/{instructor_id}")
def get_instructor(instructor_id: int, db: Session = Depends(get_db)):
    return dump(InstructorOut, _get(db, Instructor, instructor_id, "Instructor"))


@router.patch("/instructors/{instructor_id}", dependencies=[Depends(staff)])
def update_instructor(instructor_id: int, body: InstructorUpdate, db: Session = Depends(get_db)):
    instructor = _get(db, Instructor, instructor_id, "Instructor")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("email"):
        _ensure_unique(db, Instructor.email, changes["email"], "Instructor with this email", instructor.id)
        changes["email"] = changes["email"].lower()
    _apply(instructor, changes)
    db.commit()
    db.refresh(instructor)
    return dump(InstructorOut, instructor)


@router.delete("/instructors/{instructor_id}", dependencies=[Depends(staff)])
def delete_instructor(instructor_id: int, db: Session = Depends(get_db)):
    instructor = _get(db, Instructor, instructor_id, "Instructor")
    _ensure_deletable(db, Booking.instructor_id, instructor.id, "instructor")
    db.delete(instructor)
    db.commit()
    return {"message": "Instructor deleted successfully"}


# ── Aircraft ──────────────────────────────────────────────────────────────────

@router.get("/aircraft")
def list_aircraft(
    status: Optional[AircraftStatus] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: Session = Depends(get_db),
):
    q = db.query(Aircraft)
    if status is not None:
        q = q.filter(Aircraft.status == status)
    aircraft, pagination = _page(q.order_by(Aircraft.tail_number), page, limit)
    return {"aircraft": dump_all(AircraftOut, aircraft), "pagination": pagination}


@router.post("/aircraft", status_code=201, dependencies=[Depends(staff)])
def create_aircraft(body: AircraftCreate, db: Session = Depends(get_db)):
    _ensure_unique(db, Aircraft.tail_number, body.tail_number, "Aircraft with this tail number")
    aircraft = Aircraft(**body.model_dump())
    db.add(aircraft)
    db.commit()
    db.refresh(aircraft)
    return dump(AircraftOut, aircraft)


@router.get("/aircraft/{aircraft_id}")
def get_aircraft(aircraft_id: int, db: Session = Depends(get_db)):
    return dump(AircraftOut, _get(db, Aircraft, aircraft_id, "Aircraft"))


@router.patch("/aircraft/{aircraft_id}", dependencies=[Depends(staff)])
def update_aircraft(aircraft_id: int, body: AircraftUpdate, db: Session = Depends(get_db)):
    aircraft = _get(db, Aircraft, aircraft_id, "Aircraft")
    changes = body.model_dump(exclude_unset=True)
    if changes.get("tail_number"):
        _ensure_unique(db, Aircraft.tail_number, changes["tail_number"],
                       "Aircraft with this tail number", aircraft.id)
    _apply(aircraft, changes)
    db.commit()
    db.refresh(aircraft)
    return dump(AircraftOut, aircraft)


@router.delete("/aircraft/{aircraft_id}", dependencies=[Depends(staff)])
def delete_aircraft(aircraft_id: int, db: Session = Depends(get_db)):
    aircraft = _get(db, Aircraft, aircraft_id, "Aircraft")
    _ensure_deletable(db, Booking.aircraft_id, aircraft.id, "aircraft")
    db.delete(aircraft)
    db.commit()
    return {"message": "Aircraft deleted successfully"}
