"""
Ingestion pipeline: reads bucket files, validates, upserts to DB.
Idempotent: same input = same hash = skips re-insert.

Bucket layout (data/bucket/):
  users.json, students.json, instructors.json, aircraft.json
  weather_minimums.md   → RulesDoc "doc_minimums", chunked for retrieval
"""
import hashlib
import json
import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.orm import Session

from crosswind.auth.security import hash_password
from crosswind.ingestion.schemas import UserSeed, StudentSeed, InstructorSeed, AircraftSeed
from crosswind.models import Aircraft, Instructor, IngestionRun, RulesDoc, Student, User

logger = logging.getLogger(__name__)

BUCKET_DIR = Path(__file__).resolve().parents[2] / "data" / "bucket"

RULES_DOCS = [
    ("doc_minimums", "Weather Minimums by Training Level", "weather_minimums.md"),
]


# ── Helpers ───────────────────────────────────────────────────────────────────

def _hash_file(path: Path) -> str:
    return hashlib.md5(path.read_bytes()).hexdigest()


def bucket_hash(bucket: Path) -> str:
    """Single hash of all bucket files combined."""
    combined = "".join(
        _hash_file(f) for f in sorted(bucket.iterdir()) if f.is_file()
    )
    return hashlib.md5(combined.encode()).hexdigest()


def _load_json(bucket: Path, filename: str) -> list:
    path = bucket / filename
    return json.loads(path.read_text()) if path.exists() else []


def _user_id(db: Session, email: Optional[str]) -> Optional[int]:
    if not email:
        return None
    user = db.query(User).filter(User.email == email.lower()).first()
    return user.id if user else None


def _upsert(db: Session, model, key: str, records: list[dict]) -> dict:
    """Insert or update by natural key. Returns {"upserted": [...], "unchanged": [...]}."""
    diff = {"upserted": [], "unchanged": []}

    for data in records:
        key_value = data[key]
        existing = db.query(model).filter(getattr(model, key) == key_value).first()

        if existing:
            changed = {k: v for k, v in data.items() if getattr(existing, k) != v}
            if changed:
                for k, v in changed.items():
                    setattr(existing, k, v)
                diff["upserted"].append(key_value)
            else:
                diff["unchanged"].append(key_value)
        else:
            db.add(model(**data))
            diff["upserted"].append(key_value)

    db.flush()
    return diff


# ── Per-entity upserts ────────────────────────────────────────────────────────

def _upsert_users(db: Session, bucket: Path) -> dict:
    records = [UserSeed(**r) for r in _load_json(bucket, "users.json")]   # validates
    diff = {"upserted": [], "unchanged": []}

    for r in records:
        email = r.email.lower()
        existing = db.query(User).filter(User.email == email).first()
        if existing is None:
            db.add(User(email=email, name=r.name, role=r.role,
                        password_hash=hash_password(r.password)))
            diff["upserted"].append(email)
        elif (existing.name, existing.role) != (r.name, r.role):
            existing.name, existing.role = r.name, r.role
            diff["upserted"].append(email)
        else:
            # passwords are never overwritten by a re-run
            diff["unchanged"].append(email)

    db.flush()
    return diff


def _upsert_students(db: Session, bucket: Path) -> dict:
    records = [StudentSeed(**r) for r in _load_json(bucket, "students.json")]
    rows = []
    for r in records:
        data = r.model_dump(exclude={"user_email"})
        data["email"] = data["email"].lower()
        data["user_id"] = _user_id(db, r.user_email)
        rows.append(data)
    return _upsert(db, Student, "email", rows)


def _upsert_instructors(db: Session, bucket: Path) -> dict:
    records = [InstructorSeed(**r) for r in _load_json(bucket, "instructors.json")]
    rows = []
    for r in records:
        data = r.model_dump(exclude={"user_email"})
        data["email"] = data["email"].lower()
        data["user_id"] = _user_id(db, r.user_email)
        rows.append(data)
    return _upsert(db, Instructor, "email", rows)


def _upsert_aircraft(db: Session, bucket: Path) -> dict:
    records = [AircraftSeed(**r) for r in _load_json(bucket, "aircraft.json")]
    return _upsert(db, Aircraft, "tail_number", [r.model_dump() for r in records])


def _upsert_rules_docs(db: Session, bucket: Path) -> dict:
    diff = {"upserted": [], "unchanged": []}

    for doc_id, title, filename in RULES_DOCS:
        path = bucket / filename
        if not path.exists():
            continue
        content = path.read_text()
        chunks = chunk_text(content, doc_id)
        existing = db.get(RulesDoc, doc_id)

        if existing:
            if existing.content != content:
                existing.content = content
                existing.chunks = chunks
                diff["upserted"].append(doc_id)
            else:
                diff["unchanged"].append(doc_id)
        else:
            db.add(RulesDoc(id=doc_id, title=title, content=content, chunks=chunks))
            diff["upserted"].append(doc_id)

    return diff


def chunk_text(text: str, doc_id: str) -> list[dict]:
    """One chunk per markdown paragraph, with ids for citations."""
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    return [
        {"chunk_id": f"{doc_id}#chunk{i + 1}", "text": para}
        for i, para in enumerate(paragraphs)
    ]


# ── Main entry point ──────────────────────────────────────────────────────────

def run_ingestion(db: Session, force: bool = False, bucket: Optional[Path] = None) -> dict:
    """
    Run full ingestion. Skips if bucket hash unchanged (idempotent).
    Set force=True to re-ingest regardless.
    """
    bucket = Path(bucket or BUCKET_DIR)
    source_hash = bucket_hash(bucket)

    if not force:
        last_run = (
            db.query(IngestionRun)
            .filter(IngestionRun.status == "success")
            .order_by(IngestionRun.id.desc())
            .first()
        )
        if last_run and last_run.source_hash == source_hash:
            logger.info("Ingestion skipped, bucket unchanged (%s)", source_hash)
            return {"status": "skipped", "reason": "bucket unchanged", "hash": source_hash}

    diff_summary = {}
    try:
        diff_summary["users"] = _upsert_users(db, bucket)
        diff_summary["students"] = _upsert_students(db, bucket)
        diff_summary["instructors"] = _upsert_instructors(db, bucket)
        diff_summary["aircraft"] = _upsert_aircraft(db, bucket)
        diff_summary["rules_docs"] = _upsert_rules_docs(db, bucket)

        db.add(IngestionRun(source_hash=source_hash, status="success", diff_summary=diff_summary))
        db.commit()

    except Exception as e:
        db.rollback()
        logger.exception("Ingestion failed")
        db.add(IngestionRun(source_hash=source_hash, status="failed", diff_summary={"error": str(e)}))
        db.commit()
        raise

    logger.info("Ingestion done: %s", {k: len(v["upserted"]) for k, v in diff_summary.items()})
    return {"status": "success", "hash": source_hash, "diff": diff_summary}
