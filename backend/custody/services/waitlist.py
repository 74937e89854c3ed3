"""Per-classroom waitlist for children refused at a full room."""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, joinedload

from .. import audit, models, notify, schemas
from ..errors import NotFound, UnknownChild
from . import capacity_ledger
from .custody_records import session_date, to_db

# purpose: queue children for a classroom and tell guardians when a place frees up
# status: active

logger = logging.getLogger(__name__)

PENDING_STATUSES = ("waiting", "notified")


def _entry_or_404(db: Session, entry_id: UUID) -> models.WaitlistEntry:
    entry = db.get(models.WaitlistEntry, entry_id)
    if entry is None:
        raise NotFound("Waitlist entry not found")
    return entry


def add_to_waitlist(
    db: Session, payload: schemas.WaitlistCreate, actor: models.User
) -> models.WaitlistEntry:
    child = db.get(models.Child, payload.child_id)
    if child is None or child.status != "active":
        raise UnknownChild()
    existing = (
        db.query(models.WaitlistEntry)
        .filter(
            models.WaitlistEntry.child_id == payload.child_id,
            models.WaitlistEntry.classroom == payload.classroom,
            models.WaitlistEntry.status.in_(PENDING_STATUSES),
        )
        .first()
    )
    if existing:
        return existing

    last = (
        db.query(sa.func.max(models.WaitlistEntry.position))
        .filter(
            models.WaitlistEntry.classroom == payload.classroom,
            models.WaitlistEntry.status.in_(PENDING_STATUSES),
        )
        .scalar()
    )
    entry = models.WaitlistEntry(
        child_id=payload.child_id,
        classroom=payload.classroom,
        position=(last or 0) + 1,
        notes=payload.notes,
    )
    db.add(entry)
    db.flush()
    audit.record_event(
        db,
        "waitlist.added",
        actor.id,
        child_id=payload.child_id,
        target_type="waitlist",
        target_id=entry.id,
        details={"classroom": entry.classroom, "position": entry.position},
    )
    db.commit()
    db.refresh(entry)
    return entry


def list_waitlist(
    db: Session, classroom: str, include_closed: bool = False
) -> list[models.WaitlistEntry]:
    query = (
        db.query(models.WaitlistEntry)
        .options(joinedload(models.WaitlistEntry.child))
        .filter(models.WaitlistEntry.classroom == classroom)
    )
    if not include_closed:
        query = query.filter(models.WaitlistEntry.status.in_(PENDING_STATUSES))
    return query.order_by(models.WaitlistEntry.position.asc()).all()


def update_status(
    db: Session, entry_id: UUID, status: str, actor: models.User
) -> models.WaitlistEntry:
    entry = _entry_or_404(db, entry_id)
    entry.status = status
    if status == "notified" and entry.notified_at is None:
        entry.notified_at = to_db(datetime.now(timezone.utc))
    db.commit()
    db.refresh(entry)
    return entry


def remove_entry(db: Session, entry_id: UUID, actor: models.User) -> None:
    entry = _entry_or_404(db, entry_id)
    db.delete(entry)
    db.commit()


def mark_admitted(db: Session, child_id: UUID, classroom: str) -> int:
    """Close pending entries of a child that was just admitted; no commit."""

    return (
        db.query(models.WaitlistEntry)
        .filter(
            models.WaitlistEntry.child_id == child_id,
            models.WaitlistEntry.classroom == classroom,
            models.WaitlistEntry.status.in_(PENDING_STATUSES),
        )
        .update({"status": "admitted"}, synchronize_session=False)
    )


def notify_next_waiting(
    db: Session, classroom: str, now: datetime
) -> models.WaitlistEntry | None:
    """Tell the guardians of the first waiting child that the room has space."""

    if not capacity_ledger.has_room(db, classroom, session_date(now)):
        return None
    entry = (
        db.query(models.WaitlistEntry)
        .filter(
            models.WaitlistEntry.classroom == classroom,
            models.WaitlistEntry.status == "waiting",
        )
        .order_by(models.WaitlistEntry.position.asc())
        .first()
    )
    if entry is None:
        return None
    entry.status = "notified"
    entry.notified_at = to_db(now)
    audit.record_event(
        db,
        "waitlist.notified",
        None,
        child_id=entry.child_id,
        target_type="waitlist",
        target_id=entry.id,
        details={"classroom": classroom, "position": entry.position},
        timestamp=now,
    )
    db.commit()
    db.refresh(entry)

    guardians = (
        db.query(models.Guardian)
        .join(models.ChildGuardian, models.ChildGuardian.guardian_id == models.Guardian.id)
        .filter(
            models.ChildGuardian.child_id == entry.child_id,
            models.ChildGuardian.is_primary.is_(True),
        )
        .all()
    )
    child_name = entry.child.full_name if entry.child else "your child"
    message = f"A place is now available in {classroom} for {child_name}."
    for guardian in guardians:
        if not guardian.email:
            continue
        try:
            notify.send_email(guardian.email, "Classroom place available", message)
        except (OSError, smtplib.SMTPException):
            logger.exception("waitlist email to %s failed", guardian.email)
    logger.info("waitlist entry %s notified for %s", entry.id, classroom)
    return entry
