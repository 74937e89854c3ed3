"""Open and closed check-in records: the source of truth for who is present."""

from __future__ import annotations

import secrets
from datetime import date, datetime, timezone
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, joinedload

from .. import config, models

# purpose: persist custody records, mint custody tokens and labels, close records atomically
# status: active
# depends_on: backend.custody.models.ChildCheckIn

TOKEN_BYTES = 32


def as_utc(value: datetime | None) -> datetime | None:
    """Columns are stored as naive UTC; attach the zone when reading them back."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db(value: datetime | None) -> datetime | None:
    value = as_utc(value)
    return value.replace(tzinfo=None) if value else None


def session_date(now: datetime) -> date:
    """Calendar day of a session in the organization's local timezone."""

    return as_utc(now).astimezone(config.CUSTODY_TIMEZONE).date()


def generate_token() -> str:
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_label() -> str:
    digits = config.LABEL_NUMBER_DIGITS
    low = 10 ** (digits - 1)
    return str(low + secrets.randbelow(10**digits - low))


def open_record_for_child(db: Session, child_id: UUID) -> models.ChildCheckIn | None:
    return (
        db.query(models.ChildCheckIn)
        .filter(
            models.ChildCheckIn.child_id == child_id,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
        .first()
    )


def find_open_by_token(db: Session, token: str) -> models.ChildCheckIn | None:
    if not token:
        return None
    return (
        db.query(models.ChildCheckIn)
        .filter(
            models.ChildCheckIn.qr_code == token,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
        .first()
    )


def get_open_record(db: Session, record_id: UUID) -> models.ChildCheckIn | None:
    return (
        db.query(models.ChildCheckIn)
        .filter(
            models.ChildCheckIn.id == record_id,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
        .first()
    )


def insert_record(
    db: Session,
    *,
    child_id: UUID,
    event_date: date,
    event_name: str,
    classroom: str,
    actor_id: UUID | None,
    now: datetime,
) -> models.ChildCheckIn:
    record = models.ChildCheckIn(
        child_id=child_id,
        event_date=event_date,
        event_name=event_name,
        classroom=classroom,
        label_number=generate_label(),
        qr_code=generate_token(),
        checked_in_at=to_db(now),
        checked_in_by=actor_id,
    )
    db.add(record)
    db.flush()
    return record


def close_record(
    db: Session,
    record_id: UUID,
    *,
    actor_id: UUID | None,
    pickup_person_name: str,
    pickup_method: str,
    now: datetime,
    notes: str | None = None,
) -> bool:
    """Close the record if it is still open; False when someone else closed it first."""

    values = {
        "checked_out_at": to_db(now),
        "checked_out_by": actor_id,
        "pickup_person_name": pickup_person_name,
        "pickup_method": pickup_method,
    }
    if notes is not None:
        values["notes"] = notes
    result = db.execute(
        sa.update(models.ChildCheckIn)
        .where(
            models.ChildCheckIn.id == record_id,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_present(
    db: Session, event_date: date, classroom: str | None = None
) -> list[models.ChildCheckIn]:
    query = (
        db.query(models.ChildCheckIn)
        .options(joinedload(models.ChildCheckIn.child))
        .filter(
            models.ChildCheckIn.event_date == event_date,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
    )
    if classroom:
        query = query.filter(models.ChildCheckIn.classroom == classroom)
    return query.order_by(models.ChildCheckIn.checked_in_at.asc()).all()


def list_day(
    db: Session, event_date: date, classroom: str | None = None
) -> list[models.ChildCheckIn]:
    query = db.query(models.ChildCheckIn).filter(models.ChildCheckIn.event_date == event_date)
    if classroom:
        query = query.filter(models.ChildCheckIn.classroom == classroom)
    return query.order_by(models.ChildCheckIn.checked_in_at.asc()).all()


def history_for_child(db: Session, child_id: UUID, limit: int = 50) -> list[models.ChildCheckIn]:
    return (
        db.query(models.ChildCheckIn)
        .filter(models.ChildCheckIn.child_id == child_id)
        .order_by(models.ChildCheckIn.checked_in_at.desc())
        .limit(limit)
        .all()
    )
