"""Classroom occupancy derived from open custody records."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import config, models, schemas
from ..errors import InactiveClassroom

# purpose: answer "how many children are in this room today" without a stored counter
# status: active
# depends_on: backend.custody.models.ClassroomSettings, backend.custody.models.ChildCheckIn


@dataclass(frozen=True)
class ClassroomPolicy:
    name: str
    max_capacity: int
    is_active: bool = True
    ratio_children_per_adult: int | None = None
    min_age_months: int | None = None
    max_age_months: int | None = None
    persisted: bool = False


def _policy_from_row(row: models.ClassroomSettings) -> ClassroomPolicy:
    return ClassroomPolicy(
        name=row.classroom_name,
        max_capacity=row.max_capacity,
        is_active=bool(row.is_active),
        ratio_children_per_adult=row.ratio_children_per_adult,
        min_age_months=row.min_age_months,
        max_age_months=row.max_age_months,
        persisted=True,
    )


def _policy_from_catalog(name: str, entry: dict) -> ClassroomPolicy:
    return ClassroomPolicy(
        name=name,
        max_capacity=int(entry.get("max_capacity", config.DEFAULT_CLASSROOM_CAPACITY)),
        is_active=bool(entry.get("is_active", True)),
        ratio_children_per_adult=entry.get("ratio_children_per_adult"),
        min_age_months=entry.get("min_age_months"),
        max_age_months=entry.get("max_age_months"),
    )


def resolve_policy(db: Session, classroom: str) -> ClassroomPolicy | None:
    """Return the configured policy for ``classroom``.

    A settings row wins over the default catalog; classrooms found in neither
    are unknown and yield ``None``.
    """

    row = (
        db.query(models.ClassroomSettings)
        .filter(models.ClassroomSettings.classroom_name == classroom)
        .first()
    )
    if row is not None:
        return _policy_from_row(row)
    entry = config.DEFAULT_CLASSROOMS.get(classroom)
    if entry is not None:
        return _policy_from_catalog(classroom, entry)
    return None


def count_open(db: Session, classroom: str, event_date: date) -> int:
    return (
        db.query(sa.func.count(models.ChildCheckIn.id))
        .filter(
            models.ChildCheckIn.classroom == classroom,
            models.ChildCheckIn.event_date == event_date,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
        .scalar()
        or 0
    )


def _build_occupancy(
    classroom: str, event_date: date, current: int, policy: ClassroomPolicy | None
) -> schemas.ClassroomOccupancy:
    maximum = policy.max_capacity if policy else 0
    active = bool(policy and policy.is_active)
    adults = None
    if policy and policy.ratio_children_per_adult:
        adults = math.ceil(current / policy.ratio_children_per_adult)
    return schemas.ClassroomOccupancy(
        classroom=classroom,
        event_date=event_date,
        current=current,
        max=maximum,
        is_active=active,
        available=max(maximum - current, 0),
        is_full=current >= maximum,
        adults_required=adults,
    )


def occupancy(db: Session, classroom: str, event_date: date) -> schemas.ClassroomOccupancy:
    policy = resolve_policy(db, classroom)
    return _build_occupancy(classroom, event_date, count_open(db, classroom, event_date), policy)


def has_room(db: Session, classroom: str, event_date: date) -> bool:
    """False for unknown or inactive classrooms and when the room is at capacity."""

    policy = resolve_policy(db, classroom)
    if policy is None or not policy.is_active:
        return False
    return count_open(db, classroom, event_date) < policy.max_capacity


def lock_policy_row(db: Session, classroom: str) -> ClassroomPolicy:
    """Lock the classroom's settings row for the current admission transaction.

    Catalog classrooms without a row are materialized first so that every
    admission has a row to lock. Must run before any other write in the
    transaction: a lost materialization race rolls the session back.
    """

    stmt = (
        sa.select(models.ClassroomSettings)
        .where(models.ClassroomSettings.classroom_name == classroom)
        .with_for_update()
    )
    row = db.execute(stmt).scalar_one_or_none()
    if row is None:
        entry = config.DEFAULT_CLASSROOMS.get(classroom)
        if entry is None:
            raise InactiveClassroom()
        policy = _policy_from_catalog(classroom, entry)
        db.add(
            models.ClassroomSettings(
                classroom_name=classroom,
                max_capacity=policy.max_capacity,
                ratio_children_per_adult=policy.ratio_children_per_adult,
                min_age_months=policy.min_age_months,
                max_age_months=policy.max_age_months,
                is_active=policy.is_active,
            )
        )
        try:
            db.flush()
        except IntegrityError:
            # another process created the row first
            db.rollback()
        row = db.execute(stmt).scalar_one()
    return _policy_from_row(row)


def list_occupancy(db: Session, event_date: date) -> list[schemas.ClassroomOccupancy]:
    """Occupancy of every known classroom for the dashboard."""

    rows = {
        row.classroom_name: _policy_from_row(row)
        for row in db.query(models.ClassroomSettings).all()
    }
    policies: dict[str, ClassroomPolicy] = {
        name: _policy_from_catalog(name, entry)
        for name, entry in config.DEFAULT_CLASSROOMS.items()
    }
    policies.update(rows)

    counts = dict(
        db.query(models.ChildCheckIn.classroom, sa.func.count(models.ChildCheckIn.id))
        .filter(
            models.ChildCheckIn.event_date == event_date,
            models.ChildCheckIn.checked_out_at.is_(None),
        )
        .group_by(models.ChildCheckIn.classroom)
        .all()
    )
    # rooms removed from configuration may still hold children
    names = sorted(set(policies) | set(counts))
    return [
        _build_occupancy(name, event_date, int(counts.get(name, 0)), policies.get(name))
        for name in names
    ]


def upsert_settings(
    db: Session, payload: schemas.ClassroomSettingsCreate
) -> models.ClassroomSettings:
    row = (
        db.query(models.ClassroomSettings)
        .filter(models.ClassroomSettings.classroom_name == payload.classroom_name)
        .first()
    )
    if row is None:
        row = models.ClassroomSettings(classroom_name=payload.classroom_name)
        db.add(row)
    for field, value in payload.model_dump(exclude={"classroom_name"}).items():
        setattr(row, field, value)
    db.commit()
    db.refresh(row)
    return row
