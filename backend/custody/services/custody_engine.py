"""Check-in and check-out transitions for children in custody.

Every mutating call validates against a fresh read inside its own
transaction and either commits the whole transition, audit row included, or
rolls it back and raises one of the :mod:`custody.errors` failures.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .. import audit, models
from ..errors import (
    AlreadyCheckedIn,
    ClassroomFull,
    CustodyError,
    GrantExpiredOrUsed,
    InactiveClassroom,
    InvalidPin,
    NotAuthorized,
    NotFound,
    UnknownChild,
    UnknownOrAlreadyClosed,
)
from ..metrics import ADMISSION_REJECTIONS, CUSTODY_TRANSITIONS, PIN_REJECTIONS
from . import authorization_directory, capacity_ledger, custody_records, waitlist
from .authorization_directory import Provenance, TemporaryCandidate

# purpose: own the Absent -> Present -> Departed state machine for each child and session day
# status: active
# depends_on: capacity_ledger, custody_records, authorization_directory

logger = logging.getLogger(__name__)

_guard_registry = threading.Lock()
_guards: dict[str, threading.Lock] = {}


@contextmanager
def admission_guard(*keys: str) -> Iterator[None]:
    """Serialize admissions sharing any of ``keys`` within this process.

    Locks are taken in sorted order so overlapping key sets cannot deadlock.
    Row locks taken inside the guarded block cover other processes.
    """

    with _guard_registry:
        locks = [_guards.setdefault(key, threading.Lock()) for key in sorted(set(keys))]
    acquired: list[threading.Lock] = []
    try:
        for lock in locks:
            lock.acquire()
            acquired.append(lock)
        yield
    finally:
        for lock in reversed(acquired):
            lock.release()


def _now(now: datetime | None) -> datetime:
    return custody_records.as_utc(now) if now else datetime.now(timezone.utc)


def _reject(exc: CustodyError) -> CustodyError:
    ADMISSION_REJECTIONS.labels(exc.code).inc()
    return exc


def check_in(
    db: Session,
    *,
    child_id: UUID,
    event_name: str,
    actor_id: UUID | None,
    classroom: str | None = None,
    now: datetime | None = None,
) -> models.ChildCheckIn:
    """Admit a child into a classroom for today's session.

    ``classroom`` defaults to the child's current assignment and is
    snapshotted on the record.
    """

    now = _now(now)
    event_date = custody_records.session_date(now)
    child = db.get(models.Child, child_id)
    if child is None or child.status != "active":
        raise _reject(UnknownChild())
    classroom = classroom or child.classroom

    with admission_guard(f"classroom:{classroom}:{event_date}", f"child:{child_id}"):
        try:
            policy = capacity_ledger.lock_policy_row(db, classroom)
            if not policy.is_active:
                raise InactiveClassroom()
            locked = db.execute(
                sa.select(models.Child)
                .where(models.Child.id == child_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if locked is None or locked.status != "active":
                raise UnknownChild()
            if custody_records.open_record_for_child(db, child_id) is not None:
                raise AlreadyCheckedIn()
            if not capacity_ledger.has_room(db, classroom, event_date):
                raise ClassroomFull()

            record = custody_records.insert_record(
                db,
                child_id=child_id,
                event_date=event_date,
                event_name=event_name,
                classroom=classroom,
                actor_id=actor_id,
                now=now,
            )
            waitlist.mark_admitted(db, child_id, classroom)
            audit.record_event(
                db,
                "custody.check_in",
                actor_id,
                child_id=child_id,
                custody_record_id=record.id,
                target_type="child_check_in",
                target_id=record.id,
                details={
                    "classroom": classroom,
                    "event_name": event_name,
                    "event_date": event_date.isoformat(),
                    "label_number": record.label_number,
                },
                timestamp=now,
            )
            db.commit()
        except IntegrityError as exc:
            # the partial unique index caught an admission from another process
            db.rollback()
            raise _reject(AlreadyCheckedIn()) from exc
        except CustodyError as exc:
            db.rollback()
            raise _reject(exc)

    db.refresh(record)
    CUSTODY_TRANSITIONS.labels("check_in", "admission").inc()
    logger.info("child %s checked into %s for %s", child_id, classroom, event_date)
    return record


def find_by_token(db: Session, token: str) -> models.ChildCheckIn:
    """Resolve a scanned custody token to its open record.

    Closed and unknown tokens fail the same way.
    """

    record = custody_records.find_open_by_token(db, token)
    if record is None:
        raise NotFound("No open check-in for this code")
    return record


def _resolve_open_record(
    db: Session, custody_token: str | None, check_in_id: UUID | None
) -> models.ChildCheckIn:
    record = None
    if custody_token:
        record = custody_records.find_open_by_token(db, custody_token)
    elif check_in_id:
        record = custody_records.get_open_record(db, check_in_id)
    if record is None:
        raise UnknownOrAlreadyClosed()
    return record


def check_out(
    db: Session,
    *,
    provenance: Provenance | str,
    candidate_id: UUID,
    entered_pin: str | None,
    actor_id: UUID | None,
    custody_token: str | None = None,
    check_in_id: UUID | None = None,
    now: datetime | None = None,
) -> models.ChildCheckIn:
    """Release a child to a verified pickup candidate."""

    now = _now(now)
    record = _resolve_open_record(db, custody_token, check_in_id)
    record_id, child_id = record.id, record.child_id

    candidates = authorization_directory.resolve_pickup_candidates(db, child_id, now)
    candidate = authorization_directory.find_candidate(candidates, provenance, candidate_id)
    if candidate is None:
        raise NotAuthorized()

    if not authorization_directory.verify_pin(candidate, entered_pin):
        db.rollback()
        # the record stays open; the attempt is kept for review and throttling
        audit.log_action(
            db,
            actor_id,
            "custody.checkout.pin_rejected",
            target_type="child_check_in",
            target_id=record_id,
            details={"provenance": candidate.provenance.value, "candidate_id": str(candidate.id)},
            child_id=child_id,
            custody_record_id=record_id,
        )
        PIN_REJECTIONS.labels(candidate.provenance.value).inc()
        logger.warning("rejected pickup PIN for check-in %s", record_id)
        raise InvalidPin()

    grant_id = None
    single_use = False
    if isinstance(candidate, TemporaryCandidate):
        grant_id = candidate.grant_id
        single_use = candidate.single_use

    return release_custody(
        db,
        record,
        actor_id=actor_id,
        pickup_person_name=candidate.name,
        pickup_method=candidate.pickup_method,
        now=now,
        consume_grant_id=grant_id,
        single_use_grant=single_use,
        audit_action="custody.check_out",
        audit_details={
            "provenance": candidate.provenance.value,
            "candidate_id": str(candidate.id),
            "pickup_person_name": candidate.name,
        },
    )


def release_custody(
    db: Session,
    record: models.ChildCheckIn,
    *,
    actor_id: UUID | None,
    pickup_person_name: str,
    pickup_method: str,
    now: datetime,
    audit_action: str,
    audit_details: dict,
    consume_grant_id: UUID | None = None,
    single_use_grant: bool = True,
) -> models.ChildCheckIn:
    """Present -> Departed.

    Callers establish the right to release beforehand: :func:`check_out`
    through the authorization directory and
    :func:`custody.services.emergency_override.leader_override` through the
    override role gate. Pending writes already in the session, such as an
    override row, commit or roll back with the release.
    """

    record_id, child_id = record.id, record.child_id
    try:
        closed = custody_records.close_record(
            db,
            record_id,
            actor_id=actor_id,
            pickup_person_name=pickup_person_name,
            pickup_method=pickup_method,
            now=now,
        )
        if not closed:
            raise UnknownOrAlreadyClosed()
        if consume_grant_id is not None:
            consumed = authorization_directory.consume_grant(
                db,
                consume_grant_id,
                check_in_id=record_id,
                actor_id=actor_id,
                child_id=child_id,
                now=now,
                single_use=single_use_grant,
            )
            if not consumed:
                raise GrantExpiredOrUsed()
        audit.record_event(
            db,
            audit_action,
            actor_id,
            child_id=child_id,
            custody_record_id=record_id,
            target_type="child_check_in",
            target_id=record_id,
            details={**audit_details, "pickup_method": pickup_method},
            timestamp=now,
        )
        db.commit()
    except CustodyError:
        db.rollback()
        raise

    db.refresh(record)
    CUSTODY_TRANSITIONS.labels("check_out", pickup_method).inc()
    logger.info("check-in %s released via %s", record_id, pickup_method)
    return record


def list_present(db: Session, event_date, classroom: str | None = None):
    return custody_records.list_present(db, event_date, classroom)


def list_day(db: Session, event_date, classroom: str | None = None):
    return custody_records.list_day(db, event_date, classroom)
