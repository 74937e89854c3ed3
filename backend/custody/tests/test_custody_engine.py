import re
from datetime import datetime, timedelta, timezone

import pytest

from custody import models
from custody.errors import (
    AlreadyCheckedIn,
    ClassroomFull,
    InactiveClassroom,
    InvalidPin,
    NotAuthorized,
    NotFound,
    UnknownChild,
    UnknownOrAlreadyClosed,
)
from custody.services import custody_engine

from .conftest import db, make_authorized_pickup, make_child, make_classroom, make_guardian, make_user


def test_check_in_creates_open_record_with_token_and_label(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)

    record = custody_engine.check_in(db, child_id=child, event_name="Sunday AM", actor_id=staff_id)

    assert record.checked_out_at is None
    assert record.classroom == room
    assert record.checked_in_by == staff_id
    assert re.fullmatch(r"[1-9]\d{3}", record.label_number)
    assert len(record.qr_code) >= 43
    assert str(child) not in record.qr_code
    audit = db.query(models.AuditLog).filter_by(custody_record_id=record.id).one()
    assert audit.action == "custody.check_in"
    assert audit.child_id == child


def test_tokens_are_unique_per_record(db):
    room = make_classroom(max_capacity=10)
    staff_id, _ = make_user("staff")
    tokens = {
        custody_engine.check_in(
            db, child_id=make_child(room), event_name="Sunday", actor_id=staff_id
        ).qr_code
        for _ in range(5)
    }
    assert len(tokens) == 5


def test_second_check_in_of_same_child_is_rejected(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)
    with pytest.raises(AlreadyCheckedIn):
        custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)
    assert db.query(models.ChildCheckIn).filter_by(child_id=child).count() == 1


def test_full_inactive_unknown_rejections(db):
    staff_id, _ = make_user("staff")
    full = make_classroom(max_capacity=1)
    custody_engine.check_in(db, child_id=make_child(full), event_name="Sunday", actor_id=staff_id)
    with pytest.raises(ClassroomFull):
        custody_engine.check_in(db, child_id=make_child(full), event_name="Sunday", actor_id=staff_id)

    closed = make_classroom(is_active=False)
    with pytest.raises(InactiveClassroom):
        custody_engine.check_in(db, child_id=make_child(closed), event_name="Sunday", actor_id=staff_id)

    with pytest.raises(InactiveClassroom):
        custody_engine.check_in(
            db,
            child_id=make_child(full),
            event_name="Sunday",
            classroom="Unlisted Room",
            actor_id=staff_id,
        )

    with pytest.raises(UnknownChild):
        custody_engine.check_in(
            db, child_id=make_child(full, status="inactive"), event_name="Sunday", actor_id=staff_id
        )


def test_classroom_is_snapshotted_on_the_record(db):
    room = make_classroom()
    other = make_classroom()
    staff_id, _ = make_user("staff")
    child_id = make_child(room)
    record = custody_engine.check_in(db, child_id=child_id, event_name="Sunday", actor_id=staff_id)

    child = db.get(models.Child, child_id)
    child.classroom = other
    db.commit()
    db.refresh(record)
    assert record.classroom == room


def test_guardian_without_pin_checks_out(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    guardian = make_guardian(child, full_name="Ana Souza")
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)

    closed = custody_engine.check_out(
        db,
        custody_token=record.qr_code,
        provenance="guardian",
        candidate_id=guardian,
        entered_pin=None,
        actor_id=staff_id,
    )
    assert closed.checked_out_at is not None
    assert closed.pickup_method == "Guardian"
    assert closed.pickup_person_name == "Ana Souza"
    assert closed.checked_out_by == staff_id


def test_wrong_pin_is_audited_and_record_stays_open(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    guardian = make_guardian(child, pin="123456")
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)

    with pytest.raises(InvalidPin) as excinfo:
        custody_engine.check_out(
            db,
            check_in_id=record.id,
            provenance="guardian",
            candidate_id=guardian,
            entered_pin="654321",
            actor_id=staff_id,
        )
    assert str(excinfo.value) == "Invalid PIN"
    db.refresh(record)
    assert record.checked_out_at is None
    rejected = (
        db.query(models.AuditLog)
        .filter_by(custody_record_id=record.id, action="custody.checkout.pin_rejected")
        .all()
    )
    assert len(rejected) == 1

    closed = custody_engine.check_out(
        db,
        check_in_id=record.id,
        provenance="guardian",
        candidate_id=guardian,
        entered_pin="123456",
        actor_id=staff_id,
    )
    assert closed.pickup_method == "Guardian"


def test_missing_pin_counts_as_wrong_pin(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    pickup = make_authorized_pickup(child, pin="9911")
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)
    with pytest.raises(InvalidPin):
        custody_engine.check_out(
            db,
            custody_token=record.qr_code,
            provenance="authorized",
            candidate_id=pickup,
            entered_pin=None,
            actor_id=staff_id,
        )


def test_authorized_pickup_checks_out_with_pin(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    pickup = make_authorized_pickup(child, pin="9911", name="Grandpa Joe")
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)
    closed = custody_engine.check_out(
        db,
        custody_token=record.qr_code,
        provenance="authorized",
        candidate_id=pickup,
        entered_pin="9911",
        actor_id=staff_id,
    )
    assert closed.pickup_method == "Authorized"
    assert closed.pickup_person_name == "Grandpa Joe"


def test_candidate_must_match_provenance_and_child(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    other_child = make_child(room)
    stranger = make_guardian(other_child)
    blocked = make_guardian(child, can_pickup=False)
    guardian = make_guardian(child)
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)

    for provenance, candidate in (
        ("guardian", stranger),
        ("guardian", blocked),
        ("authorized", guardian),
    ):
        with pytest.raises(NotAuthorized):
            custody_engine.check_out(
                db,
                custody_token=record.qr_code,
                provenance=provenance,
                candidate_id=candidate,
                entered_pin=None,
                actor_id=staff_id,
            )
    db.refresh(record)
    assert record.checked_out_at is None


def test_closed_record_cannot_be_closed_again(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    guardian = make_guardian(child)
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)
    token = record.qr_code
    custody_engine.check_out(
        db, custody_token=token, provenance="guardian", candidate_id=guardian,
        entered_pin=None, actor_id=staff_id,
    )
    with pytest.raises(UnknownOrAlreadyClosed):
        custody_engine.check_out(
            db, custody_token=token, provenance="guardian", candidate_id=guardian,
            entered_pin=None, actor_id=staff_id,
        )
    with pytest.raises(NotFound):
        custody_engine.find_by_token(db, token)
    with pytest.raises(NotFound):
        custody_engine.find_by_token(db, "never-issued")


def test_child_can_return_after_departure(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    guardian = make_guardian(child)
    first = custody_engine.check_in(db, child_id=child, event_name="Morning", actor_id=staff_id)
    custody_engine.check_out(
        db, check_in_id=first.id, provenance="guardian", candidate_id=guardian,
        entered_pin=None, actor_id=staff_id,
    )
    second = custody_engine.check_in(db, child_id=child, event_name="Evening", actor_id=staff_id)
    assert second.id != first.id
    assert second.qr_code != first.qr_code


def test_find_by_token_returns_open_record(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)
    assert custody_engine.find_by_token(db, record.qr_code).id == record.id


def test_session_date_follows_the_given_clock(db):
    room = make_classroom()
    staff_id, _ = make_user("staff")
    child = make_child(room)
    past = datetime.now(timezone.utc) - timedelta(days=3)
    record = custody_engine.check_in(
        db, child_id=child, event_name="Retreat", actor_id=staff_id, now=past
    )
    assert record.event_date == past.date()
