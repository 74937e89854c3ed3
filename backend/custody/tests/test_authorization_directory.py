from datetime import datetime, timedelta, timezone

import pytest

from custody import models, schemas
from custody.errors import GrantExpiredOrUsed, UnknownChild
from custody.services import authorization_directory as directory
from custody.services import custody_engine
from custody.services.authorization_directory import (
    AuthorizedCandidate,
    GuardianCandidate,
    Provenance,
    TemporaryCandidate,
)

from .conftest import TestingSessionLocal, db, make_authorized_pickup, make_child, make_classroom, make_guardian, make_user


def _grant(db, child_id, grantor_id, *, kind="one_time", pin="1234", approval=False,
           valid_from=None, valid_until=None, now=None):
    now = now or datetime.now(timezone.utc)
    if valid_until is None and kind != "permanent":
        valid_until = now + timedelta(hours=1)
    payload = schemas.PickupAuthorizationCreate(
        child_id=child_id,
        authorized_person_name="Uncle Bento",
        authorization_type=kind,
        valid_from=valid_from,
        valid_until=valid_until,
        security_pin=pin,
        leader_approval_required=approval,
    )
    return directory.create_grant(db, payload, db.get(models.User, grantor_id), now)


def test_candidates_merge_provenances_in_order(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    guardian = make_guardian(child, pin="123456", full_name="Maria")
    open_guardian = make_guardian(child, is_primary=False, full_name="Paulo")
    pickup = make_authorized_pickup(child, name="Grandma Rosa")
    grant = _grant(db, child, parent_id)

    candidates = directory.resolve_pickup_candidates(db, child, datetime.now(timezone.utc))

    assert [c.provenance for c in candidates] == [
        Provenance.GUARDIAN,
        Provenance.GUARDIAN,
        Provenance.AUTHORIZED,
        Provenance.TEMPORARY,
    ]
    assert isinstance(candidates[0], GuardianCandidate) and candidates[0].id == guardian
    assert candidates[0].requires_pin is True
    assert candidates[1].id == open_guardian and candidates[1].requires_pin is False
    assert isinstance(candidates[2], AuthorizedCandidate) and candidates[2].id == pickup
    assert candidates[2].requires_pin is True
    assert isinstance(candidates[3], TemporaryCandidate) and candidates[3].grant_id == grant.id
    assert candidates[3].single_use is True
    # digests never show up in the candidate repr
    assert candidates[0].pin_digest not in repr(candidates[0])


def test_guardian_without_pickup_right_is_never_a_candidate(db):
    room = make_classroom()
    child = make_child(room)
    blocked = make_guardian(child, can_pickup=False, is_primary=True, pin="111111")
    candidates = directory.resolve_pickup_candidates(db, child, datetime.now(timezone.utc))
    assert blocked not in {c.id for c in candidates}
    assert directory.find_candidate(candidates, "guardian", blocked) is None


def test_same_person_may_appear_under_two_provenances(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    make_guardian(child, full_name="Uncle Bento")
    _grant(db, child, parent_id)
    names = [c.name for c in directory.resolve_pickup_candidates(db, child, datetime.now(timezone.utc))]
    assert names.count("Uncle Bento") == 2


def test_inactive_authorized_pickup_is_excluded(db):
    room = make_classroom()
    child = make_child(room)
    make_authorized_pickup(child, is_active=False)
    assert directory.resolve_pickup_candidates(db, child, datetime.now(timezone.utc)) == []


def test_pending_grant_becomes_usable_after_approval(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    leader_id, _ = make_user("leader")
    child = make_child(room)
    grant = _grant(db, child, parent_id, approval=True)
    assert grant.status == "pending"
    now = datetime.now(timezone.utc)
    assert directory.resolve_pickup_candidates(db, child, now) == []

    approved = directory.approve_grant(db, grant.id, db.get(models.User, leader_id), now)
    assert approved.status == "approved"
    assert approved.approved_by_leader == leader_id
    assert [c.id for c in directory.resolve_pickup_candidates(db, child, now)] == [grant.id]

    with pytest.raises(GrantExpiredOrUsed):
        directory.approve_grant(db, grant.id, db.get(models.User, leader_id), now)


def test_grant_window_is_respected(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    now = datetime.now(timezone.utc)
    _grant(
        db, child, parent_id, kind="date_range",
        valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=2), now=now,
    )
    assert directory.resolve_pickup_candidates(db, child, now) == []
    assert len(directory.resolve_pickup_candidates(db, child, now + timedelta(days=1, hours=1))) == 1
    assert directory.resolve_pickup_candidates(db, child, now + timedelta(days=3)) == []


def test_permanent_grant_has_no_end(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    grant = _grant(db, child, parent_id, kind="permanent")
    assert grant.valid_until is None
    later = datetime.now(timezone.utc) + timedelta(days=400)
    assert [c.id for c in directory.resolve_pickup_candidates(db, child, later)] == [grant.id]


def test_window_is_required_unless_permanent():
    with pytest.raises(ValueError):
        schemas.PickupAuthorizationCreate(
            child_id="00000000-0000-0000-0000-000000000001",
            authorized_person_name="Someone",
            authorization_type="one_time",
            security_pin="1234",
        )


def test_cancelled_grant_is_terminal(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    grant = _grant(db, child, parent_id)
    parent = db.get(models.User, parent_id)
    now = datetime.now(timezone.utc)
    cancelled = directory.cancel_grant(db, grant.id, parent, now, "plans changed")
    assert cancelled.status == "cancelled"
    assert directory.resolve_pickup_candidates(db, child, now) == []
    with pytest.raises(GrantExpiredOrUsed):
        directory.cancel_grant(db, grant.id, parent, now)
    actions = {
        row.action
        for row in db.query(models.AuditLog).filter_by(target_id=grant.id).all()
    }
    assert {"pickup_authorization.created", "pickup_authorization.cancelled"} <= actions


def test_expire_grants_sweeps_only_past_windows(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    now = datetime.now(timezone.utc)
    stale = _grant(
        db, child, parent_id, kind="date_range",
        valid_from=now - timedelta(days=3), valid_until=now - timedelta(days=1), now=now,
    )
    fresh = _grant(db, child, parent_id)
    forever = _grant(db, child, parent_id, kind="permanent")

    assert directory.expire_grants(db, now) >= 1
    db.refresh(stale)
    db.refresh(fresh)
    db.refresh(forever)
    assert stale.status == "expired"
    assert fresh.status == "active"
    assert forever.status == "active"
    with pytest.raises(GrantExpiredOrUsed):
        directory.cancel_grant(db, stale.id, db.get(models.User, parent_id), now)


def test_date_range_grant_is_reusable_within_window(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    staff_id, _ = make_user("staff")
    child = make_child(room)
    grant = _grant(db, child, parent_id, kind="date_range", pin="5678")

    for event in ("Morning", "Evening"):
        record = custody_engine.check_in(db, child_id=child, event_name=event, actor_id=staff_id)
        closed = custody_engine.check_out(
            db,
            custody_token=record.qr_code,
            provenance="temporary",
            candidate_id=grant.id,
            entered_pin="5678",
            actor_id=staff_id,
        )
        assert closed.pickup_method == "TemporaryAuthorization"
    db.refresh(grant)
    assert grant.status == "active"
    assert grant.used_by_checkin_id is None
    uses = db.query(models.AuditLog).filter_by(
        action="pickup_authorization.used", target_id=grant.id
    ).count()
    assert uses == 2


def test_grant_for_unknown_child_is_rejected(db):
    parent_id, _ = make_user("parent")
    with pytest.raises(UnknownChild):
        _grant(db, "00000000-0000-0000-0000-00000000dead", parent_id)


def test_pins_are_stored_as_digests(db):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    child = make_child(room)
    grant = _grant(db, child, parent_id, pin="2468")
    assert grant.security_pin != "2468"
    assert len(grant.security_pin) == 64


@pytest.mark.parametrize("kind", ["date_range", "permanent"])
def test_grant_cancelled_during_checkout_does_not_release(db, monkeypatch, kind):
    room = make_classroom()
    parent_id, _ = make_user("parent")
    staff_id, _ = make_user("staff")
    child = make_child(room)
    grant = _grant(db, child, parent_id, kind=kind, pin="8642")
    grant_id = grant.id
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=staff_id)

    real_verify = directory.verify_pin

    def cancel_then_verify(candidate, entered_pin):
        other = TestingSessionLocal()
        try:
            directory.cancel_grant(
                other, grant_id, other.get(models.User, parent_id), datetime.now(timezone.utc)
            )
        finally:
            other.close()
        return real_verify(candidate, entered_pin)

    monkeypatch.setattr(directory, "verify_pin", cancel_then_verify)

    with pytest.raises(GrantExpiredOrUsed):
        custody_engine.check_out(
            db,
            custody_token=record.qr_code,
            provenance="temporary",
            candidate_id=grant_id,
            entered_pin="8642",
            actor_id=staff_id,
        )
    db.refresh(record)
    assert record.checked_out_at is None
    uses = db.query(models.AuditLog).filter_by(
        action="pickup_authorization.used", target_id=grant_id
    ).count()
    assert uses == 0


def test_mixed_timezone_window_is_normalised():
    aware = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    naive = datetime(2026, 10, 19, 14, 0)
    for valid_from, valid_until in ((aware, naive), (naive.replace(hour=10), aware)):
        payload = schemas.PickupAuthorizationCreate(
            child_id="00000000-0000-0000-0000-000000000001",
            authorized_person_name="Someone",
            authorization_type="date_range",
            valid_from=valid_from,
            valid_until=valid_until,
            security_pin="1234",
        )
        assert payload.valid_from.tzinfo is not None
        assert payload.valid_until.tzinfo is not None

    for valid_from, valid_until in ((aware, naive.replace(hour=11)), (naive, aware)):
        with pytest.raises(ValueError):
            schemas.PickupAuthorizationCreate(
                child_id="00000000-0000-0000-0000-000000000001",
                authorized_person_name="Someone",
                authorization_type="date_range",
                valid_from=valid_from,
                valid_until=valid_until,
                security_pin="1234",
            )
