import uuid

import pytest

from custody import models, notify
from custody.errors import OverrideForbidden, OverrideReasonTooShort, UnknownOrAlreadyClosed
from custody.services import custody_engine, emergency_override

from .conftest import client, db, make_child, make_classroom, make_guardian, make_user

REASON = "Parent stuck abroad, grandmother confirmed by phone"


def _open_record(staff_id):
    room = make_classroom()
    child = make_child(room, full_name="Lucas Prado")
    make_guardian(child, email="maria@example.com", phone="+5511999990000")
    return child


def test_staff_cannot_override(client):
    staff_id, staff = make_user("staff")
    child = _open_record(staff_id)
    record = client.post(
        "/api/custody/check-ins",
        json={"child_id": str(child), "event_name": "Sunday"},
        headers=staff,
    ).json()
    resp = client.post(
        "/api/custody/overrides",
        json={"check_in_id": record["id"], "reason": REASON, "pickup_person_name": "Rosa Prado"},
        headers=staff,
    )
    assert resp.status_code == 403
    assert resp.json()["code"] == "override_forbidden"
    still_open = client.get(f"/api/custody/check-ins/{record['id']}", headers=staff).json()
    assert still_open["checked_out_at"] is None


def test_leader_override_releases_and_notifies(client, db):
    leader_id, leader = make_user("leader", full_name="Pastor Ana")
    child = _open_record(leader_id)
    record = client.post(
        "/api/custody/check-ins",
        json={"child_id": str(child), "event_name": "Sunday"},
        headers=leader,
    ).json()

    resp = client.post(
        "/api/custody/overrides",
        json={
            "check_in_id": record["id"],
            "reason": REASON,
            "pickup_person_name": "Rosa Prado",
            "pickup_person_document": "RG 12.345.678-9",
        },
        headers=leader,
    )
    assert resp.status_code == 200
    override = resp.json()
    assert override["leader_id"] == str(leader_id)
    assert override["reason"] == REASON

    closed = client.get(f"/api/custody/check-ins/{record['id']}", headers=leader).json()
    assert closed["pickup_method"] == "LeaderOverride"
    assert closed["pickup_person_name"] == f"Rosa Prado (Override: {REASON})"
    assert closed["checked_out_by"] == str(leader_id)

    actions = [
        row.action
        for row in db.query(models.AuditLog).filter_by(custody_record_id=uuid.UUID(record["id"])).all()
    ]
    assert "custody.override" in actions

    assert [mail[0] for mail in notify.EMAIL_OUTBOX] == ["maria@example.com"]
    assert notify.SMS_OUTBOX and notify.SMS_OUTBOX[0][0] == "+5511999990000"
    alerts = db.query(models.Notification).filter_by(user_id=leader_id).all()
    assert len(alerts) == 1
    assert alerts[0].priority == "urgent"
    assert "Lucas Prado" in alerts[0].message

    listed = client.get("/api/custody/overrides", headers=leader).json()
    assert override["id"] in [row["id"] for row in listed]

    inbox = client.get("/api/notifications/", headers=leader).json()
    assert inbox[0]["title"] == "Emergency release"


def test_short_reason_is_rejected(client, db):
    leader_id, leader = make_user("leader")
    child = _open_record(leader_id)
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=leader_id)

    resp = client.post(
        "/api/custody/overrides",
        json={"check_in_id": str(record.id), "reason": "urgent", "pickup_person_name": "Rosa"},
        headers=leader,
    )
    assert resp.status_code == 422

    with pytest.raises(OverrideReasonTooShort):
        emergency_override.leader_override(
            db,
            check_in_id=record.id,
            leader=db.get(models.User, leader_id),
            reason="   urgent   ",
            pickup_person_name="Rosa Prado",
        )
    db.refresh(record)
    assert record.checked_out_at is None


def test_override_of_closed_record_is_rejected(db):
    leader_id, _ = make_user("leader")
    child = _open_record(leader_id)
    record = custody_engine.check_in(db, child_id=child, event_name="Sunday", actor_id=leader_id)
    leader = db.get(models.User, leader_id)
    emergency_override.leader_override(
        db, check_in_id=record.id, leader=leader, reason=REASON, pickup_person_name="Rosa Prado"
    )
    with pytest.raises(UnknownOrAlreadyClosed):
        emergency_override.leader_override(
            db, check_in_id=record.id, leader=leader, reason=REASON, pickup_person_name="Rosa Prado"
        )
    overrides = db.query(models.LeaderCheckoutOverride).filter_by(check_in_id=record.id).count()
    assert overrides == 1


def test_parent_role_is_never_override_eligible(db):
    parent_id, _ = make_user("parent")
    with pytest.raises(OverrideForbidden):
        emergency_override.leader_override(
            db,
            check_in_id=parent_id,
            leader=db.get(models.User, parent_id),
            reason=REASON,
            pickup_person_name="Rosa Prado",
        )
