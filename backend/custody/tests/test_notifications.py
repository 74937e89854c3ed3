import uuid

from custody import models

from .conftest import TestingSessionLocal, client, make_user


def _notify(user_id, message="Emergency release", category="custody"):
    session = TestingSessionLocal()
    try:
        note = models.Notification(user_id=user_id, message=message, category=category)
        session.add(note)
        session.commit()
        return note.id
    finally:
        session.close()


def test_list_and_mark_read(client):
    user_id, headers = make_user("leader")
    note_id = _notify(user_id)
    _notify(user_id, message="Place available", category="waitlist")

    resp = client.get("/api/notifications/", headers=headers)
    assert resp.status_code == 200
    assert len(resp.json()) == 2

    filtered = client.get("/api/notifications/", params={"category": "waitlist"}, headers=headers)
    assert [n["message"] for n in filtered.json()] == ["Place available"]

    read = client.post(f"/api/notifications/{note_id}/read", headers=headers)
    assert read.status_code == 200
    assert read.json()["is_read"] is True
    unread = client.get("/api/notifications/", params={"is_read": False}, headers=headers).json()
    assert len(unread) == 1


def test_cannot_read_someone_elses_notification(client):
    owner_id, _ = make_user("leader")
    _, other = make_user("leader")
    note_id = _notify(owner_id)
    assert client.post(f"/api/notifications/{note_id}/read", headers=other).status_code == 404
    assert client.post(f"/api/notifications/{uuid.uuid4()}/read", headers=other).status_code == 404
