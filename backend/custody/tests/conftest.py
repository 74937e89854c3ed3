import os
os.environ["TESTING"] = "1"
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid
from datetime import date

sys.path.append(str(Path(__file__).resolve().parents[2]))

from custody.main import app
from custody.database import Base, engine, get_db
from custody import models, notify
from custody.auth import create_access_token, get_password_hash, hash_pin

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

PASSWORD = "secret"
_PASSWORD_HASH = get_password_hash(PASSWORD)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture(autouse=True)
def clear_outboxes():
    notify.EMAIL_OUTBOX.clear()
    notify.SMS_OUTBOX.clear()
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


def make_user(role: str = "staff", *, email: str | None = None, full_name: str | None = None):
    """Create a user with ``role`` and return ``(user_id, auth headers)``."""

    email = email or f"{role}-{uuid.uuid4().hex[:10]}@example.com"
    session = TestingSessionLocal()
    try:
        user = models.User(
            email=email,
            hashed_password=_PASSWORD_HASH,
            full_name=full_name or role.title(),
            role=role,
        )
        session.add(user)
        session.commit()
        user_id = user.id
    finally:
        session.close()
    token = create_access_token({"sub": email})
    return user_id, {"Authorization": f"Bearer {token}"}


def make_classroom(max_capacity: int = 5, *, is_active: bool = True, name: str | None = None) -> str:
    name = name or f"Room {uuid.uuid4().hex[:8]}"
    session = TestingSessionLocal()
    try:
        session.add(
            models.ClassroomSettings(
                classroom_name=name,
                max_capacity=max_capacity,
                ratio_children_per_adult=5,
                is_active=is_active,
            )
        )
        session.commit()
    finally:
        session.close()
    return name


def make_child(classroom: str, *, full_name: str | None = None, status: str = "active"):
    session = TestingSessionLocal()
    try:
        child = models.Child(
            full_name=full_name or f"Child {uuid.uuid4().hex[:6]}",
            birth_date=date(2021, 3, 14),
            classroom=classroom,
            status=status,
        )
        session.add(child)
        session.commit()
        return child.id
    finally:
        session.close()


def make_guardian(
    child_id,
    *,
    pin: str | None = None,
    can_pickup: bool = True,
    is_primary: bool = True,
    email: str | None = None,
    phone: str | None = None,
    profile_id=None,
    full_name: str | None = None,
):
    session = TestingSessionLocal()
    try:
        guardian = models.Guardian(
            full_name=full_name or f"Guardian {uuid.uuid4().hex[:6]}",
            email=email,
            phone=phone,
            relationship="mother",
            access_pin=hash_pin(pin) if pin else None,
            profile_id=profile_id,
        )
        session.add(guardian)
        session.flush()
        session.add(
            models.ChildGuardian(
                child_id=child_id,
                guardian_id=guardian.id,
                is_primary=is_primary,
                can_pickup=can_pickup,
            )
        )
        session.commit()
        return guardian.id
    finally:
        session.close()


def make_authorized_pickup(child_id, *, pin: str = "4455", name: str = "Grandma Rosa", is_active=True):
    session = TestingSessionLocal()
    try:
        pickup = models.AuthorizedPickup(
            child_id=child_id,
            authorized_name=name,
            relationship="grandmother",
            pickup_pin=hash_pin(pin),
            is_active=is_active,
        )
        session.add(pickup)
        session.commit()
        return pickup.id
    finally:
        session.close()
