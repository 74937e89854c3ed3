import uuid
import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .database import Base


def _utcnow() -> datetime:
    # naive UTC; DateTime columns carry no zone
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    full_name = Column(String)
    phone_number = Column(String)
    # admin, leader, staff, parent
    role = Column(String, default="staff", nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=_utcnow)

    notifications = relationship(
        "Notification", back_populates="user", cascade="all, delete-orphan"
    )
    guardian_profiles = relationship("Guardian", back_populates="profile")

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Child(Base):
    __tablename__ = "children"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    full_name = Column(String, nullable=False)
    birth_date = Column(Date, nullable=False)
    classroom = Column(String, nullable=False)
    allergies = Column(Text)
    medications = Column(Text)
    special_needs = Column(Text)
    emergency_contact = Column(String)
    emergency_phone = Column(String)
    image_consent = Column(Boolean, default=False)
    notes = Column(Text)
    status = Column(String, default="active", nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    guardian_links = relationship(
        "ChildGuardian", back_populates="child", cascade="all, delete-orphan"
    )
    authorized_pickups = relationship(
        "AuthorizedPickup",
        back_populates="child",
        order_by="AuthorizedPickup.authorized_name",
    )
    check_ins = relationship(
        "ChildCheckIn",
        back_populates="child",
        order_by="ChildCheckIn.checked_in_at.desc()",
    )


class Guardian(Base):
    __tablename__ = "guardians"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    profile_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    full_name = Column(String, nullable=False)
    email = Column(String)
    phone = Column(String)
    # keyed digest, never the raw PIN; NULL means no PIN challenge
    access_pin = Column(String, nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    profile = relationship("User", back_populates="guardian_profiles")
    child_links = relationship(
        "ChildGuardian", back_populates="guardian", cascade="all, delete-orphan"
    )

    # declared after the relationships: the name shadows orm.relationship here
    relationship = Column(String, nullable=False)


class ChildGuardian(Base):
    __tablename__ = "child_guardians"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    child_id = Column(UUID(as_uuid=True), ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
    guardian_id = Column(UUID(as_uuid=True), ForeignKey("guardians.id", ondelete="CASCADE"), nullable=False)
    is_primary = Column(Boolean, default=False, nullable=False)
    can_pickup = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)

    child = relationship("Child", back_populates="guardian_links")
    guardian = relationship("Guardian", back_populates="child_links")

    __table_args__ = (
        sa.UniqueConstraint("child_id", "guardian_id", name="uq_child_guardian_pair"),
    )


class AuthorizedPickup(Base):
    __tablename__ = "authorized_pickups"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    child_id = Column(UUID(as_uuid=True), ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True)
    authorized_name = Column(String, nullable=False)
    authorized_phone = Column(String)
    pickup_pin = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    child = relationship("Child", back_populates="authorized_pickups")

    # declared after the relationships: the name shadows orm.relationship here
    relationship = Column(String)


class PickupAuthorization(Base):
    __tablename__ = "pickup_authorizations"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    child_id = Column(UUID(as_uuid=True), ForeignKey("children.id", ondelete="CASCADE"), nullable=False, index=True)
    authorized_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    authorized_person_name = Column(String, nullable=False)
    authorized_person_phone = Column(String)
    authorized_person_document = Column(String)
    # one_time, date_range, permanent
    authorization_type = Column(String, nullable=False)
    valid_from = Column(DateTime, nullable=False, default=_utcnow)
    valid_until = Column(DateTime, nullable=True)
    security_pin = Column(String, nullable=False)
    reason = Column(Text)
    # pending, approved, active, used, expired, cancelled
    status = Column(String, nullable=False, default="active")
    leader_approval_required = Column(Boolean, default=False, nullable=False)
    approved_by_leader = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    used_at = Column(DateTime)
    used_by_checkin_id = Column(UUID(as_uuid=True), ForeignKey("child_check_ins.id"), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    child = relationship("Child")
    grantor = relationship("User", foreign_keys=[authorized_by])
    approver = relationship("User", foreign_keys=[approved_by_leader])

    __table_args__ = (
        sa.Index("ix_pickup_authorizations_child_status", "child_id", "status"),
    )


class ClassroomSettings(Base):
    __tablename__ = "classroom_settings"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    classroom_name = Column(String, unique=True, nullable=False)
    max_capacity = Column(Integer, nullable=False)
    ratio_children_per_adult = Column(Integer)
    min_age_months = Column(Integer)
    max_age_months = Column(Integer)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)


class ChildCheckIn(Base):
    __tablename__ = "child_check_ins"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    child_id = Column(UUID(as_uuid=True), ForeignKey("children.id"), nullable=False)
    event_date = Column(Date, nullable=False)
    event_name = Column(String, nullable=False)
    # snapshot of the classroom at admission
    classroom = Column(String, nullable=False)
    label_number = Column(String, nullable=False)
    qr_code = Column(String, unique=True, nullable=False)
    checked_in_at = Column(DateTime, nullable=False)
    checked_in_by = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    checked_out_at = Column(DateTime, nullable=True)
    checked_out_by = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    pickup_person_name = Column(String)
    # Guardian, Authorized, TemporaryAuthorization, LeaderOverride, QR
    pickup_method = Column(String)
    notes = Column(Text)
    created_at = Column(DateTime, default=_utcnow)

    child = relationship("Child", back_populates="check_ins")
    overrides = relationship("LeaderCheckoutOverride", back_populates="check_in")

    __table_args__ = (
        sa.Index("ix_child_check_ins_occupancy", "classroom", "event_date", "checked_out_at"),
        sa.Index(
            "uq_child_check_ins_open_child",
            "child_id",
            unique=True,
            postgresql_where=sa.text("checked_out_at IS NULL"),
            sqlite_where=sa.text("checked_out_at IS NULL"),
        ),
    )


class LeaderCheckoutOverride(Base):
    __tablename__ = "leader_checkout_overrides"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    check_in_id = Column(UUID(as_uuid=True), ForeignKey("child_check_ins.id"), nullable=False, index=True)
    leader_id = Column(UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    reason = Column(Text, nullable=False)
    pickup_person_name = Column(String, nullable=False)
    pickup_person_document = Column(String)
    created_at = Column(DateTime, default=_utcnow)

    check_in = relationship("ChildCheckIn", back_populates="overrides")
    leader = relationship("User")


class WaitlistEntry(Base):
    __tablename__ = "waitlist"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    child_id = Column(UUID(as_uuid=True), ForeignKey("children.id", ondelete="CASCADE"), nullable=False)
    classroom = Column(String, nullable=False)
    position = Column(Integer, nullable=False)
    # waiting, notified, admitted, cancelled
    status = Column(String, default="waiting", nullable=False)
    notes = Column(Text)
    requested_at = Column(DateTime, default=_utcnow)
    notified_at = Column(DateTime)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    child = relationship("Child")

    __table_args__ = (
        sa.Index("ix_waitlist_classroom_status", "classroom", "status", "position"),
    )


class Notification(Base):
    __tablename__ = "notifications"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    message = Column(String, nullable=False)
    title = Column(String, nullable=True)
    category = Column(String, nullable=True)  # custody, authorization, waitlist, system
    priority = Column(String, default="medium")  # low, medium, high, urgent
    is_read = Column(Boolean, default=False)
    meta = Column(JSON, default=dict)
    created_at = Column(DateTime, default=_utcnow)
    user = relationship("User", back_populates="notifications")


class AuditLog(Base):
    __tablename__ = "audit_logs"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id"))
    action = Column(String, nullable=False)
    target_type = Column(String)
    target_id = Column(UUID(as_uuid=True))
    child_id = Column(UUID(as_uuid=True), index=True)
    custody_record_id = Column(UUID(as_uuid=True), index=True)
    details = Column(JSON, default={})
    created_at = Column(DateTime, default=_utcnow)
