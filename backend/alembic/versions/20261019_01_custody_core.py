from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    """Create the custody schema: people, classrooms, check-ins and their audit trail."""

    op.create_table(
        "users",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("hashed_password", sa.String(), nullable=False),
        sa.Column("full_name", sa.String()),
        sa.Column("phone_number", sa.String()),
        sa.Column("role", sa.String(), nullable=False, server_default="staff"),
        sa.Column("is_active", sa.Boolean(), server_default=sa.true()),
        sa.Column("created_at", sa.DateTime()),
    )

    op.create_table(
        "children",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("birth_date", sa.Date(), nullable=False),
        sa.Column("classroom", sa.String(), nullable=False),
        sa.Column("allergies", sa.Text()),
        sa.Column("medications", sa.Text()),
        sa.Column("special_needs", sa.Text()),
        sa.Column("emergency_contact", sa.String()),
        sa.Column("emergency_phone", sa.String()),
        sa.Column("image_consent", sa.Boolean(), server_default=sa.false()),
        sa.Column("notes", sa.Text()),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "guardians",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("profile_id", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("email", sa.String()),
        sa.Column("phone", sa.String()),
        sa.Column("access_pin", sa.String(), nullable=True),
        sa.Column("relationship", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "child_guardians",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("child_id", _uuid(), sa.ForeignKey("children.id", ondelete="CASCADE"), nullable=False),
        sa.Column("guardian_id", _uuid(), sa.ForeignKey("guardians.id", ondelete="CASCADE"), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("can_pickup", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime()),
        sa.UniqueConstraint("child_id", "guardian_id", name="uq_child_guardian_pair"),
    )

    op.create_table(
        "authorized_pickups",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("child_id", _uuid(), sa.ForeignKey("children.id", ondelete="CASCADE"), nullable=False),
        sa.Column("authorized_name", sa.String(), nullable=False),
        sa.Column("authorized_phone", sa.String()),
        sa.Column("pickup_pin", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("relationship", sa.String()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index("ix_authorized_pickups_child_id", "authorized_pickups", ["child_id"])

    op.create_table(
        "classroom_settings",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("classroom_name", sa.String(), nullable=False, unique=True),
        sa.Column("max_capacity", sa.Integer(), nullable=False),
        sa.Column("ratio_children_per_adult", sa.Integer()),
        sa.Column("min_age_months", sa.Integer()),
        sa.Column("max_age_months", sa.Integer()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )

    op.create_table(
        "child_check_ins",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("child_id", _uuid(), sa.ForeignKey("children.id"), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("event_name", sa.String(), nullable=False),
        sa.Column("classroom", sa.String(), nullable=False),
        sa.Column("label_number", sa.String(), nullable=False),
        sa.Column("qr_code", sa.String(), nullable=False, unique=True),
        sa.Column("checked_in_at", sa.DateTime(), nullable=False),
        sa.Column("checked_in_by", _uuid(), sa.ForeignKey("users.id")),
        sa.Column("checked_out_at", sa.DateTime(), nullable=True),
        sa.Column("checked_out_by", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("pickup_person_name", sa.String()),
        sa.Column("pickup_method", sa.String()),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index(
        "ix_child_check_ins_occupancy",
        "child_check_ins",
        ["classroom", "event_date", "checked_out_at"],
    )
    op.create_index(
        "uq_child_check_ins_open_child",
        "child_check_ins",
        ["child_id"],
        unique=True,
        postgresql_where=sa.text("checked_out_at IS NULL"),
        sqlite_where=sa.text("checked_out_at IS NULL"),
    )

    op.create_table(
        "pickup_authorizations",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("child_id", _uuid(), sa.ForeignKey("children.id", ondelete="CASCADE"), nullable=False),
        sa.Column("authorized_by", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("authorized_person_name", sa.String(), nullable=False),
        sa.Column("authorized_person_phone", sa.String()),
        sa.Column("authorized_person_document", sa.String()),
        sa.Column("authorization_type", sa.String(), nullable=False),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_until", sa.DateTime(), nullable=True),
        sa.Column("security_pin", sa.String(), nullable=False),
        sa.Column("reason", sa.Text()),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("leader_approval_required", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approved_by_leader", _uuid(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("used_at", sa.DateTime()),
        sa.Column("used_by_checkin_id", _uuid(), sa.ForeignKey("child_check_ins.id"), nullable=True),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
        sa.CheckConstraint(
            "authorization_type IN ('one_time', 'date_range', 'permanent')",
            name="ck_pickup_authorizations_type",
        ),
        sa.CheckConstraint(
            "valid_until IS NOT NULL OR authorization_type = 'permanent'",
            name="ck_pickup_authorizations_window",
        ),
    )
    op.create_index("ix_pickup_authorizations_child_id", "pickup_authorizations", ["child_id"])
    op.create_index(
        "ix_pickup_authorizations_child_status",
        "pickup_authorizations",
        ["child_id", "status"],
    )

    op.create_table(
        "leader_checkout_overrides",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("check_in_id", _uuid(), sa.ForeignKey("child_check_ins.id"), nullable=False),
        sa.Column("leader_id", _uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("pickup_person_name", sa.String(), nullable=False),
        sa.Column("pickup_person_document", sa.String()),
        sa.Column("created_at", sa.DateTime()),
        sa.CheckConstraint("length(reason) >= 10", name="ck_leader_checkout_overrides_reason"),
    )
    op.create_index(
        "ix_leader_checkout_overrides_check_in_id",
        "leader_checkout_overrides",
        ["check_in_id"],
    )

    op.create_table(
        "waitlist",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("child_id", _uuid(), sa.ForeignKey("children.id", ondelete="CASCADE"), nullable=False),
        sa.Column("classroom", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="waiting"),
        sa.Column("notes", sa.Text()),
        sa.Column("requested_at", sa.DateTime()),
        sa.Column("notified_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime()),
    )
    op.create_index(
        "ix_waitlist_classroom_status",
        "waitlist",
        ["classroom", "status", "position"],
    )

    op.create_table(
        "notifications",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id")),
        sa.Column("message", sa.String(), nullable=False),
        sa.Column("title", sa.String()),
        sa.Column("category", sa.String()),
        sa.Column("priority", sa.String(), server_default="medium"),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false()),
        sa.Column("meta", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("user_id", _uuid(), sa.ForeignKey("users.id")),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("target_type", sa.String()),
        sa.Column("target_id", _uuid()),
        sa.Column("child_id", _uuid()),
        sa.Column("custody_record_id", _uuid()),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime()),
    )
    op.create_index("ix_audit_logs_child_id", "audit_logs", ["child_id"])
    op.create_index("ix_audit_logs_custody_record_id", "audit_logs", ["custody_record_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_custody_record_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_child_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("notifications")
    op.drop_index("ix_waitlist_classroom_status", table_name="waitlist")
    op.drop_table("waitlist")
    op.drop_index("ix_leader_checkout_overrides_check_in_id", table_name="leader_checkout_overrides")
    op.drop_table("leader_checkout_overrides")
    op.drop_index("ix_pickup_authorizations_child_status", table_name="pickup_authorizations")
    op.drop_index("ix_pickup_authorizations_child_id", table_name="pickup_authorizations")
    op.drop_table("pickup_authorizations")
    op.drop_index("uq_child_check_ins_open_child", table_name="child_check_ins")
    op.drop_index("ix_child_check_ins_occupancy", table_name="child_check_ins")
    op.drop_table("child_check_ins")
    op.drop_table("classroom_settings")
    op.drop_index("ix_authorized_pickups_child_id", table_name="authorized_pickups")
    op.drop_table("authorized_pickups")
    op.drop_table("child_guardians")
    op.drop_table("guardians")
    op.drop_table("children")
    op.drop_table("users")
