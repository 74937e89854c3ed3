"""Leader release of a child without pickup verification."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from .. import config, models, rbac, tasks
from ..errors import OverrideReasonTooShort, UnknownOrAlreadyClosed
from . import custody_engine, custody_records

# purpose: privileged second entry into the release transition, role gated and always audited
# status: active

logger = logging.getLogger(__name__)


def leader_override(
    db: Session,
    *,
    check_in_id: UUID,
    leader: models.User,
    reason: str,
    pickup_person_name: str,
    pickup_person_document: str | None = None,
    now: datetime | None = None,
) -> tuple[models.ChildCheckIn, models.LeaderCheckoutOverride]:
    rbac.ensure_override_eligible(leader)
    reason = (reason or "").strip()
    if len(reason) < config.MIN_OVERRIDE_REASON_LENGTH:
        raise OverrideReasonTooShort()
    pickup_person_name = pickup_person_name.strip()
    now = custody_records.as_utc(now) if now else datetime.now(timezone.utc)

    record = custody_records.get_open_record(db, check_in_id)
    if record is None:
        raise UnknownOrAlreadyClosed()

    override = models.LeaderCheckoutOverride(
        check_in_id=record.id,
        leader_id=leader.id,
        reason=reason,
        pickup_person_name=pickup_person_name,
        pickup_person_document=pickup_person_document,
        created_at=custody_records.to_db(now),
    )
    db.add(override)
    db.flush()
    override_id = override.id

    record = custody_engine.release_custody(
        db,
        record,
        actor_id=leader.id,
        pickup_person_name=f"{pickup_person_name} (Override: {reason})",
        pickup_method="LeaderOverride",
        now=now,
        audit_action="custody.override",
        audit_details={
            "override_id": str(override_id),
            "reason": reason,
            "pickup_person_name": pickup_person_name,
            "pickup_person_document": pickup_person_document,
        },
    )
    db.refresh(override)
    logger.warning("leader %s released check-in %s by override", leader.id, record.id)
    tasks.enqueue_override_notification(str(override_id))
    return record, override
