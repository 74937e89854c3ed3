from datetime import datetime, timezone
from typing import Any
from uuid import UUID
from sqlalchemy.orm import Session
from sqlalchemy import func
from . import models


def _as_uuid(value: str | UUID | None) -> UUID | None:
    return UUID(str(value)) if value else None


def _naive_utc(value: datetime | None) -> datetime:
    if value is None:
        value = datetime.now(timezone.utc)
    elif value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.replace(tzinfo=None)


def record_event(
    db: Session,
    action: str,
    actor_id: str | UUID | None,
    *,
    child_id: str | UUID | None = None,
    custody_record_id: str | UUID | None = None,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    details: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> models.AuditLog:
    """Add an audit row to the caller's transaction; committed with it."""

    log = models.AuditLog(
        user_id=_as_uuid(actor_id),
        action=action,
        target_type=target_type,
        target_id=_as_uuid(target_id),
        child_id=_as_uuid(child_id),
        custody_record_id=_as_uuid(custody_record_id),
        details=details or {},
        created_at=_naive_utc(timestamp),
    )
    db.add(log)
    return log


def log_action(
    db: Session,
    user_id: str | UUID | None,
    action: str,
    target_type: str | None = None,
    target_id: str | UUID | None = None,
    details: dict | None = None,
    **context: Any,
) -> models.AuditLog:
    log = record_event(
        db,
        action,
        user_id,
        target_type=target_type,
        target_id=target_id,
        details=details,
        **context,
    )
    db.commit()
    db.refresh(log)
    return log


def generate_report(
    db: Session,
    start: datetime,
    end: datetime,
    user_id: UUID | None = None,
    child_id: UUID | None = None,
):
    query = db.query(models.AuditLog).filter(
        models.AuditLog.created_at >= start,
        models.AuditLog.created_at <= end,
    )
    if user_id:
        query = query.filter(models.AuditLog.user_id == user_id)
    if child_id:
        query = query.filter(models.AuditLog.child_id == child_id)
    rows = (
        query.with_entities(models.AuditLog.action, func.count(models.AuditLog.id))
        .group_by(models.AuditLog.action)
        .all()
    )
    return [{"action": r[0], "count": r[1]} for r in rows]
