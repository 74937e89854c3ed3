from uuid import UUID
from datetime import datetime
from sqlalchemy.orm import Session
from fastapi import APIRouter, Depends
from ..database import get_db
from ..auth import get_current_user
from .. import models, schemas, audit, rbac
from ..services.custody_records import to_db

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/", response_model=list[schemas.AuditLogOut])
async def list_logs(
    user_id: UUID | None = None,
    child_id: UUID | None = None,
    custody_record_id: UUID | None = None,
    action: str | None = None,
    limit: int = 200,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    query = db.query(models.AuditLog)
    # managers review everyone's trail; other users only their own
    if not rbac.has_role(current_user, rbac.MANAGER_ROLES):
        user_id = current_user.id
    if user_id:
        query = query.filter(models.AuditLog.user_id == user_id)
    if child_id:
        query = query.filter(models.AuditLog.child_id == child_id)
    if custody_record_id:
        query = query.filter(models.AuditLog.custody_record_id == custody_record_id)
    if action:
        query = query.filter(models.AuditLog.action == action)
    return query.order_by(models.AuditLog.created_at.desc()).limit(min(limit, 1000)).all()


@router.get("/report", response_model=list[schemas.AuditReportItem])
async def audit_report(
    start: datetime,
    end: datetime,
    user_id: UUID | None = None,
    child_id: UUID | None = None,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    if not rbac.has_role(current_user, rbac.MANAGER_ROLES):
        user_id = current_user.id
    return audit.generate_report(db, to_db(start), to_db(end), user_id, child_id)
