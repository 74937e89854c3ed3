from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from ..auth import get_current_user
from .. import models, rbac, schemas
from ..services import authorization_directory

router = APIRouter(prefix="/api/pickup-authorizations", tags=["pickup-authorizations"])


def _linked_child_ids(db: Session, user: models.User) -> list[UUID]:
    rows = (
        db.query(models.ChildGuardian.child_id)
        .join(models.Guardian, models.Guardian.id == models.ChildGuardian.guardian_id)
        .filter(models.Guardian.profile_id == user.id)
        .all()
    )
    return [row[0] for row in rows]


@router.post("/", response_model=schemas.PickupAuthorizationOut)
async def create_authorization(
    data: schemas.PickupAuthorizationCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    rbac.ensure_child_access(db, user, data.child_id)
    return authorization_directory.create_grant(db, data, user, datetime.now(timezone.utc))


@router.get("/", response_model=list[schemas.PickupAuthorizationOut])
async def list_authorizations(
    child_id: Optional[UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if rbac.has_role(user, rbac.STAFF_ROLES):
        child_ids = [child_id] if child_id else None
    else:
        child_ids = _linked_child_ids(db, user)
        if child_id:
            child_ids = [c for c in child_ids if c == child_id]
    return authorization_directory.list_grants(db, child_ids=child_ids, status=status)


@router.post("/{authorization_id}/approve", response_model=schemas.PickupAuthorizationOut)
async def approve_authorization(
    authorization_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    if not rbac.can_approve_grants(user):
        raise HTTPException(status_code=403, detail="Not authorized")
    return authorization_directory.approve_grant(
        db, authorization_id, user, datetime.now(timezone.utc)
    )


@router.post("/{authorization_id}/cancel", response_model=schemas.PickupAuthorizationOut)
async def cancel_authorization(
    authorization_id: UUID,
    reason: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    grant = db.get(models.PickupAuthorization, authorization_id)
    if not grant:
        raise HTTPException(status_code=404, detail="Pickup authorization not found")
    if grant.authorized_by != user.id:
        rbac.ensure_child_access(db, user, grant.child_id)
    return authorization_directory.cancel_grant(
        db, authorization_id, user, datetime.now(timezone.utc), reason
    )
