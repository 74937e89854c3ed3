from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session, joinedload

from ..database import get_db
from ..auth import get_current_user
from .. import audit, models, rbac, schemas
from ..services import authorization_directory, custody_records

router = APIRouter(prefix="/api/children", tags=["children"])


def _child_or_404(db: Session, child_id: UUID) -> models.Child:
    child = db.get(models.Child, child_id)
    if not child:
        raise HTTPException(status_code=404, detail="Child not found")
    return child


@router.post("/", response_model=schemas.ChildOut)
async def create_child(
    data: schemas.ChildCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    child = models.Child(**data.model_dump())
    db.add(child)
    db.commit()
    db.refresh(child)
    audit.log_action(db, user.id, "child.created", "child", child.id, child_id=child.id)
    return child


@router.get("/", response_model=list[schemas.ChildOut])
async def list_children(
    classroom: Optional[str] = None,
    status: Optional[str] = Query("active", description="active, inactive or all"),
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    query = db.query(models.Child)
    if not rbac.has_role(user, rbac.STAFF_ROLES):
        query = (
            query.join(models.ChildGuardian, models.ChildGuardian.child_id == models.Child.id)
            .join(models.Guardian, models.Guardian.id == models.ChildGuardian.guardian_id)
            .filter(models.Guardian.profile_id == user.id)
        )
    if classroom:
        query = query.filter(models.Child.classroom == classroom)
    if status and status != "all":
        query = query.filter(models.Child.status == status)
    if search:
        query = query.filter(models.Child.full_name.ilike(f"%{search}%"))
    return query.order_by(models.Child.full_name.asc()).all()


@router.get("/{child_id}", response_model=schemas.ChildOut)
async def get_child(
    child_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    child = _child_or_404(db, child_id)
    rbac.ensure_child_access(db, user, child_id)
    return child


@router.patch("/{child_id}", response_model=schemas.ChildOut)
async def update_child(
    child_id: UUID,
    data: schemas.ChildUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    child = _child_or_404(db, child_id)
    changes = data.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(child, key, value)
    db.commit()
    db.refresh(child)
    audit.log_action(
        db,
        user.id,
        "child.updated",
        "child",
        child.id,
        {"fields": sorted(changes)},
        child_id=child.id,
    )
    return child


@router.get("/{child_id}/guardians", response_model=list[schemas.ChildGuardianOut])
async def list_child_guardians(
    child_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _child_or_404(db, child_id)
    rbac.ensure_child_access(db, user, child_id)
    return (
        db.query(models.ChildGuardian)
        .options(joinedload(models.ChildGuardian.guardian))
        .filter(models.ChildGuardian.child_id == child_id)
        .order_by(models.ChildGuardian.is_primary.desc(), models.ChildGuardian.created_at.asc())
        .all()
    )


@router.post("/{child_id}/guardians", response_model=schemas.ChildGuardianOut)
async def link_guardian(
    child_id: UUID,
    data: schemas.GuardianLinkCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return authorization_directory.link_guardian(db, child_id, data, user)


@router.patch("/{child_id}/guardians/{guardian_id}", response_model=schemas.ChildGuardianOut)
async def update_guardian_link(
    child_id: UUID,
    guardian_id: UUID,
    data: schemas.GuardianLinkUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return authorization_directory.update_guardian_link(db, child_id, guardian_id, data, user)


@router.get("/{child_id}/authorized-pickups", response_model=list[schemas.AuthorizedPickupOut])
async def list_authorized_pickups(
    child_id: UUID,
    include_inactive: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _child_or_404(db, child_id)
    rbac.ensure_child_access(db, user, child_id)
    query = db.query(models.AuthorizedPickup).filter(models.AuthorizedPickup.child_id == child_id)
    if not include_inactive:
        query = query.filter(models.AuthorizedPickup.is_active.is_(True))
    return query.order_by(models.AuthorizedPickup.authorized_name.asc()).all()


@router.post("/{child_id}/authorized-pickups", response_model=schemas.AuthorizedPickupOut)
async def add_authorized_pickup(
    child_id: UUID,
    data: schemas.AuthorizedPickupCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    _child_or_404(db, child_id)
    rbac.ensure_child_access(db, user, child_id)
    return authorization_directory.add_authorized_pickup(db, child_id, data, user)


@router.delete(
    "/{child_id}/authorized-pickups/{pickup_id}", response_model=schemas.AuthorizedPickupOut
)
async def deactivate_authorized_pickup(
    child_id: UUID,
    pickup_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    rbac.ensure_child_access(db, user, child_id)
    return authorization_directory.deactivate_authorized_pickup(db, child_id, pickup_id, user)


@router.get("/{child_id}/pickup-candidates", response_model=list[schemas.PickupCandidateOut])
async def preview_pickup_candidates(
    child_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    _child_or_404(db, child_id)
    candidates = authorization_directory.resolve_pickup_candidates(
        db, child_id, datetime.now(timezone.utc)
    )
    return [authorization_directory.describe_candidate(c) for c in candidates]


@router.get("/{child_id}/check-ins", response_model=list[schemas.CheckInOut])
async def child_history(
    child_id: UUID,
    limit: int = 50,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    _child_or_404(db, child_id)
    return custody_records.history_for_child(db, child_id, min(limit, 500))
