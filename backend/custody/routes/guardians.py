from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from .. import audit, models, rbac, schemas
from ..auth import hash_pin

router = APIRouter(prefix="/api/guardians", tags=["guardians"])


@router.post("/", response_model=schemas.GuardianOut)
async def create_guardian(
    data: schemas.GuardianCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    fields = data.model_dump(exclude={"access_pin"})
    guardian = models.Guardian(**fields)
    if data.access_pin:
        guardian.access_pin = hash_pin(data.access_pin)
    db.add(guardian)
    db.commit()
    db.refresh(guardian)
    audit.log_action(db, user.id, "guardian.created", "guardian", guardian.id)
    return guardian


@router.get("/", response_model=list[schemas.GuardianOut])
async def list_guardians(
    search: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    query = db.query(models.Guardian)
    if search:
        query = query.filter(models.Guardian.full_name.ilike(f"%{search}%"))
    return query.order_by(models.Guardian.full_name.asc()).all()


@router.get("/{guardian_id}", response_model=schemas.GuardianOut)
async def get_guardian(
    guardian_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    guardian = db.get(models.Guardian, guardian_id)
    if not guardian:
        raise HTTPException(status_code=404, detail="Guardian not found")
    return guardian


@router.patch("/{guardian_id}", response_model=schemas.GuardianOut)
async def update_guardian(
    guardian_id: UUID,
    data: schemas.GuardianUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    guardian = db.get(models.Guardian, guardian_id)
    if not guardian:
        raise HTTPException(status_code=404, detail="Guardian not found")
    changes = data.model_dump(exclude_unset=True, exclude={"access_pin", "clear_access_pin"})
    for key, value in changes.items():
        setattr(guardian, key, value)
    pin_changed = False
    if data.clear_access_pin:
        guardian.access_pin = None
        pin_changed = True
    elif data.access_pin:
        guardian.access_pin = hash_pin(data.access_pin)
        pin_changed = True
    db.commit()
    db.refresh(guardian)
    audit.log_action(
        db,
        user.id,
        "guardian.updated",
        "guardian",
        guardian.id,
        {"fields": sorted(changes), "pin_changed": pin_changed},
    )
    return guardian
