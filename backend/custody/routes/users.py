from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from .. import models, schemas, audit
from ..auth import get_current_user
from ..rbac import admin_user, manager_user

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/", response_model=list[schemas.UserOut])
async def list_users(
    role: str | None = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(manager_user),
):
    query = db.query(models.User)
    if role:
        query = query.filter(models.User.role == role)
    return query.order_by(models.User.email.asc()).all()


@router.put("/me", response_model=schemas.UserOut)
async def update_me(
    data: schemas.UserUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(get_current_user),
):
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(user, key, value)
    db.commit()
    db.refresh(user)
    return user


@router.patch("/{user_id}/role", response_model=schemas.UserOut)
async def update_role(
    user_id: UUID,
    data: schemas.UserRoleUpdate,
    db: Session = Depends(get_db),
    admin: models.User = Depends(admin_user),
):
    target = db.get(models.User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    previous = target.role
    target.role = data.role
    if data.is_active is not None:
        target.is_active = data.is_active
    db.commit()
    db.refresh(target)
    audit.log_action(
        db,
        admin.id,
        "user.role_changed",
        "user",
        target.id,
        {"from": previous, "to": target.role, "is_active": target.is_active},
    )
    return target
