from __future__ import annotations

from typing import Callable, Iterable
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from . import config, models
from .auth import get_current_user
from .errors import OverrideForbidden

# purpose: centralize role gates for custody, authorization and override flows

STAFF_ROLES: tuple[str, ...] = ("admin", "leader", "staff")
MANAGER_ROLES: tuple[str, ...] = ("admin", "leader")


def has_role(user: models.User, roles: Iterable[str]) -> bool:
    return user.is_admin or user.role in tuple(roles)


def require_roles(*roles: str) -> Callable[..., models.User]:
    """Build a dependency that only lets the given roles through."""

    allowed = roles or STAFF_ROLES

    async def _dependency(user: models.User = Depends(get_current_user)) -> models.User:
        if not has_role(user, allowed):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        return user

    return _dependency


def ensure_override_eligible(user: models.User) -> None:
    if not user.is_active or not has_role(user, config.OVERRIDE_ROLES):
        raise OverrideForbidden()


def can_approve_grants(user: models.User) -> bool:
    return has_role(user, config.APPROVER_ROLES)


def guardian_profile_for_child(
    db: Session, user: models.User, child_id: UUID
) -> models.Guardian | None:
    """Return the guardian record that links a parent account to the child."""

    return (
        db.query(models.Guardian)
        .join(models.ChildGuardian, models.ChildGuardian.guardian_id == models.Guardian.id)
        .filter(
            models.Guardian.profile_id == user.id,
            models.ChildGuardian.child_id == child_id,
        )
        .first()
    )


def ensure_child_access(db: Session, user: models.User, child_id: UUID) -> None:
    """Staff see every child; parents only the children they are linked to."""

    if has_role(user, STAFF_ROLES):
        return
    if user.role == "parent" and guardian_profile_for_child(db, user, child_id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")


staff_user = require_roles(*STAFF_ROLES)
manager_user = require_roles(*MANAGER_ROLES)
admin_user = require_roles("admin")
