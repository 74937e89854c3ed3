from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..database import get_db
from .. import audit, models, rbac, schemas
from ..services import capacity_ledger, waitlist
from ..services.custody_records import session_date

router = APIRouter(prefix="/api/classrooms", tags=["classrooms"])


def _today() -> date:
    return session_date(datetime.now(timezone.utc))


@router.get("/settings", response_model=list[schemas.ClassroomSettingsOut])
async def list_settings(
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return (
        db.query(models.ClassroomSettings)
        .order_by(models.ClassroomSettings.classroom_name.asc())
        .all()
    )


@router.put("/settings", response_model=schemas.ClassroomSettingsOut)
async def upsert_settings(
    data: schemas.ClassroomSettingsCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.manager_user),
):
    row = capacity_ledger.upsert_settings(db, data)
    audit.log_action(
        db,
        user.id,
        "classroom.settings_saved",
        "classroom_settings",
        row.id,
        data.model_dump(),
    )
    return row


@router.patch("/settings/{classroom}", response_model=schemas.ClassroomSettingsOut)
async def update_settings(
    classroom: str,
    data: schemas.ClassroomSettingsUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.manager_user),
):
    row = (
        db.query(models.ClassroomSettings)
        .filter(models.ClassroomSettings.classroom_name == classroom)
        .first()
    )
    if not row:
        raise HTTPException(status_code=404, detail="Classroom settings not found")
    changes = data.model_dump(exclude_unset=True)
    for key, value in changes.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    audit.log_action(
        db, user.id, "classroom.settings_saved", "classroom_settings", row.id, changes
    )
    return row


@router.get("/occupancy", response_model=list[schemas.ClassroomOccupancy])
async def list_occupancy(
    event_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return capacity_ledger.list_occupancy(db, event_date or _today())


@router.get("/{classroom}/occupancy", response_model=schemas.ClassroomOccupancy)
async def classroom_occupancy(
    classroom: str,
    event_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return capacity_ledger.occupancy(db, classroom, event_date or _today())


@router.get("/{classroom}/waitlist", response_model=list[schemas.WaitlistOut])
async def list_waitlist(
    classroom: str,
    include_closed: bool = False,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return waitlist.list_waitlist(db, classroom, include_closed)


@router.post("/waitlist", response_model=schemas.WaitlistOut)
async def add_to_waitlist(
    data: schemas.WaitlistCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return waitlist.add_to_waitlist(db, data, user)


@router.patch("/waitlist/{entry_id}", response_model=schemas.WaitlistOut)
async def update_waitlist_entry(
    entry_id: UUID,
    data: schemas.WaitlistUpdate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    return waitlist.update_status(db, entry_id, data.status, user)


@router.delete("/waitlist/{entry_id}")
async def remove_waitlist_entry(
    entry_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    waitlist.remove_entry(db, entry_id, user)
    return {"status": "deleted"}
