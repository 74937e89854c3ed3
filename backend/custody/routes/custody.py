from datetime import date, datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..database import get_db
from .. import config, models, pubsub, rbac, schemas, tasks
from ..ratelimit import rate_limit
from ..services import authorization_directory, custody_engine, emergency_override
from ..services.custody_records import session_date

router = APIRouter(prefix="/api/custody", tags=["custody"])


async def _publish_transition(event_type: str, record: models.ChildCheckIn) -> None:
    await pubsub.publish_classroom_event(
        record.classroom,
        {
            "type": event_type,
            "check_in_id": record.id,
            "child_id": record.child_id,
            "label_number": record.label_number,
            "event_date": record.event_date,
            "pickup_method": record.pickup_method,
            "timestamp": datetime.now(timezone.utc),
        },
    )


@router.post("/check-ins", response_model=schemas.CheckInOut)
async def check_in(
    data: schemas.CheckInCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    record = custody_engine.check_in(
        db,
        child_id=data.child_id,
        event_name=data.event_name,
        classroom=data.classroom,
        actor_id=user.id,
    )
    await _publish_transition("child_checked_in", record)
    return record


@router.get("/check-ins", response_model=list[schemas.CheckInOut])
async def list_check_ins(
    event_date: Optional[date] = None,
    classroom: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    event_date = event_date or session_date(datetime.now(timezone.utc))
    return custody_engine.list_day(db, event_date, classroom)


@router.get("/present", response_model=list[schemas.PresentChildOut])
async def list_present(
    event_date: Optional[date] = None,
    classroom: Optional[str] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    event_date = event_date or session_date(datetime.now(timezone.utc))
    return custody_engine.list_present(db, event_date, classroom)


@router.get("/tokens/{token}", response_model=schemas.TokenLookupOut)
async def lookup_token(
    token: str,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    record = custody_engine.find_by_token(db, token)
    candidates = authorization_directory.resolve_pickup_candidates(
        db, record.child_id, datetime.now(timezone.utc)
    )
    return schemas.TokenLookupOut(
        check_in=schemas.PresentChildOut.model_validate(record),
        candidates=[authorization_directory.describe_candidate(c) for c in candidates],
    )


@router.post("/check-outs", response_model=schemas.CheckInOut)
@rate_limit(config.CHECKOUT_RATE_LIMIT)
async def check_out(
    request: Request,
    data: schemas.CheckOutRequest,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    record = custody_engine.check_out(
        db,
        custody_token=data.custody_token,
        check_in_id=data.check_in_id,
        provenance=data.provenance,
        candidate_id=data.candidate_id,
        entered_pin=data.pin,
        actor_id=user.id,
    )
    await _publish_transition("child_checked_out", record)
    tasks.enqueue_waitlist_notification(record.classroom)
    return record


@router.post("/overrides", response_model=schemas.LeaderOverrideOut)
async def leader_override(
    data: schemas.LeaderOverrideCreate,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    record, override = emergency_override.leader_override(
        db,
        check_in_id=data.check_in_id,
        leader=user,
        reason=data.reason,
        pickup_person_name=data.pickup_person_name,
        pickup_person_document=data.pickup_person_document,
    )
    await _publish_transition("child_released_by_override", record)
    tasks.enqueue_waitlist_notification(record.classroom)
    return override


@router.get("/overrides", response_model=list[schemas.LeaderOverrideOut])
async def list_overrides(
    event_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.manager_user),
):
    query = db.query(models.LeaderCheckoutOverride).join(
        models.ChildCheckIn,
        models.ChildCheckIn.id == models.LeaderCheckoutOverride.check_in_id,
    )
    if event_date:
        query = query.filter(models.ChildCheckIn.event_date == event_date)
    return query.order_by(models.LeaderCheckoutOverride.created_at.desc()).all()


@router.get("/check-ins/{check_in_id}", response_model=schemas.CheckInOut)
async def get_check_in(
    check_in_id: UUID,
    db: Session = Depends(get_db),
    user: models.User = Depends(rbac.staff_user),
):
    record = db.get(models.ChildCheckIn, check_in_id)
    if not record:
        raise HTTPException(status_code=404, detail="Check-in not found")
    return record
