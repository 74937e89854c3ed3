"""Who may take a child home right now, and the temporary grant lifecycle."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import ClassVar, Iterable, Union
from uuid import UUID

import sqlalchemy as sa
from sqlalchemy.orm import Session, joinedload

from .. import audit, models, schemas
from ..auth import hash_pin, pin_matches
from ..errors import GrantExpiredOrUsed, NotFound, UnknownChild
from .custody_records import as_utc, to_db

# purpose: merge guardian, authorized-pickup and temporary-grant provenances into pickup candidates
# status: active
# depends_on: backend.custody.models.ChildGuardian, backend.custody.models.AuthorizedPickup, backend.custody.models.PickupAuthorization

USABLE_GRANT_STATUSES = ("approved", "active")
OPEN_GRANT_STATUSES = ("pending", "approved", "active")
TERMINAL_GRANT_STATUSES = ("used", "expired", "cancelled")


class Provenance(str, enum.Enum):
    GUARDIAN = "guardian"
    AUTHORIZED = "authorized"
    TEMPORARY = "temporary"


@dataclass(frozen=True)
class GuardianCandidate:
    id: UUID
    name: str
    relationship: str | None
    pin_digest: str | None = field(default=None, repr=False)

    provenance: ClassVar[Provenance] = Provenance.GUARDIAN
    pickup_method: ClassVar[str] = "Guardian"

    @property
    def requires_pin(self) -> bool:
        # a guardian without a PIN is released without a challenge
        return self.pin_digest is not None


@dataclass(frozen=True)
class AuthorizedCandidate:
    id: UUID
    name: str
    relationship: str | None
    pin_digest: str = field(default="", repr=False)

    provenance: ClassVar[Provenance] = Provenance.AUTHORIZED
    pickup_method: ClassVar[str] = "Authorized"
    requires_pin: ClassVar[bool] = True


@dataclass(frozen=True)
class TemporaryCandidate:
    id: UUID
    name: str
    authorization_type: str
    valid_until: datetime | None
    pin_digest: str = field(default="", repr=False)

    provenance: ClassVar[Provenance] = Provenance.TEMPORARY
    pickup_method: ClassVar[str] = "TemporaryAuthorization"
    requires_pin: ClassVar[bool] = True
    relationship: ClassVar[str | None] = None

    @property
    def grant_id(self) -> UUID:
        return self.id

    @property
    def single_use(self) -> bool:
        return self.authorization_type == "one_time"


Candidate = Union[GuardianCandidate, AuthorizedCandidate, TemporaryCandidate]


def is_grant_usable(grant: models.PickupAuthorization, at: datetime) -> bool:
    if grant.status not in USABLE_GRANT_STATUSES:
        return False
    at = as_utc(at)
    if as_utc(grant.valid_from) > at:
        return False
    valid_until = as_utc(grant.valid_until)
    return valid_until is None or at <= valid_until


def resolve_pickup_candidates(db: Session, child_id: UUID, at: datetime) -> list[Candidate]:
    """Everyone entitled to retrieve ``child_id`` at ``at``.

    Guardians come first, then permanent authorized pickups, then usable
    temporary grants. The same person may appear under several provenances.
    """

    candidates: list[Candidate] = []

    links = (
        db.query(models.ChildGuardian)
        .options(joinedload(models.ChildGuardian.guardian))
        .filter(
            models.ChildGuardian.child_id == child_id,
            models.ChildGuardian.can_pickup.is_(True),
        )
        .order_by(models.ChildGuardian.is_primary.desc(), models.ChildGuardian.created_at.asc())
        .all()
    )
    for link in links:
        guardian = link.guardian
        candidates.append(
            GuardianCandidate(
                id=guardian.id,
                name=guardian.full_name,
                relationship=guardian.relationship,
                pin_digest=guardian.access_pin,
            )
        )

    pickups = (
        db.query(models.AuthorizedPickup)
        .filter(
            models.AuthorizedPickup.child_id == child_id,
            models.AuthorizedPickup.is_active.is_(True),
        )
        .order_by(models.AuthorizedPickup.authorized_name.asc())
        .all()
    )
    for pickup in pickups:
        candidates.append(
            AuthorizedCandidate(
                id=pickup.id,
                name=pickup.authorized_name,
                relationship=pickup.relationship,
                pin_digest=pickup.pickup_pin,
            )
        )

    grants = (
        db.query(models.PickupAuthorization)
        .filter(
            models.PickupAuthorization.child_id == child_id,
            models.PickupAuthorization.status.in_(USABLE_GRANT_STATUSES),
        )
        .order_by(models.PickupAuthorization.created_at.asc())
        .all()
    )
    for grant in grants:
        if not is_grant_usable(grant, at):
            continue
        candidates.append(
            TemporaryCandidate(
                id=grant.id,
                name=grant.authorized_person_name,
                authorization_type=grant.authorization_type,
                valid_until=grant.valid_until,
                pin_digest=grant.security_pin,
            )
        )
    return candidates


def find_candidate(
    candidates: Iterable[Candidate], provenance: Provenance | str, candidate_id: UUID
) -> Candidate | None:
    provenance = Provenance(provenance)
    for candidate in candidates:
        if candidate.provenance is provenance and candidate.id == candidate_id:
            return candidate
    return None


def verify_pin(candidate: Candidate, entered_pin: str | None) -> bool:
    if not candidate.requires_pin:
        return True
    return pin_matches(entered_pin, candidate.pin_digest)


def describe_candidate(candidate: Candidate) -> schemas.PickupCandidateOut:
    extra = {}
    if isinstance(candidate, TemporaryCandidate):
        extra = {
            "authorization_type": candidate.authorization_type,
            "valid_until": candidate.valid_until,
        }
    return schemas.PickupCandidateOut(
        id=candidate.id,
        name=candidate.name,
        relationship=candidate.relationship,
        requires_pin=candidate.requires_pin,
        provenance=candidate.provenance.value,
        **extra,
    )


def _active_child(db: Session, child_id: UUID) -> models.Child:
    child = db.get(models.Child, child_id)
    if child is None or child.status != "active":
        raise UnknownChild()
    return child


def _grant_or_404(db: Session, grant_id: UUID) -> models.PickupAuthorization:
    grant = db.get(models.PickupAuthorization, grant_id)
    if grant is None:
        raise NotFound("Pickup authorization not found")
    return grant


def create_grant(
    db: Session,
    payload: schemas.PickupAuthorizationCreate,
    grantor: models.User,
    now: datetime,
) -> models.PickupAuthorization:
    _active_child(db, payload.child_id)
    grant = models.PickupAuthorization(
        child_id=payload.child_id,
        authorized_by=grantor.id,
        authorized_person_name=payload.authorized_person_name.strip(),
        authorized_person_phone=payload.authorized_person_phone,
        authorized_person_document=payload.authorized_person_document,
        authorization_type=payload.authorization_type,
        valid_from=to_db(payload.valid_from or now),
        valid_until=to_db(payload.valid_until),
        security_pin=hash_pin(payload.security_pin),
        reason=payload.reason,
        status="pending" if payload.leader_approval_required else "active",
        leader_approval_required=payload.leader_approval_required,
    )
    db.add(grant)
    db.flush()
    audit.record_event(
        db,
        "pickup_authorization.created",
        grantor.id,
        child_id=grant.child_id,
        target_type="pickup_authorization",
        target_id=grant.id,
        details={
            "authorization_type": grant.authorization_type,
            "status": grant.status,
            "authorized_person_name": grant.authorized_person_name,
        },
        timestamp=now,
    )
    db.commit()
    db.refresh(grant)
    return grant


def approve_grant(
    db: Session, grant_id: UUID, approver: models.User, now: datetime
) -> models.PickupAuthorization:
    grant = _grant_or_404(db, grant_id)
    if grant.status != "pending":
        raise GrantExpiredOrUsed("Only pending authorizations can be approved")
    grant.status = "approved"
    grant.approved_by_leader = approver.id
    audit.record_event(
        db,
        "pickup_authorization.approved",
        approver.id,
        child_id=grant.child_id,
        target_type="pickup_authorization",
        target_id=grant.id,
        timestamp=now,
    )
    db.commit()
    db.refresh(grant)
    return grant


def cancel_grant(
    db: Session, grant_id: UUID, actor: models.User, now: datetime, reason: str | None = None
) -> models.PickupAuthorization:
    grant = _grant_or_404(db, grant_id)
    if grant.status in TERMINAL_GRANT_STATUSES:
        raise GrantExpiredOrUsed()
    previous = grant.status
    grant.status = "cancelled"
    audit.record_event(
        db,
        "pickup_authorization.cancelled",
        actor.id,
        child_id=grant.child_id,
        target_type="pickup_authorization",
        target_id=grant.id,
        details={"previous_status": previous, "reason": reason},
        timestamp=now,
    )
    db.commit()
    db.refresh(grant)
    return grant


def expire_grants(db: Session, now: datetime) -> int:
    """Move every open grant whose window has closed to ``expired``."""

    cutoff = to_db(now)
    stale = (
        db.query(models.PickupAuthorization)
        .filter(
            models.PickupAuthorization.status.in_(OPEN_GRANT_STATUSES),
            models.PickupAuthorization.valid_until.isnot(None),
            models.PickupAuthorization.valid_until < cutoff,
        )
        .all()
    )
    for grant in stale:
        previous = grant.status
        grant.status = "expired"
        audit.record_event(
            db,
            "pickup_authorization.expired",
            None,
            child_id=grant.child_id,
            target_type="pickup_authorization",
            target_id=grant.id,
            details={"previous_status": previous},
            timestamp=now,
        )
    db.commit()
    return len(stale)


def consume_grant(
    db: Session,
    grant_id: UUID,
    *,
    check_in_id: UUID,
    actor_id: UUID | None,
    child_id: UUID,
    now: datetime,
    single_use: bool = True,
) -> bool:
    """Record a release through a grant unless it stopped being usable.

    The status and window are re-checked by the guarded UPDATE itself, so a
    grant cancelled, expired or used by a concurrent checkout is refused.
    Single-use grants move to ``used``; multi-use grants only get touched.
    Runs inside the caller's release transaction and does not commit.
    """

    at = to_db(now)
    values = {"updated_at": at}
    if single_use:
        values.update(status="used", used_at=at, used_by_checkin_id=check_in_id)
    result = db.execute(
        sa.update(models.PickupAuthorization)
        .where(
            models.PickupAuthorization.id == grant_id,
            models.PickupAuthorization.status.in_(USABLE_GRANT_STATUSES),
            models.PickupAuthorization.valid_from <= at,
            sa.or_(
                models.PickupAuthorization.valid_until.is_(None),
                models.PickupAuthorization.valid_until >= at,
            ),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    audit.record_event(
        db,
        "pickup_authorization.used",
        actor_id,
        child_id=child_id,
        custody_record_id=check_in_id,
        target_type="pickup_authorization",
        target_id=grant_id,
        details={"single_use": single_use},
        timestamp=now,
    )
    return True


def list_grants(
    db: Session,
    *,
    child_ids: Iterable[UUID] | None = None,
    status: str | None = None,
) -> list[models.PickupAuthorization]:
    query = db.query(models.PickupAuthorization)
    if child_ids is not None:
        query = query.filter(models.PickupAuthorization.child_id.in_(list(child_ids)))
    if status:
        query = query.filter(models.PickupAuthorization.status == status)
    return query.order_by(models.PickupAuthorization.created_at.desc()).all()


def add_authorized_pickup(
    db: Session,
    child_id: UUID,
    payload: schemas.AuthorizedPickupCreate,
    actor: models.User,
) -> models.AuthorizedPickup:
    _active_child(db, child_id)
    pickup = models.AuthorizedPickup(
        child_id=child_id,
        authorized_name=payload.authorized_name.strip(),
        authorized_phone=payload.authorized_phone,
        relationship=payload.relationship,
        pickup_pin=hash_pin(payload.pickup_pin),
    )
    db.add(pickup)
    db.flush()
    audit.record_event(
        db,
        "authorized_pickup.created",
        actor.id,
        child_id=child_id,
        target_type="authorized_pickup",
        target_id=pickup.id,
        details={"authorized_name": pickup.authorized_name},
    )
    db.commit()
    db.refresh(pickup)
    return pickup


def deactivate_authorized_pickup(
    db: Session, child_id: UUID, pickup_id: UUID, actor: models.User
) -> models.AuthorizedPickup:
    pickup = db.get(models.AuthorizedPickup, pickup_id)
    if pickup is None or pickup.child_id != child_id:
        raise NotFound("Authorized pickup not found")
    if pickup.is_active:
        pickup.is_active = False
        audit.record_event(
            db,
            "authorized_pickup.deactivated",
            actor.id,
            child_id=child_id,
            target_type="authorized_pickup",
            target_id=pickup.id,
        )
        db.commit()
        db.refresh(pickup)
    return pickup


def link_guardian(
    db: Session,
    child_id: UUID,
    payload: schemas.GuardianLinkCreate,
    actor: models.User,
) -> models.ChildGuardian:
    _active_child(db, child_id)
    if db.get(models.Guardian, payload.guardian_id) is None:
        raise NotFound("Guardian not found")
    link = (
        db.query(models.ChildGuardian)
        .filter(
            models.ChildGuardian.child_id == child_id,
            models.ChildGuardian.guardian_id == payload.guardian_id,
        )
        .first()
    )
    if link is None:
        link = models.ChildGuardian(child_id=child_id, guardian_id=payload.guardian_id)
        db.add(link)
    link.is_primary = payload.is_primary
    link.can_pickup = payload.can_pickup
    db.flush()
    audit.record_event(
        db,
        "guardian.linked",
        actor.id,
        child_id=child_id,
        target_type="guardian",
        target_id=payload.guardian_id,
        details={"is_primary": link.is_primary, "can_pickup": link.can_pickup},
    )
    db.commit()
    db.refresh(link)
    return link


def update_guardian_link(
    db: Session,
    child_id: UUID,
    guardian_id: UUID,
    payload: schemas.GuardianLinkUpdate,
    actor: models.User,
) -> models.ChildGuardian:
    link = (
        db.query(models.ChildGuardian)
        .filter(
            models.ChildGuardian.child_id == child_id,
            models.ChildGuardian.guardian_id == guardian_id,
        )
        .first()
    )
    if link is None:
        raise NotFound("Guardian is not linked to this child")
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in changes.items():
        setattr(link, key, value)
    audit.record_event(
        db,
        "guardian.linked",
        actor.id,
        child_id=child_id,
        target_type="guardian",
        target_id=guardian_id,
        details={"is_primary": link.is_primary, "can_pickup": link.can_pickup},
    )
    db.commit()
    db.refresh(link)
    return link
