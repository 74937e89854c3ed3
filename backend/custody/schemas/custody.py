"""Pydantic schemas for children, guardians, classrooms and custody transitions."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# purpose: request and response contracts for the custody engine surfaces
# status: active

AuthorizationType = Literal["one_time", "date_range", "permanent"]
AuthorizationStatus = Literal["pending", "approved", "active", "used", "expired", "cancelled"]
ProvenanceName = Literal["guardian", "authorized", "temporary"]
PickupMethod = Literal["Guardian", "Authorized", "TemporaryAuthorization", "LeaderOverride", "QR"]
WaitlistStatus = Literal["waiting", "notified", "admitted", "cancelled"]

GUARDIAN_PIN_PATTERN = r"^\d{6}$"
PICKUP_PIN_PATTERN = r"^\d{4,6}$"


class ChildBase(BaseModel):
    full_name: str = Field(min_length=2)
    birth_date: date
    classroom: str = Field(min_length=1)
    allergies: Optional[str] = None
    medications: Optional[str] = None
    special_needs: Optional[str] = None
    emergency_contact: Optional[str] = None
    emergency_phone: Optional[str] = None
    image_consent: bool = False
    notes: Optional[str] = None


class ChildCreate(ChildBase):
    pass


class ChildUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2)
    birth_date: Optional[date] = None
    classroom: Optional[str] = Field(default=None, min_length=1)
    allergies: Optional[str] = None
    medications: Optional[str] = None
    special_needs: Optional[str] = None
    emergency_contact: Optional[str] = None
    emergency_phone: Optional[str] = None
    image_consent: Optional[bool] = None
    notes: Optional[str] = None
    status: Optional[Literal["active", "inactive"]] = None


class ChildOut(ChildBase):
    id: UUID
    status: str
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class ChildSummary(BaseModel):
    id: UUID
    full_name: str
    classroom: str
    allergies: Optional[str] = None
    emergency_contact: Optional[str] = None
    emergency_phone: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class GuardianCreate(BaseModel):
    full_name: str = Field(min_length=2)
    email: Optional[str] = None
    phone: Optional[str] = None
    relationship: str = Field(min_length=1)
    access_pin: Optional[str] = Field(default=None, pattern=GUARDIAN_PIN_PATTERN)
    profile_id: Optional[UUID] = None


class GuardianUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[str] = None
    phone: Optional[str] = None
    relationship: Optional[str] = None
    access_pin: Optional[str] = Field(default=None, pattern=GUARDIAN_PIN_PATTERN)
    clear_access_pin: bool = False
    profile_id: Optional[UUID] = None


class GuardianOut(BaseModel):
    id: UUID
    full_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    relationship: str
    profile_id: Optional[UUID] = None
    has_pin: bool = False
    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _derive_has_pin(cls, value):
        # the digest itself never leaves the service
        if hasattr(value, "access_pin") and not isinstance(value, dict):
            return {
                "id": value.id,
                "full_name": value.full_name,
                "email": value.email,
                "phone": value.phone,
                "relationship": value.relationship,
                "profile_id": value.profile_id,
                "has_pin": value.access_pin is not None,
            }
        return value


class GuardianLinkCreate(BaseModel):
    guardian_id: UUID
    is_primary: bool = False
    can_pickup: bool = True


class GuardianLinkUpdate(BaseModel):
    is_primary: Optional[bool] = None
    can_pickup: Optional[bool] = None


class ChildGuardianOut(BaseModel):
    id: UUID
    child_id: UUID
    guardian: GuardianOut
    is_primary: bool
    can_pickup: bool
    model_config = ConfigDict(from_attributes=True)


class AuthorizedPickupCreate(BaseModel):
    authorized_name: str = Field(min_length=3)
    authorized_phone: Optional[str] = None
    relationship: Optional[str] = None
    pickup_pin: str = Field(pattern=PICKUP_PIN_PATTERN)


class AuthorizedPickupOut(BaseModel):
    id: UUID
    child_id: UUID
    authorized_name: str
    authorized_phone: Optional[str] = None
    relationship: Optional[str] = None
    is_active: bool
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class PickupAuthorizationCreate(BaseModel):
    child_id: UUID
    authorized_person_name: str = Field(min_length=3)
    authorized_person_phone: Optional[str] = None
    authorized_person_document: Optional[str] = None
    authorization_type: AuthorizationType
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    security_pin: str = Field(pattern=PICKUP_PIN_PATTERN)
    reason: Optional[str] = None
    leader_approval_required: bool = False

    @field_validator("valid_from", "valid_until")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # naive input is read as UTC, matching how the window is stored
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_window(self):
        if self.authorization_type != "permanent" and self.valid_until is None:
            raise ValueError("valid_until is required unless the authorization is permanent")
        if self.valid_from and self.valid_until and self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be after valid_from")
        return self


class PickupAuthorizationOut(BaseModel):
    id: UUID
    child_id: UUID
    authorized_by: UUID
    authorized_person_name: str
    authorized_person_phone: Optional[str] = None
    authorized_person_document: Optional[str] = None
    authorization_type: AuthorizationType
    valid_from: datetime
    valid_until: Optional[datetime] = None
    reason: Optional[str] = None
    status: AuthorizationStatus
    leader_approval_required: bool
    approved_by_leader: Optional[UUID] = None
    used_at: Optional[datetime] = None
    used_by_checkin_id: Optional[UUID] = None
    created_at: datetime | None = None
    model_config = ConfigDict(from_attributes=True)


class ClassroomSettingsCreate(BaseModel):
    classroom_name: str = Field(min_length=1)
    max_capacity: int = Field(ge=1)
    ratio_children_per_adult: Optional[int] = Field(default=None, ge=1)
    min_age_months: Optional[int] = Field(default=None, ge=0)
    max_age_months: Optional[int] = Field(default=None, ge=0)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_ages(self):
        if (
            self.min_age_months is not None
            and self.max_age_months is not None
            and self.max_age_months < self.min_age_months
        ):
            raise ValueError("max_age_months must not be below min_age_months")
        return self


class ClassroomSettingsUpdate(BaseModel):
    max_capacity: Optional[int] = Field(default=None, ge=1)
    ratio_children_per_adult: Optional[int] = Field(default=None, ge=1)
    min_age_months: Optional[int] = Field(default=None, ge=0)
    max_age_months: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class ClassroomSettingsOut(BaseModel):
    id: UUID
    classroom_name: str
    max_capacity: int
    ratio_children_per_adult: Optional[int] = None
    min_age_months: Optional[int] = None
    max_age_months: Optional[int] = None
    is_active: bool
    model_config = ConfigDict(from_attributes=True)


class ClassroomOccupancy(BaseModel):
    classroom: str
    event_date: date
    current: int
    max: int
    is_active: bool
    available: int
    is_full: bool
    adults_required: Optional[int] = None


class CheckInCreate(BaseModel):
    child_id: UUID
    event_name: str = Field(min_length=1)
    classroom: Optional[str] = None


class CheckInOut(BaseModel):
    id: UUID
    child_id: UUID
    event_date: date
    event_name: str
    classroom: str
    label_number: str
    qr_code: str
    checked_in_at: datetime
    checked_in_by: Optional[UUID] = None
    checked_out_at: Optional[datetime] = None
    checked_out_by: Optional[UUID] = None
    pickup_person_name: Optional[str] = None
    pickup_method: Optional[PickupMethod] = None
    notes: Optional[str] = None
    model_config = ConfigDict(from_attributes=True)


class PresentChildOut(BaseModel):
    """Open record as shown on checkout kiosks; the custody token is omitted."""

    id: UUID
    event_date: date
    event_name: str
    classroom: str
    label_number: str
    checked_in_at: datetime
    child: ChildSummary
    model_config = ConfigDict(from_attributes=True)


class CheckOutRequest(BaseModel):
    custody_token: Optional[str] = None
    check_in_id: Optional[UUID] = None
    provenance: ProvenanceName
    candidate_id: UUID
    pin: Optional[str] = Field(default=None, max_length=12)

    @model_validator(mode="after")
    def _one_locator(self):
        if bool(self.custody_token) == bool(self.check_in_id):
            raise ValueError("provide exactly one of custody_token or check_in_id")
        return self


class PickupCandidateOut(BaseModel):
    id: UUID
    name: str
    relationship: Optional[str] = None
    requires_pin: bool
    provenance: ProvenanceName
    authorization_type: Optional[AuthorizationType] = None
    valid_until: Optional[datetime] = None


class LeaderOverrideCreate(BaseModel):
    check_in_id: UUID
    reason: str = Field(min_length=10)
    pickup_person_name: str = Field(min_length=3)
    pickup_person_document: Optional[str] = None


class LeaderOverrideOut(BaseModel):
    id: UUID
    check_in_id: UUID
    leader_id: UUID
    reason: str
    pickup_person_name: str
    pickup_person_document: Optional[str] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class WaitlistCreate(BaseModel):
    child_id: UUID
    classroom: str = Field(min_length=1)
    notes: Optional[str] = None


class WaitlistUpdate(BaseModel):
    status: WaitlistStatus


class WaitlistOut(BaseModel):
    id: UUID
    child_id: UUID
    classroom: str
    position: int
    status: WaitlistStatus
    notes: Optional[str] = None
    requested_at: Optional[datetime] = None
    notified_at: Optional[datetime] = None
    child: Optional[ChildSummary] = None
    model_config = ConfigDict(from_attributes=True)


class TokenLookupOut(BaseModel):
    check_in: PresentChildOut
    candidates: list[PickupCandidateOut]
