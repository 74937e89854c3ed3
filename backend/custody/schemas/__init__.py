"""Pydantic schemas consolidating backend API contracts."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: active

from datetime import datetime
from typing import Optional, Any, Dict, Literal
from pydantic import BaseModel, EmailStr, ConfigDict, Field
from uuid import UUID

from .custody import (
    AuthorizedPickupCreate,
    AuthorizedPickupOut,
    CheckInCreate,
    CheckInOut,
    CheckOutRequest,
    ChildCreate,
    ChildGuardianOut,
    ChildOut,
    ChildSummary,
    ChildUpdate,
    ClassroomOccupancy,
    ClassroomSettingsCreate,
    ClassroomSettingsOut,
    ClassroomSettingsUpdate,
    GuardianCreate,
    GuardianLinkCreate,
    GuardianLinkUpdate,
    GuardianOut,
    GuardianUpdate,
    LeaderOverrideCreate,
    LeaderOverrideOut,
    PickupAuthorizationCreate,
    PickupAuthorizationOut,
    PickupCandidateOut,
    PresentChildOut,
    TokenLookupOut,
    WaitlistCreate,
    WaitlistOut,
    WaitlistUpdate,
)

UserRole = Literal["admin", "leader", "staff", "parent"]


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6, max_length=72)
    full_name: Optional[str] = None
    phone_number: Optional[str] = None


class UserOut(BaseModel):
    id: UUID
    email: EmailStr
    full_name: Optional[str] = None
    phone_number: Optional[str] = None
    role: UserRole
    is_admin: bool = False
    is_active: bool = True
    model_config = ConfigDict(from_attributes=True)


class UserUpdate(BaseModel):
    full_name: Optional[str] = None
    phone_number: Optional[str] = None


class UserRoleUpdate(BaseModel):
    role: UserRole
    is_active: Optional[bool] = None


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class NotificationOut(BaseModel):
    id: UUID
    user_id: UUID
    message: str
    title: Optional[str] = None
    category: Optional[str] = None
    priority: str = "medium"
    is_read: bool
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditLogOut(BaseModel):
    id: UUID
    user_id: UUID | None = None
    action: str
    target_type: str | None = None
    target_id: UUID | None = None
    child_id: UUID | None = None
    custody_record_id: UUID | None = None
    details: Dict[str, Any] = {}
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AuditReportItem(BaseModel):
    action: str
    count: int
