"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from shared.models.models import (
    BookingStatus,
    PaymentStatus,
    TicketCategory,
    TicketPriority,
    TicketStatus,
    UserRole,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ── User settings (immutable value objects) ───────────────────

class _SettingsValue(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class NotificationSettings(_SettingsValue):
    email: bool = True
    sms: bool = False
    marketing: bool = False
    reminders: bool = True


class AppearanceSettings(_SettingsValue):
    theme: Literal["light", "dark", "system"] = "system"
    font_size: Literal["small", "medium", "large"] = "medium"
    reduce_animations: bool = False
    high_contrast: bool = False


class PrivacySettings(_SettingsValue):
    profile_visibility: Literal["public", "contacts", "private"] = "public"
    share_booking_history: bool = False
    share_contact_info: bool = False
    allow_data_collection: bool = True


class UserSettings(_SettingsValue):
    notifications: NotificationSettings = NotificationSettings()
    appearance: AppearanceSettings = AppearanceSettings()
    privacy: PrivacySettings = PrivacySettings()


class NotificationSettingsPatch(BaseSchema):
    email: Optional[bool] = None
    sms: Optional[bool] = None
    marketing: Optional[bool] = None
    reminders: Optional[bool] = None


class AppearanceSettingsPatch(BaseSchema):
    theme: Optional[Literal["light", "dark", "system"]] = None
    font_size: Optional[Literal["small", "medium", "large"]] = None
    reduce_animations: Optional[bool] = None
    high_contrast: Optional[bool] = None


class PrivacySettingsPatch(BaseSchema):
    profile_visibility: Optional[Literal["public", "contacts", "private"]] = None
    share_booking_history: Optional[bool] = None
    share_contact_info: Optional[bool] = None
    allow_data_collection: Optional[bool] = None


class UserSettingsPatch(BaseSchema):
    notifications: Optional[NotificationSettingsPatch] = None
    appearance: Optional[AppearanceSettingsPatch] = None
    privacy: Optional[PrivacySettingsPatch] = None


# ── User ──────────────────────────────────────────────────────

class UserResponse(BaseSchema):
    """Full record as seen by the owner or an admin. Never carries the password."""
    id: uuid.UUID
    email: EmailStr
    name: str
    role: str
    phone: Optional[str]
    address: Optional[str]
    is_active: bool
    settings: UserSettings
    last_login: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class UserUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone: Optional[str] = Field(None, pattern=r"^\+?[0-9]{7,15}$")
    address: Optional[str] = Field(None, max_length=500)
    role: Optional[str] = None
    password: Optional[str] = Field(None, min_length=8, max_length=72)
    is_active: Optional[bool] = None


class AdminUserBulkRequest(BaseSchema):
    action: str
    user_ids: List[str]


# ── Service ───────────────────────────────────────────────────

class ServiceCreateRequest(BaseSchema):
    title: str = Field(..., min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    price: Decimal = Field(..., ge=0)
    category: str = Field("general", max_length=100)
    agent_id: Optional[uuid.UUID] = None  # admin-tier only


class ServiceUpdateRequest(BaseSchema):
    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    price: Optional[Decimal] = Field(None, ge=0)
    category: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None


class ServiceResponse(BaseSchema):
    id: uuid.UUID
    agent_id: uuid.UUID
    title: str
    description: Optional[str]
    price: Decimal
    category: str
    is_active: bool
    created_at: datetime


# ── Booking ───────────────────────────────────────────────────

def _future_date(v: datetime) -> datetime:
    if v.tzinfo is None:
        v = v.replace(tzinfo=timezone.utc)
    if v <= datetime.now(timezone.utc):
        raise ValueError("Scheduled date must be in the future")
    return v


class BookingCreateRequest(BaseSchema):
    service_id: uuid.UUID
    scheduled_date: datetime
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("scheduled_date")
    @classmethod
    def validate_scheduled_date(cls, v: datetime) -> datetime:
        return _future_date(v)


class BookingUpdateRequest(BaseSchema):
    # status stays a plain string so an unknown value is reported as
    # "Invalid status" by the state machine rather than a schema error
    status: Optional[str] = None
    scheduled_date: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=2000)
    agent_notes: Optional[str] = Field(None, max_length=2000)
    total_amount: Optional[Decimal] = Field(None, ge=0)
    payment_status: Optional[str] = None

    @field_validator("scheduled_date")
    @classmethod
    def validate_scheduled_date(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _future_date(v) if v is not None else v


class BookingReviewRequest(BaseSchema):
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=2000)


class BookingBulkRequest(BaseSchema):
    action: Optional[str] = None
    ids: Optional[List[str]] = None
    value: Optional[str] = None


class ServiceSummary(BaseSchema):
    id: uuid.UUID
    title: str
    description: Optional[str]
    price: Decimal
    category: str


class PartySummary(BaseSchema):
    id: uuid.UUID
    name: str
    email: EmailStr
    phone: Optional[str]


class BookingWithRelations(BaseSchema):
    """A booking hydrated with its service, customer and agent. All three are required."""
    id: uuid.UUID
    status: BookingStatus
    scheduled_date: datetime
    notes: Optional[str]
    agent_notes: Optional[str]
    amount: Decimal
    total_amount: Decimal
    payment_status: PaymentStatus
    rating: Optional[int]
    review: Optional[str]
    last_status_update: Optional[datetime]
    confirmed_at: Optional[datetime]
    completed_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime
    service: ServiceSummary
    user: PartySummary
    agent: PartySummary


# ── Dashboards ────────────────────────────────────────────────

class StatusBucket(BaseSchema):
    count: int = 0
    total_amount: Decimal = Decimal("0.00")


class BookingDashboardResponse(BaseSchema):
    by_status: dict[str, StatusBucket]
    total: int
    total_amount: Decimal
    earnings: Decimal
    total_services: Optional[int] = None
    active_services: Optional[int] = None
    timestamp: datetime


class AdminStatsResponse(BaseSchema):
    users_by_role: dict[str, int]
    total_services: int
    active_services: int
    total_bookings: int
    pending_bookings: int
    bookings_today: int
    total_revenue: Decimal
    open_tickets: int
    system_health: Literal["good", "warning", "critical"]


# ── Support ───────────────────────────────────────────────────

class TicketCreateRequest(BaseSchema):
    subject: str = Field(..., min_length=5, max_length=255)
    description: str = Field(..., min_length=10, max_length=5000)
    category: TicketCategory = TicketCategory.OTHER
    priority: TicketPriority = TicketPriority.MEDIUM


class TicketUpdateRequest(BaseSchema):
    status: Optional[TicketStatus] = None
    priority: Optional[TicketPriority] = None


class TicketReplyRequest(BaseSchema):
    message: str = Field(..., min_length=1, max_length=5000)


class TicketAuthor(BaseSchema):
    id: uuid.UUID
    name: str
    role: UserRole


class TicketReplyResponse(BaseSchema):
    id: uuid.UUID
    message: str
    is_staff: bool
    created_at: datetime
    author: TicketAuthor


class TicketSummary(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    subject: str
    status: TicketStatus
    priority: TicketPriority
    category: TicketCategory
    created_at: datetime
    updated_at: datetime


class TicketDetail(TicketSummary):
    description: str
    responses: List[TicketReplyResponse]


# ── Audit ─────────────────────────────────────────────────────

class AuditLogResponse(BaseSchema):
    id: uuid.UUID
    user_id: uuid.UUID
    action: str
    entity_type: str
    entity_id: Optional[str]
    details: Optional[dict]
    ip_address: Optional[str]
    created_at: datetime
