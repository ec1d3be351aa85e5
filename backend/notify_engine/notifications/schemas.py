"""Notification request/response schemas."""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import (
    Channel,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
    TargetType,
    UserRole,
)

# Which flat lists each target type may carry. COMBINED accepts all of them plus parts.
_ALLOWED_FIELDS: dict[TargetType, frozenset[str]] = {
    TargetType.ALL_USERS: frozenset(),
    TargetType.SPECIFIC_USERS: frozenset({"user_ids"}),
    TargetType.ROLE_BASED: frozenset({"roles"}),
    TargetType.CLASS_BASED: frozenset({"class_ids"}),
    TargetType.COMBINED: frozenset({"user_ids", "roles", "class_ids", "parts"}),
}


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken to be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class TargetSpec(BaseModel):
    type: TargetType
    user_ids: list[UUID] = Field(default_factory=list)
    roles: list[UserRole] = Field(default_factory=list)
    class_ids: list[UUID] = Field(default_factory=list)
    parts: list["TargetSpec"] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_shape(self) -> "TargetSpec":
        allowed = _ALLOWED_FIELDS[self.type]
        for name in ("user_ids", "roles", "class_ids", "parts"):
            if getattr(self, name) and name not in allowed:
                raise ValueError(f"'{name}' is not allowed for target type {self.type}")
        return self

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_defaults=True)


class NotificationCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    body: str = Field(..., min_length=1)
    type: NotificationType
    priority: NotificationPriority = NotificationPriority.NORMAL
    category: NotificationCategory = NotificationCategory.GENERAL
    channels: list[Channel] = Field(default_factory=list)
    target: TargetSpec
    template_id: UUID | None = None
    template_data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: datetime | None = None
    expires_at: datetime | None = None

    @field_validator("channels")
    @classmethod
    def dedupe_channels(cls, value: list[Channel]) -> list[Channel]:
        return list(dict.fromkeys(value))

    @field_validator("scheduled_at", "expires_at")
    @classmethod
    def normalize_tz(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @model_validator(mode="after")
    def check_window(self) -> "NotificationCreateRequest":
        if self.scheduled_at and self.expires_at and self.expires_at <= self.scheduled_at:
            raise ValueError("expires_at must be after scheduled_at")
        return self


class NotificationFilters(BaseModel):
    type: NotificationType | None = None
    category: NotificationCategory | None = None
    status: NotificationStatus | None = None
    priority: NotificationPriority | None = None
    created_by: UUID | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None

    @field_validator("date_from", "date_to")
    @classmethod
    def normalize_tz(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class StatsWindow(BaseModel):
    date_from: datetime | None = None
    date_to: datetime | None = None
    period_days: int = Field(30, ge=1, le=3650)

    @field_validator("date_from", "date_to")
    @classmethod
    def normalize_tz(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def bounds(self, now: datetime | None = None) -> tuple[datetime, datetime]:
        end = self.date_to or as_utc(now) or datetime.now(UTC)
        start = self.date_from or end - timedelta(days=self.period_days)
        return start, end


class NotificationStats(BaseModel):
    total_targets: int
    read_count: int
    delivered_count: int
    channels: dict[str, int] = Field(default_factory=dict)


class NotificationResponse(BaseModel):
    id: UUID
    title: str
    body: str
    type: NotificationType
    priority: NotificationPriority
    category: NotificationCategory
    channels: list[Channel]
    target: dict[str, Any]
    status: NotificationStatus
    template_id: UUID | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    scheduled_at: datetime | None = None
    expires_at: datetime | None = None
    sent_at: datetime | None = None
    completed_at: datetime | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    stats: NotificationStats


class DeliveryLogResponse(BaseModel):
    id: UUID
    user_id: UUID | None
    recipient: str
    channel: Channel
    status: str
    provider_ref: str | None = None
    error: str | None = None
    attempts: int
    sent_at: datetime | None = None
    failed_at: datetime | None = None

    model_config = {"from_attributes": True}


class NotificationDetailResponse(NotificationResponse):
    delivery_logs: list[DeliveryLogResponse] = Field(default_factory=list)


class UserNotificationResponse(BaseModel):
    notification_id: UUID
    title: str
    body: str
    type: NotificationType
    priority: NotificationPriority
    category: NotificationCategory
    is_read: bool
    read_at: datetime | None = None
    is_delivered: bool
    delivered_at: datetime | None = None
    created_at: datetime | None = None


class Page(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class NotificationListResponse(BaseModel):
    notifications: list[NotificationResponse]
    pagination: Page


class UserNotificationListResponse(BaseModel):
    notifications: list[UserNotificationResponse]
    unread_count: int
    pagination: Page
