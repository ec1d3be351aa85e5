"""Notification, fan-out and delivery-log models."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from ..database.base import Base
from .enums import (
    Channel,
    DeliveryStatus,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
    NotificationType,
)


def _enum(enum_cls):
    return SQLEnum(enum_cls, values_callable=lambda e: [s.value for s in e], native_enum=False, length=32)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tenant_id = Column(UUID(as_uuid=True), nullable=False)

    # Content
    title = Column(String(500), nullable=False)
    body = Column(Text, nullable=False)
    type = Column(_enum(NotificationType), nullable=False)
    priority = Column(_enum(NotificationPriority), nullable=False, default=NotificationPriority.NORMAL)
    category = Column(_enum(NotificationCategory), nullable=False, default=NotificationCategory.GENERAL)
    channels = Column(JSON, nullable=False, default=list)
    target_spec = Column(JSON, nullable=False, default=dict)
    template_id = Column(UUID(as_uuid=True), nullable=True)
    template_data = Column(JSON, default=dict)
    meta = Column("metadata", JSON, default=dict)

    # Lifecycle
    status = Column(_enum(NotificationStatus), nullable=False, default=NotificationStatus.DRAFT)
    scheduled_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    # Running counters (kept equal to a recount of the child rows)
    total_targets = Column(Integer, nullable=False, default=0)
    read_count = Column(Integer, nullable=False, default=0)
    delivered_count = Column(Integer, nullable=False, default=0)

    created_by = Column(UUID(as_uuid=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    user_notifications = relationship(
        "UserNotification", back_populates="notification", cascade="all, delete-orphan", passive_deletes=True
    )
    delivery_logs = relationship(
        "DeliveryLog", back_populates="notification", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("idx_notifications_tenant_created", "tenant_id", "created_at"),
        Index("idx_notifications_status_scheduled", "status", "scheduled_at"),
    )


class UserNotification(Base):
    """Fan-out record: one per (notification, recipient)."""

    __tablename__ = "user_notifications"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notification_id = Column(
        UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    is_delivered = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )

    notification = relationship("Notification", back_populates="user_notifications")

    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", name="uq_user_notification"),
        Index("idx_user_notifications_user_read", "user_id", "is_read"),
    )


class DeliveryLog(Base):
    """One delivery attempt per (notification, recipient, channel); retries update the row."""

    __tablename__ = "notification_delivery_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    notification_id = Column(
        UUID(as_uuid=True),
        ForeignKey("notifications.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient = Column(String(500), default="")  # email / phone / token / url / user id
    channel = Column(_enum(Channel), nullable=False)
    status = Column(_enum(DeliveryStatus), nullable=False, default=DeliveryStatus.PENDING)
    provider_ref = Column(String(255), nullable=True)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
    )
    sent_at = Column(DateTime(timezone=True), nullable=True)
    failed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    notification = relationship("Notification", back_populates="delivery_logs")

    __table_args__ = (
        UniqueConstraint("notification_id", "user_id", "channel", name="uq_delivery_notification_user_channel"),
        Index("idx_delivery_logs_channel_created", "channel", "created_at"),
    )
