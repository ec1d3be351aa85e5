"""Per-user notification preferences (read-only for the engine)."""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.dialects.postgresql import UUID

from ..database.base import Base
from ..notifications.enums import Channel, NotificationCategory


class NotificationPreference(Base):
    """Opt-in flag for one (user, category, channel)."""

    __tablename__ = "notification_preferences"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    category = Column(
        SQLEnum(NotificationCategory, values_callable=lambda e: [s.value for s in e], native_enum=False),
        nullable=False,
    )
    channel = Column(
        SQLEnum(Channel, values_callable=lambda e: [s.value for s in e], native_enum=False),
        nullable=False,
    )
    enabled = Column(Boolean, default=True, nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (UniqueConstraint("user_id", "category", "channel", name="uq_pref_user_category_channel"),)


class UserNotificationSettings(Base):
    """Global switch and quiet hours for one user."""

    __tablename__ = "user_notification_settings"

    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    is_enabled = Column(Boolean, default=True, nullable=False)
    quiet_hours_enabled = Column(Boolean, default=False, nullable=False)
    quiet_hours_start = Column(String(5), default="22:00")  # HH:MM
    quiet_hours_end = Column(String(5), default="07:00")
    quiet_hours_days = Column(String(40), default="MON,TUE,WED,THU,FRI,SAT,SUN")
    timezone = Column(String(64), default="UTC")
