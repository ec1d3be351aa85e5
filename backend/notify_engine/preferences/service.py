"""Preference lookups: which channels a recipient accepts for a category."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from ..directory.models import User
from ..notifications.enums import Channel, NotificationCategory, UserRole
from .models import NotificationPreference, UserNotificationSettings

logger = logging.getLogger(__name__)

_WEEKDAYS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")

# SMS costs money per message: only guardians get it unless they opt in explicitly.
_SMS_DEFAULT_ROLES = frozenset({UserRole.PARENT})


@dataclass
class RecipientPreferences:
    user_id: UUID
    enabled_channels: set[Channel] = field(default_factory=set)
    globally_enabled: bool = True
    in_quiet_hours: bool = False


class PreferenceStore(Protocol):
    def load(
        self, db: Session, users: Iterable[User], category: NotificationCategory, now: datetime | None = None
    ) -> dict[UUID, RecipientPreferences]: ...


def default_channels_for(role: UserRole | str) -> set[Channel]:
    """Channels a user accepts when no explicit preference row exists."""
    channels = {Channel.EMAIL, Channel.PUSH, Channel.IN_APP, Channel.WEBHOOK}
    if role in _SMS_DEFAULT_ROLES:
        channels.add(Channel.SMS)
    return channels


def _minutes(hhmm: str) -> int:
    hours, minutes = hhmm.split(":")
    return int(hours) * 60 + int(minutes)


def is_in_quiet_hours(user_settings: UserNotificationSettings, now: datetime) -> bool:
    """Check whether `now` falls inside the user's quiet hours window.

    Windows may span midnight (22:00-07:00). Malformed settings never silence a user.
    """
    if not user_settings.quiet_hours_enabled:
        return False
    if not user_settings.quiet_hours_start or not user_settings.quiet_hours_end:
        return False

    try:
        tz = ZoneInfo(user_settings.timezone or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r for user %s, using UTC", user_settings.timezone, user_settings.user_id)
        tz = ZoneInfo("UTC")
    local = now.astimezone(tz)

    days = [d.strip().upper() for d in (user_settings.quiet_hours_days or "").split(",") if d.strip()]
    if days and _WEEKDAYS[local.weekday()] not in days:
        return False

    try:
        start = _minutes(user_settings.quiet_hours_start)
        end = _minutes(user_settings.quiet_hours_end)
    except ValueError:
        logger.warning("Malformed quiet hours for user %s", user_settings.user_id)
        return False

    current = local.hour * 60 + local.minute
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


class SqlPreferenceStore:
    """Preference store backed by notification_preferences and user_notification_settings."""

    def load(
        self, db: Session, users: Iterable[User], category: NotificationCategory, now: datetime | None = None
    ) -> dict[UUID, RecipientPreferences]:
        users = list(users)
        if not users:
            return {}
        now = now or datetime.now(UTC)
        ids = [u.id for u in users]

        overrides: dict[UUID, dict[Channel, bool]] = {}
        rows = (
            db.query(NotificationPreference)
            .filter(NotificationPreference.user_id.in_(ids), NotificationPreference.category == category)
            .all()
        )
        for row in rows:
            overrides.setdefault(row.user_id, {})[Channel(row.channel)] = bool(row.enabled)

        user_settings = {
            s.user_id: s
            for s in db.query(UserNotificationSettings).filter(UserNotificationSettings.user_id.in_(ids)).all()
        }

        result: dict[UUID, RecipientPreferences] = {}
        for user in users:
            channels = default_channels_for(user.role)
            for channel, enabled in overrides.get(user.id, {}).items():
                if enabled:
                    channels.add(channel)
                else:
                    channels.discard(channel)

            prefs = RecipientPreferences(user_id=user.id, enabled_channels=channels)
            s = user_settings.get(user.id)
            if s is not None:
                prefs.globally_enabled = bool(s.is_enabled)
                prefs.in_quiet_hours = is_in_quiet_hours(s, now)
            result[user.id] = prefs
        return result
