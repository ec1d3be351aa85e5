"""Notification state: creation, status transitions, delivered/read counters.

Every mutation here is a single conditional UPDATE whose rowcount decides the winner, so
concurrent callers never double-count and never move a notification backwards.
"""

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from .enums import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Channel,
    DeliveryStatus,
    NotificationStatus,
)
from .exceptions import InvalidTransitionError, NotificationNotFoundError
from .models import DeliveryLog, Notification, UserNotification

logger = logging.getLogger(__name__)

# Notifications a recipient can see and read
VISIBLE_STATUSES = (NotificationStatus.SENDING, NotificationStatus.SENT)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _expire_cached(db: Session, model, ident: UUID) -> None:
    obj = db.identity_map.get(db.identity_key(model, ident))
    if obj is not None:
        db.expire(obj)


def create_notification(
    db: Session,
    tenant_id: UUID,
    fields: Mapping[str, Any],
    recipients: Iterable[UUID],
    created_by: UUID | None = None,
) -> Notification:
    """Insert a DRAFT notification with one fan-out record per recipient."""
    ordered = sorted(set(recipients), key=str)
    notification = Notification(
        tenant_id=tenant_id,
        status=NotificationStatus.DRAFT,
        total_targets=len(ordered),
        read_count=0,
        delivered_count=0,
        created_by=created_by,
        **fields,
    )
    db.add(notification)
    db.flush()

    db.add_all(UserNotification(notification_id=notification.id, user_id=user_id) for user_id in ordered)
    db.flush()
    return notification


def transition(
    db: Session,
    notification_id: UUID,
    from_status: NotificationStatus,
    to_status: NotificationStatus,
    now: datetime | None = None,
    **values: Any,
) -> bool:
    """Compare-and-swap the notification status. Returns True if this call won."""
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        raise InvalidTransitionError(from_status, to_status)

    values["status"] = to_status
    if to_status in TERMINAL_STATUSES:
        values.setdefault("completed_at", now or _utcnow())

    rows = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.status == from_status)
        .update(values, synchronize_session=False)
    )
    _expire_cached(db, Notification, notification_id)
    if rows:
        logger.debug("Notification %s: %s -> %s", notification_id, from_status, to_status)
    return rows == 1


def mark_delivered(
    db: Session, notification_id: UUID, user_ids: Iterable[UUID], now: datetime | None = None
) -> int:
    """Flag fan-out records delivered; delivered_count grows only by the records this call flipped.

    The fan-out rows are updated before the notification row, the same order mark_read locks them.
    """
    user_ids = list(user_ids)
    if not user_ids:
        return 0
    rows = (
        db.query(UserNotification)
        .filter(
            UserNotification.notification_id == notification_id,
            UserNotification.user_id.in_(user_ids),
            UserNotification.is_delivered.is_(False),
        )
        .update({"is_delivered": True, "delivered_at": now or _utcnow()}, synchronize_session=False)
    )
    if rows:
        db.query(Notification).filter(Notification.id == notification_id).update(
            {"delivered_count": Notification.delivered_count + rows}, synchronize_session=False
        )
        _expire_cached(db, Notification, notification_id)
    return rows


def _mark_in_app_read(db: Session, notification_id: UUID, user_id: UUID, now: datetime) -> None:
    db.query(DeliveryLog).filter(
        DeliveryLog.notification_id == notification_id,
        DeliveryLog.user_id == user_id,
        DeliveryLog.channel == Channel.IN_APP,
        DeliveryLog.status != DeliveryStatus.READ,
    ).update({"status": DeliveryStatus.READ, "updated_at": now}, synchronize_session=False)


def _claim_read(db: Session, notification_id: UUID, user_id: UUID, now: datetime) -> bool:
    rows = (
        db.query(UserNotification)
        .filter(
            UserNotification.notification_id == notification_id,
            UserNotification.user_id == user_id,
            UserNotification.is_read.is_(False),
        )
        .update({"is_read": True, "read_at": now}, synchronize_session=False)
    )
    if not rows:
        return False
    db.query(Notification).filter(Notification.id == notification_id).update(
        {"read_count": Notification.read_count + 1}, synchronize_session=False
    )
    _expire_cached(db, Notification, notification_id)
    _mark_in_app_read(db, notification_id, user_id, now)
    return True


def mark_read(db: Session, notification_id: UUID, user_id: UUID, now: datetime | None = None) -> bool:
    """Mark one notification read for a user.

    Idempotent: returns False when the record was already read. Raises
    NotificationNotFoundError when the user is not a recipient or the notification
    has not been dispatched (scheduled and cancelled ones are not in the inbox).
    """
    exists = (
        db.query(UserNotification.id)
        .join(Notification, Notification.id == UserNotification.notification_id)
        .filter(
            UserNotification.notification_id == notification_id,
            UserNotification.user_id == user_id,
            Notification.status.in_(VISIBLE_STATUSES),
        )
        .first()
    )
    if exists is None:
        raise NotificationNotFoundError(notification_id)
    return _claim_read(db, notification_id, user_id, now or _utcnow())


def mark_all_read(db: Session, user_id: UUID, now: datetime | None = None) -> int:
    """Mark every visible unread notification of a user read. Returns how many this call flipped."""
    now = now or _utcnow()
    unread = (
        db.query(UserNotification.notification_id)
        .join(Notification, Notification.id == UserNotification.notification_id)
        .filter(
            UserNotification.user_id == user_id,
            UserNotification.is_read.is_(False),
            Notification.status.in_(VISIBLE_STATUSES),
        )
        .all()
    )
    changed = sum(1 for row in unread if _claim_read(db, row.notification_id, user_id, now))
    if changed:
        logger.info("Marked %d notification(s) read for user %s", changed, user_id)
    return changed


def recompute_counters(db: Session, notification_id: UUID) -> dict[str, int]:
    """Counters computed from the fan-out records, for checking the stored ones."""
    base = db.query(UserNotification).filter(UserNotification.notification_id == notification_id)
    return {
        "total_targets": base.count(),
        "read_count": base.filter(UserNotification.is_read.is_(True)).count(),
        "delivered_count": base.filter(UserNotification.is_delivered.is_(True)).count(),
    }
