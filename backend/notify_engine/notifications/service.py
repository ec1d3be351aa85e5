"""Notification read queries: admin listing, detail, and a recipient's inbox."""

import math
from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .enums import NotificationCategory, NotificationType
from .exceptions import NotificationNotFoundError
from .models import DeliveryLog, Notification, UserNotification
from .schemas import (
    DeliveryLogResponse,
    NotificationDetailResponse,
    NotificationFilters,
    NotificationResponse,
    NotificationStats,
    Page,
)
from .tracker import VISIBLE_STATUSES

MAX_PAGE_SIZE = 100


def _page(page: int, limit: int) -> tuple[int, int]:
    page = max(page, 1)
    limit = min(max(limit, 1), MAX_PAGE_SIZE)
    return page, limit


def page_info(page: int, limit: int, total: int) -> Page:
    return Page(page=page, limit=limit, total=total, pages=math.ceil(total / limit) if total else 0)


def channel_counts(db: Session, notification_ids: Iterable[UUID]) -> dict[UUID, dict[str, int]]:
    """Delivery-log counts per channel for each notification."""
    ids = list(notification_ids)
    if not ids:
        return {}
    rows = (
        db.query(DeliveryLog.notification_id, DeliveryLog.channel, func.count(DeliveryLog.id))
        .filter(DeliveryLog.notification_id.in_(ids))
        .group_by(DeliveryLog.notification_id, DeliveryLog.channel)
        .all()
    )
    counts: dict[UUID, dict[str, int]] = {}
    for notification_id, channel, count in rows:
        counts.setdefault(notification_id, {})[str(channel)] = int(count)
    return counts


def to_response(notification: Notification, channels: dict[str, int] | None = None) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        title=notification.title,
        body=notification.body,
        type=notification.type,
        priority=notification.priority,
        category=notification.category,
        channels=notification.channels or [],
        target=notification.target_spec or {},
        status=notification.status,
        template_id=notification.template_id,
        metadata=notification.meta or {},
        scheduled_at=notification.scheduled_at,
        expires_at=notification.expires_at,
        sent_at=notification.sent_at,
        completed_at=notification.completed_at,
        created_by=notification.created_by,
        created_at=notification.created_at,
        stats=NotificationStats(
            total_targets=notification.total_targets or 0,
            read_count=notification.read_count or 0,
            delivered_count=notification.delivered_count or 0,
            channels=channels or {},
        ),
    )


def list_notifications(
    db: Session,
    tenant_id: UUID,
    filters: NotificationFilters | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[NotificationResponse], Page]:
    page, limit = _page(page, limit)
    filters = filters or NotificationFilters()

    q = db.query(Notification).filter(Notification.tenant_id == tenant_id)
    if filters.type:
        q = q.filter(Notification.type == filters.type)
    if filters.category:
        q = q.filter(Notification.category == filters.category)
    if filters.status:
        q = q.filter(Notification.status == filters.status)
    if filters.priority:
        q = q.filter(Notification.priority == filters.priority)
    if filters.created_by:
        q = q.filter(Notification.created_by == filters.created_by)
    if filters.date_from:
        q = q.filter(Notification.created_at >= filters.date_from)
    if filters.date_to:
        q = q.filter(Notification.created_at <= filters.date_to)

    total = q.count()
    notifications = (
        q.order_by(Notification.created_at.desc(), Notification.id).offset((page - 1) * limit).limit(limit).all()
    )
    counts = channel_counts(db, [n.id for n in notifications])
    return [to_response(n, counts.get(n.id)) for n in notifications], page_info(page, limit, total)


def get_notification(db: Session, tenant_id: UUID, notification_id: UUID) -> NotificationDetailResponse:
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.tenant_id == tenant_id)
        .first()
    )
    if notification is None:
        raise NotificationNotFoundError(notification_id)

    logs = (
        db.query(DeliveryLog)
        .filter(DeliveryLog.notification_id == notification_id)
        .order_by(DeliveryLog.user_id, DeliveryLog.channel)
        .all()
    )
    counts = channel_counts(db, [notification_id]).get(notification_id)
    base = to_response(notification, counts)
    return NotificationDetailResponse(
        **base.model_dump(),
        delivery_logs=[DeliveryLogResponse.model_validate(log) for log in logs],
    )


def user_inbox(
    db: Session,
    user_id: UUID,
    unread_only: bool = False,
    type: NotificationType | None = None,
    category: NotificationCategory | None = None,
    page: int = 1,
    limit: int = 20,
    now: datetime | None = None,
) -> tuple[list[tuple[UserNotification, Notification]], int, int, Page]:
    """A recipient's dispatched, unexpired notifications, newest first.

    Returns (rows, total, unread_count, page).
    """
    page, limit = _page(page, limit)
    now = now or datetime.now(UTC)

    q = (
        db.query(UserNotification, Notification)
        .join(Notification, Notification.id == UserNotification.notification_id)
        .filter(
            UserNotification.user_id == user_id,
            Notification.status.in_(VISIBLE_STATUSES),
            or_(Notification.expires_at.is_(None), Notification.expires_at > now),
        )
    )
    if type:
        q = q.filter(Notification.type == type)
    if category:
        q = q.filter(Notification.category == category)

    unread_count = q.filter(UserNotification.is_read.is_(False)).count()
    if unread_only:
        q = q.filter(UserNotification.is_read.is_(False))

    total = q.count()
    rows = (
        q.order_by(Notification.created_at.desc(), Notification.id).offset((page - 1) * limit).limit(limit).all()
    )
    return [(un, n) for un, n in rows], total, unread_count, page_info(page, limit, total)
