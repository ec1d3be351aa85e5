"""Aggregate notification statistics over a time window."""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from .enums import SUCCESS_STATUSES, DeliveryStatus, NotificationStatus
from .models import DeliveryLog, Notification, UserNotification


def _rate(numerator: int, denominator: int) -> float:
    if not denominator:
        return 0.0
    return round(numerator / denominator * 100, 2)


def _key(value) -> str:
    return str(value.value if hasattr(value, "value") else value)


def get_stats(db: Session, tenant_id: UUID, date_from: datetime, date_to: datetime) -> dict:
    """Notification counts by type/priority/status and delivery counts by channel.

    Notifications are selected by created_at within [date_from, date_to]; delivery-log
    and read figures cover the deliveries of those notifications.
    """
    in_window = (
        Notification.tenant_id == tenant_id,
        Notification.created_at >= date_from,
        Notification.created_at <= date_to,
    )

    def grouped(column) -> dict[str, int]:
        rows = db.query(column, func.count(Notification.id)).filter(*in_window).group_by(column).all()
        return {_key(value): int(count) for value, count in rows}

    by_type = grouped(Notification.type)
    by_priority = grouped(Notification.priority)
    by_status = grouped(Notification.status)

    by_channel: dict[str, dict] = {}
    delivery_rows = (
        db.query(DeliveryLog.channel, DeliveryLog.status, func.count(DeliveryLog.id))
        .join(Notification, Notification.id == DeliveryLog.notification_id)
        .filter(*in_window)
        .group_by(DeliveryLog.channel, DeliveryLog.status)
        .all()
    )
    total_deliveries = sent_or_better = failed_deliveries = 0
    for channel, status, count in delivery_rows:
        count = int(count)
        entry = by_channel.setdefault(_key(channel), {"total": 0, "statuses": {}})
        entry["total"] += count
        entry["statuses"][_key(status)] = count
        total_deliveries += count
        if status in SUCCESS_STATUSES:
            sent_or_better += count
        elif status == DeliveryStatus.FAILED:
            failed_deliveries += count

    read = (
        db.query(func.count(UserNotification.id))
        .join(Notification, Notification.id == UserNotification.notification_id)
        .filter(*in_window, UserNotification.is_read.is_(True))
        .scalar()
        or 0
    )

    return {
        "period": {"from": date_from.isoformat(), "to": date_to.isoformat()},
        "summary": {
            "total_notifications": sum(by_status.values()),
            "sent": by_status.get(NotificationStatus.SENT.value, 0),
            "failed": by_status.get(NotificationStatus.FAILED.value, 0),
            "total_deliveries": total_deliveries,
            "successful_deliveries": sent_or_better,
            "failed_deliveries": failed_deliveries,
            "read": int(read),
            "delivery_rate": _rate(sent_or_better, total_deliveries),
            "read_rate": _rate(int(read), sent_or_better),
        },
        "by_type": by_type,
        "by_priority": by_priority,
        "by_status": by_status,
        "by_channel": by_channel,
    }
