"""Scheduled delivery: claiming due notifications, cancellation, and the background timer."""

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from .enums import NotificationStatus
from .exceptions import NotCancellableError, NotificationNotFoundError
from .models import Notification
from .tracker import transition

logger = logging.getLogger(__name__)


def claim_due(db: Session, now: datetime | None = None, limit: int = 50) -> list[UUID]:
    """Move due SCHEDULED notifications to SENDING and return the ids this call won.

    Due notifications that already expired are cancelled instead. A claim lost to a
    concurrent caller (or a cancellation) is skipped silently.
    """
    now = now or datetime.now(UTC)

    expired = (
        db.query(Notification.id)
        .filter(
            Notification.status == NotificationStatus.SCHEDULED,
            Notification.scheduled_at <= now,
            Notification.expires_at.isnot(None),
            Notification.expires_at <= now,
        )
        .all()
    )
    for row in expired:
        if transition(db, row.id, NotificationStatus.SCHEDULED, NotificationStatus.CANCELLED, now=now):
            logger.info("Notification %s expired before dispatch, cancelled", row.id)

    candidates = (
        db.query(Notification.id)
        .filter(
            Notification.status == NotificationStatus.SCHEDULED,
            Notification.scheduled_at <= now,
        )
        .order_by(Notification.scheduled_at)
        .limit(limit)
        .all()
    )
    claimed = [
        row.id
        for row in candidates
        if transition(db, row.id, NotificationStatus.SCHEDULED, NotificationStatus.SENDING, sent_at=now)
    ]
    if claimed:
        logger.info("Claimed %d due notification(s)", len(claimed))
    return claimed


def cancel_notification(db: Session, tenant_id: UUID, notification_id: UUID) -> Notification:
    """Cancel a SCHEDULED notification of the tenant."""
    exists = (
        db.query(Notification.id)
        .filter(Notification.id == notification_id, Notification.tenant_id == tenant_id)
        .first()
    )
    if exists is None:
        raise NotificationNotFoundError(notification_id)

    if not transition(db, notification_id, NotificationStatus.SCHEDULED, NotificationStatus.CANCELLED):
        current = db.query(Notification.status).filter(Notification.id == notification_id).scalar()
        raise NotCancellableError(notification_id, str(current))

    logger.info("Notification %s cancelled", notification_id)
    return db.get(Notification, notification_id)


def recently_completed(db: Session, retry_window_hours: int, now: datetime | None = None) -> list[UUID]:
    """Ids of SENT/FAILED notifications completed inside the retry window."""
    since = (now or datetime.now(UTC)) - timedelta(hours=retry_window_hours)
    rows = (
        db.query(Notification.id)
        .filter(
            Notification.status.in_((NotificationStatus.SENT, NotificationStatus.FAILED)),
            Notification.completed_at >= since,
        )
        .order_by(Notification.completed_at)
        .all()
    )
    return [row.id for row in rows]


class NotificationScheduler:
    """Background timer driving the engine's due-notification and retry passes."""

    def __init__(self, engine, interval_seconds: int = 15, retry_interval_seconds: int = 300) -> None:
        self._engine = engine
        self._interval = interval_seconds
        self._retry_interval = retry_interval_seconds
        self._scheduler = BackgroundScheduler(timezone="UTC")

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def _process_due(self) -> None:
        try:
            self._engine.process_due()
        except Exception:
            logger.exception("Scheduled pass over due notifications failed")

    def _retry(self) -> None:
        try:
            self._engine.retry_recent_failures()
        except Exception:
            logger.exception("Delivery retry pass failed")

    def start(self) -> None:
        self._scheduler.add_job(
            self._process_due,
            trigger="interval",
            seconds=self._interval,
            id="notifications_process_due",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=60,
        )
        self._scheduler.add_job(
            self._retry,
            trigger="interval",
            seconds=self._retry_interval,
            id="notifications_retry_failed",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )
        self._scheduler.start()
        logger.info("Notification scheduler started (interval=%ss)", self._interval)

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Notification scheduler stopped")
