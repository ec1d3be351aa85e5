"""Per-recipient, per-channel dispatch of a notification.

The coordinating thread owns one database session for the whole dispatch; only the sink
calls fan out to the send pool. Each (notification, recipient, channel) has a single
delivery-log row that is created PENDING and then updated with the outcome.

A chunk commits twice: once with its fan-out, IN_APP and PENDING rows before any sink is
called, and once with the sink outcomes. No transaction stays open across sink I/O.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from ..config import Settings
from ..directory.models import User
from ..directory.service import Directory
from ..integrations.channels import ChannelSink, SendResult
from ..preferences.service import PreferenceStore, RecipientPreferences
from ..templates.service import TemplateStore
from .enums import (
    EXTERNAL_CHANNELS,
    SUCCESS_STATUSES,
    Channel,
    DeliveryStatus,
    NotificationCategory,
    NotificationPriority,
    NotificationStatus,
)
from .exceptions import NotificationNotFoundError
from .models import DeliveryLog, Notification, UserNotification
from .rendering import NotificationContent, RenderedContent, TemplateRenderer, recipient_context
from .tracker import mark_delivered, transition

logger = logging.getLogger(__name__)

CHUNK_SIZE = 500

_QUIET_HOURS_PRIORITIES = frozenset({NotificationPriority.URGENT, NotificationPriority.CRITICAL})


@dataclass(frozen=True)
class DeliveryOutcome:
    user_id: UUID
    channel: Channel
    status: DeliveryStatus
    error: str | None = None


@dataclass
class DispatchReport:
    notification_id: UUID
    status: NotificationStatus | None = None
    recipients: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)
    error: str | None = None

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status in SUCCESS_STATUSES)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == DeliveryStatus.FAILED)

    def for_user(self, user_id: UUID) -> list[DeliveryOutcome]:
        return [o for o in self.outcomes if o.user_id == user_id]


@dataclass(frozen=True)
class _SendJob:
    log: DeliveryLog
    user_id: UUID
    channel: Channel
    contact: str
    content: RenderedContent


def contact_for(user: User | None, channel: Channel, default_webhook_url: str = "") -> str | None:
    """Contact address of a user on an external channel."""
    if user is None:
        return None
    match channel:
        case Channel.EMAIL:
            return user.email or None
        case Channel.SMS:
            return user.phone or None
        case Channel.PUSH:
            return user.push_token or None
        case Channel.WEBHOOK:
            return user.webhook_url or default_webhook_url or None
    return None


def apply_result(log: DeliveryLog, result: SendResult, now: datetime) -> None:
    log.attempts = (log.attempts or 0) + 1
    log.status = result.status
    log.provider_ref = result.provider_ref
    log.error = result.error
    log.updated_at = now
    if result.ok:
        log.sent_at = now
    else:
        log.failed_at = now


class Dispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        directory: Directory,
        preferences: PreferenceStore,
        templates: TemplateStore,
        sinks: Mapping[Channel, ChannelSink],
        settings: Settings,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._preferences = preferences
        self._templates = templates
        self._sinks = dict(sinks)
        self._settings = settings
        self._renderer = renderer or TemplateRenderer()
        self._pool = (
            ThreadPoolExecutor(max_workers=settings.dispatch_workers, thread_name_prefix="notify-send")
            if settings.dispatch_workers > 0
            else None
        )

    def shutdown(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)

    # ── Channel policy ─────────────────────────────────────────────────

    def effective_channels(
        self,
        requested: Sequence[Channel],
        priority: NotificationPriority,
        prefs: RecipientPreferences | None,
    ) -> list[Channel]:
        """Requested channels the recipient accepts, never empty (falls back to IN_APP)."""
        bypass = self._settings.critical_bypasses_preferences and priority == NotificationPriority.CRITICAL
        result: list[Channel] = []
        for channel in requested:
            if channel == Channel.IN_APP:
                if (
                    self._settings.in_app_always_enabled
                    or bypass
                    or prefs is None
                    or Channel.IN_APP in prefs.enabled_channels
                ):
                    result.append(channel)
                continue
            if bypass or prefs is None:
                result.append(channel)
                continue
            if not prefs.globally_enabled:
                continue
            if prefs.in_quiet_hours and priority not in _QUIET_HOURS_PRIORITIES:
                continue
            if channel in prefs.enabled_channels:
                result.append(channel)

        if not result:
            result.append(Channel.IN_APP)
        return result

    # ── Sink calls ─────────────────────────────────────────────────────

    def _send_one(self, channel: Channel, contact: str, content: RenderedContent) -> SendResult:
        sink = self._sinks.get(channel)
        if sink is None:
            return SendResult.failed(f"no sink configured for {channel}")
        try:
            return sink.send(channel, contact, content.title, content.body)
        except Exception as exc:
            logger.warning("%s sink raised for %s: %s", channel, contact, exc)
            return SendResult.failed(str(exc) or exc.__class__.__name__)

    def _send_all(self, jobs: list[_SendJob]) -> list[SendResult]:
        if self._pool is None or len(jobs) < 2:
            return [self._send_one(j.channel, j.contact, j.content) for j in jobs]
        futures = [self._pool.submit(self._send_one, j.channel, j.contact, j.content) for j in jobs]
        return [f.result() for f in futures]

    # ── Dispatch ───────────────────────────────────────────────────────

    def dispatch(self, notification_id: UUID) -> DispatchReport:
        """Deliver a SENDING notification to all its recipients.

        Never raises: an internal error is reported in DispatchReport.error. The notification
        then ends SENT if a chunk committed before the error reached someone, FAILED otherwise.
        """
        db = self._session_factory()
        try:
            report = self._dispatch(db, notification_id)
            db.commit()
            return report
        except Exception as exc:
            db.rollback()
            logger.exception("Dispatch of notification %s failed", notification_id)
            final = NotificationStatus.FAILED
            try:
                final = self._settle_interrupted(db, notification_id, str(exc))
                db.commit()
            except Exception:
                db.rollback()
                logger.exception("Could not settle notification %s after a dispatch error", notification_id)
            return DispatchReport(notification_id, final, error=str(exc))
        finally:
            db.close()

    def _settle_interrupted(self, db: Session, notification_id: UUID, error: str) -> NotificationStatus:
        now = datetime.now(UTC)
        db.query(DeliveryLog).filter(
            DeliveryLog.notification_id == notification_id,
            DeliveryLog.status == DeliveryStatus.PENDING,
        ).update(
            {"status": DeliveryStatus.FAILED, "error": error, "failed_at": now, "updated_at": now},
            synchronize_session=False,
        )
        delivered = (
            db.query(DeliveryLog.id)
            .filter(DeliveryLog.notification_id == notification_id, DeliveryLog.status.in_(SUCCESS_STATUSES))
            .first()
        )
        final = NotificationStatus.SENT if delivered is not None else NotificationStatus.FAILED
        if transition(db, notification_id, NotificationStatus.SENDING, final, now):
            return final
        current = db.get(Notification, notification_id)
        return NotificationStatus(current.status) if current is not None else final

    def _dispatch(self, db: Session, notification_id: UUID) -> DispatchReport:
        notification = db.get(Notification, notification_id)
        if notification is None:
            raise NotificationNotFoundError(notification_id)
        if notification.status != NotificationStatus.SENDING:
            logger.info("Notification %s is %s, nothing to dispatch", notification_id, notification.status)
            return DispatchReport(notification_id, NotificationStatus(notification.status))

        tenant_id = notification.tenant_id
        template = self._load_template(db, notification)
        content = NotificationContent(notification.title, notification.body, dict(notification.template_data or {}))
        requested = [Channel(c) for c in notification.channels or []]
        category = NotificationCategory(notification.category)
        priority = NotificationPriority(notification.priority)

        user_ids = [
            row.user_id
            for row in db.query(UserNotification.user_id)
            .filter(UserNotification.notification_id == notification_id)
            .order_by(UserNotification.user_id)
            .all()
        ]
        report = DispatchReport(notification_id, recipients=len(user_ids))

        for start in range(0, len(user_ids), CHUNK_SIZE):
            self._dispatch_chunk(
                db, notification_id, user_ids[start : start + CHUNK_SIZE],
                requested, category, priority, template, content, report,
            )

        reached = not user_ids or report.succeeded > 0
        final = NotificationStatus.SENT if reached else NotificationStatus.FAILED
        if transition(db, notification_id, NotificationStatus.SENDING, final):
            report.status = final
        else:
            report.status = NotificationStatus(db.get(Notification, notification_id).status)

        logger.info(
            "Dispatched notification %s (tenant %s): %d recipient(s), %d delivered, %d failed -> %s",
            notification_id, tenant_id, report.recipients, report.succeeded, report.failed, report.status,
        )
        return report

    def _load_template(self, db: Session, notification: Notification):
        if notification.template_id is None:
            return None
        template = self._templates.get(db, notification.tenant_id, notification.template_id)
        if template is None:
            logger.warning(
                "Template %s unavailable for notification %s, using raw content",
                notification.template_id, notification.id,
            )
        return template

    def _dispatch_chunk(
        self,
        db: Session,
        notification_id: UUID,
        user_ids: list[UUID],
        requested: list[Channel],
        category: NotificationCategory,
        priority: NotificationPriority,
        template,
        content: NotificationContent,
        report: DispatchReport,
    ) -> None:
        now = datetime.now(UTC)
        users = self._directory.get_users(db, user_ids)
        prefs = self._preferences.load(db, users.values(), category, now)
        logs = {
            (log.user_id, Channel(log.channel)): log
            for log in db.query(DeliveryLog)
            .filter(DeliveryLog.notification_id == notification_id, DeliveryLog.user_id.in_(user_ids))
            .all()
        }

        def log_for(user_id: UUID, channel: Channel, recipient: str) -> DeliveryLog:
            log = logs.get((user_id, channel))
            if log is None:
                log = DeliveryLog(
                    notification_id=notification_id,
                    user_id=user_id,
                    channel=channel,
                    status=DeliveryStatus.PENDING,
                    attempts=0,
                )
                db.add(log)
                logs[(user_id, channel)] = log
            log.recipient = recipient
            return log

        plan = {user_id: self.effective_channels(requested, priority, prefs.get(user_id)) for user_id in user_ids}
        in_app = [user_id for user_id, channels in plan.items() if Channel.IN_APP in channels]

        # Fan-out rows are locked before is_read is checked; a later mark_read waits for the commit.
        mark_delivered(db, notification_id, in_app, now)
        read = {
            row.user_id
            for row in db.query(UserNotification.user_id)
            .filter(
                UserNotification.notification_id == notification_id,
                UserNotification.user_id.in_(in_app),
                UserNotification.is_read.is_(True),
            )
            .all()
        }

        pending: list[tuple[DeliveryLog, UUID, Channel, str]] = []
        for user_id, channels in plan.items():
            user = users.get(user_id)
            for channel in channels:
                if channel == Channel.IN_APP:
                    status = DeliveryStatus.READ if user_id in read else DeliveryStatus.DELIVERED
                    apply_result(log_for(user_id, channel, str(user_id)), SendResult(status=status), now)
                    report.outcomes.append(DeliveryOutcome(user_id, channel, status))
                    continue

                contact = contact_for(user, channel, self._settings.default_webhook_url)
                log = log_for(user_id, channel, contact or "")
                if not contact:
                    result = SendResult.failed(f"no {channel} contact for recipient")
                    apply_result(log, result, now)
                    report.outcomes.append(DeliveryOutcome(user_id, channel, result.status, result.error))
                    continue
                log.status = DeliveryStatus.PENDING
                log.updated_at = now
                pending.append((log, user_id, channel, contact))
        db.commit()

        if not pending:
            return

        rendered: dict[UUID, RenderedContent] = {}
        jobs: list[_SendJob] = []
        for log, user_id, channel, contact in pending:
            if user_id not in rendered:
                rendered[user_id] = self._renderer.render(template, content, recipient_context(users.get(user_id)))
            jobs.append(_SendJob(log, user_id, channel, contact, rendered[user_id]))

        results = self._send_all(jobs)
        done = datetime.now(UTC)
        for job, result in zip(jobs, results):
            apply_result(job.log, result, done)
            report.outcomes.append(DeliveryOutcome(job.user_id, job.channel, result.status, result.error))
        db.commit()

    # ── Retry ──────────────────────────────────────────────────────────

    def retry_failed(self, notification_id: UUID, tenant_id: UUID | None = None) -> DispatchReport:
        """Re-attempt FAILED external deliveries that still have attempts left.

        Updates the existing delivery-log rows; the notification status is left alone.
        """
        db = self._session_factory()
        try:
            notification = db.get(Notification, notification_id)
            if notification is None or (tenant_id is not None and notification.tenant_id != tenant_id):
                raise NotificationNotFoundError(notification_id)

            status = NotificationStatus(notification.status)
            report = DispatchReport(notification_id, status, recipients=notification.total_targets)
            if status not in (NotificationStatus.SENT, NotificationStatus.FAILED):
                return report

            failed_logs = (
                db.query(DeliveryLog)
                .filter(
                    DeliveryLog.notification_id == notification_id,
                    DeliveryLog.status == DeliveryStatus.FAILED,
                    DeliveryLog.channel.in_(EXTERNAL_CHANNELS),
                    DeliveryLog.attempts < self._settings.delivery_max_attempts,
                )
                .order_by(DeliveryLog.user_id, DeliveryLog.channel)
                .all()
            )
            if not failed_logs:
                return report

            template = self._load_template(db, notification)
            content = NotificationContent(notification.title, notification.body, dict(notification.template_data or {}))
            users = self._directory.get_users(db, {log.user_id for log in failed_logs if log.user_id})
            now = datetime.now(UTC)

            jobs: list[_SendJob] = []
            rendered: dict[UUID, RenderedContent] = {}
            for log in failed_logs:
                channel = Channel(log.channel)
                user = users.get(log.user_id)
                contact = contact_for(user, channel, self._settings.default_webhook_url)
                if not contact:
                    result = SendResult.failed(f"no {channel} contact for recipient")
                    apply_result(log, result, now)
                    report.outcomes.append(DeliveryOutcome(log.user_id, channel, result.status, result.error))
                    continue
                log.recipient = contact
                if log.user_id not in rendered:
                    rendered[log.user_id] = self._renderer.render(template, content, recipient_context(user))
                jobs.append(_SendJob(log, log.user_id, channel, contact, rendered[log.user_id]))

            results = self._send_all(jobs)
            done = datetime.now(UTC)
            for job, result in zip(jobs, results):
                apply_result(job.log, result, done)
                report.outcomes.append(DeliveryOutcome(job.user_id, job.channel, result.status, result.error))
            db.commit()

            logger.info(
                "Retried %d delivery(ies) of notification %s: %d recovered",
                len(failed_logs), notification_id, report.succeeded,
            )
            return report
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
