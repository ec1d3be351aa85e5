"""NotificationEngine: the entry point originating modules and the HTTP layer call.

The engine holds its collaborators explicitly (session factory, directory, preference and
template stores, channel sinks, settings). Submission validates, resolves targets and writes
the notification plus its fan-out records in one transaction; dispatch then runs on a small
coordinator pool and the caller gets a Future for the DispatchReport.
"""

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ..config import Settings
from ..directory.service import Directory, SqlDirectory
from ..integrations.channels import ChannelSink, create_channel_sinks
from ..preferences.service import PreferenceStore, SqlPreferenceStore
from ..templates.models import NotificationTemplate
from ..templates.service import SqlTemplateStore, TemplateStore
from . import analytics, service, tracker
from .dispatcher import Dispatcher, DispatchReport
from .enums import Channel, NotificationCategory, NotificationStatus, NotificationType
from .exceptions import NotificationValidationError
from .rendering import NotificationContent, TemplateRenderer, recipient_context
from .scheduler import cancel_notification, claim_due, recently_completed
from .schemas import (
    NotificationCreateRequest,
    NotificationDetailResponse,
    NotificationFilters,
    NotificationListResponse,
    NotificationResponse,
    StatsWindow,
    UserNotificationListResponse,
    UserNotificationResponse,
    as_utc,
)
from .targeting import TargetResolver

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitReceipt:
    notification_id: UUID
    status: NotificationStatus
    total_targets: int
    dispatch: Future | None = None


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}" for err in exc.errors()
    )


class NotificationEngine:
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
        self._templates = templates
        self._settings = settings
        self._renderer = renderer or TemplateRenderer()
        self._resolver = TargetResolver(directory, settings.guardian_excluded_categories_list)
        self._dispatcher = Dispatcher(
            session_factory, directory, preferences, templates, sinks, settings, renderer=self._renderer
        )
        self._coordinator = (
            ThreadPoolExecutor(max_workers=settings.dispatch_concurrency, thread_name_prefix="notify-dispatch")
            if settings.dispatch_concurrency > 0
            else None
        )

    @classmethod
    def from_settings(cls, session_factory: Callable[[], Session], settings: Settings) -> "NotificationEngine":
        """Engine wired to the SQL-backed collaborators and the configured channel sinks."""
        return cls(
            session_factory,
            directory=SqlDirectory(),
            preferences=SqlPreferenceStore(),
            templates=SqlTemplateStore(),
            sinks=create_channel_sinks(settings),
            settings=settings,
        )

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    def shutdown(self, wait: bool = True) -> None:
        if self._coordinator is not None:
            self._coordinator.shutdown(wait=wait)
        self._dispatcher.shutdown(wait=wait)

    def _dispatch_later(self, notification_id: UUID) -> Future:
        if self._coordinator is None:
            future: Future = Future()
            future.set_result(self._dispatcher.dispatch(notification_id))
            return future
        return self._coordinator.submit(self._dispatcher.dispatch, notification_id)

    # ── Submission ─────────────────────────────────────────────────────

    def _resolve_channels(self, requested: list[Channel], template: NotificationTemplate | None) -> list[Channel]:
        if requested:
            return requested
        fallback = (template.default_channels if template is not None else None) or self._settings.default_channels_list
        channels = []
        for value in fallback:
            try:
                channel = Channel(str(value).upper())
            except ValueError:
                logger.warning("Ignoring unknown default channel %r", value)
                continue
            if channel not in channels:
                channels.append(channel)
        return channels or [Channel.IN_APP]

    def submit(
        self,
        tenant_id: UUID,
        request: NotificationCreateRequest | Mapping[str, Any],
        creator_id: UUID | None = None,
        now: datetime | None = None,
    ) -> SubmitReceipt:
        """Validate, resolve and persist a notification.

        Returns once the notification and its fan-out records are committed. Immediate
        notifications are handed to the dispatcher; scheduled ones wait for process_due.

        Raises NotificationValidationError (including UnknownClassError) before anything
        is written.
        """
        if not isinstance(request, NotificationCreateRequest):
            try:
                request = NotificationCreateRequest.model_validate(request)
            except ValidationError as exc:
                raise NotificationValidationError(_validation_message(exc)) from exc

        now = as_utc(now) or datetime.now(UTC)
        immediate = request.scheduled_at is None or request.scheduled_at <= now
        if request.expires_at is not None and request.expires_at <= now:
            raise NotificationValidationError("expires_at must be in the future")

        db = self._session_factory()
        try:
            template = None
            if request.template_id is not None:
                template = self._templates.get(db, tenant_id, request.template_id)
                if template is None:
                    logger.warning("Template %s not found for tenant %s, raw content will be used",
                                   request.template_id, tenant_id)
            channels = self._resolve_channels(request.channels, template)

            recipients = self._resolver.resolve(db, tenant_id, request.target, request.category)

            notification = tracker.create_notification(
                db,
                tenant_id,
                {
                    "title": request.title,
                    "body": request.body,
                    "type": request.type,
                    "priority": request.priority,
                    "category": request.category,
                    "channels": [str(c) for c in channels],
                    "target_spec": request.target.to_json(),
                    "template_id": request.template_id,
                    "template_data": request.template_data,
                    "meta": request.metadata,
                    "scheduled_at": request.scheduled_at,
                    "expires_at": request.expires_at,
                },
                recipients,
                created_by=creator_id,
            )
            notification_id = notification.id
            if immediate:
                status = NotificationStatus.SENDING
                tracker.transition(db, notification_id, NotificationStatus.DRAFT, status, sent_at=now)
            else:
                status = NotificationStatus.SCHEDULED
                tracker.transition(db, notification_id, NotificationStatus.DRAFT, status)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Accepted notification %s (tenant %s, %s, %d recipient(s), channels=%s) as %s",
            notification_id, tenant_id, request.type, len(recipients), ",".join(channels), status,
        )
        future = self._dispatch_later(notification_id) if immediate else None
        return SubmitReceipt(notification_id, status, len(recipients), future)

    # ── Queries ────────────────────────────────────────────────────────

    def list_notifications(
        self,
        tenant_id: UUID,
        filters: NotificationFilters | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> NotificationListResponse:
        db = self._session_factory()
        try:
            notifications, pagination = service.list_notifications(db, tenant_id, filters, page, limit)
            return NotificationListResponse(notifications=notifications, pagination=pagination)
        finally:
            db.close()

    def get_notification(self, tenant_id: UUID, notification_id: UUID) -> NotificationDetailResponse:
        db = self._session_factory()
        try:
            return service.get_notification(db, tenant_id, notification_id)
        finally:
            db.close()

    def get_user_notifications(
        self,
        user_id: UUID,
        unread_only: bool = False,
        type: NotificationType | None = None,
        category: NotificationCategory | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> UserNotificationListResponse:
        """A recipient's inbox, rendered for that recipient."""
        db = self._session_factory()
        try:
            rows, _total, unread_count, pagination = service.user_inbox(
                db, user_id, unread_only, type, category, page, limit
            )
            user = self._directory.get_users(db, [user_id]).get(user_id)
            context = recipient_context(user)
            templates: dict[tuple[UUID, UUID], NotificationTemplate | None] = {}

            items = []
            for fan_out, notification in rows:
                template = None
                if notification.template_id is not None:
                    key = (notification.tenant_id, notification.template_id)
                    if key not in templates:
                        templates[key] = self._templates.get(db, *key)
                    template = templates[key]
                rendered = self._renderer.render(
                    template,
                    NotificationContent(notification.title, notification.body, dict(notification.template_data or {})),
                    context,
                )
                items.append(
                    UserNotificationResponse(
                        notification_id=notification.id,
                        title=rendered.title,
                        body=rendered.body,
                        type=notification.type,
                        priority=notification.priority,
                        category=notification.category,
                        is_read=fan_out.is_read,
                        read_at=fan_out.read_at,
                        is_delivered=fan_out.is_delivered,
                        delivered_at=fan_out.delivered_at,
                        created_at=notification.created_at,
                    )
                )
            return UserNotificationListResponse(notifications=items, unread_count=unread_count, pagination=pagination)
        finally:
            db.close()

    def get_stats(self, tenant_id: UUID, window: StatsWindow | None = None) -> dict:
        date_from, date_to = (window or StatsWindow()).bounds()
        db = self._session_factory()
        try:
            return analytics.get_stats(db, tenant_id, date_from, date_to)
        finally:
            db.close()

    def recompute_counters(self, notification_id: UUID) -> dict[str, int]:
        db = self._session_factory()
        try:
            return tracker.recompute_counters(db, notification_id)
        finally:
            db.close()

    # ── State changes ──────────────────────────────────────────────────

    def cancel(self, tenant_id: UUID, notification_id: UUID) -> NotificationResponse:
        db = self._session_factory()
        try:
            notification = cancel_notification(db, tenant_id, notification_id)
            db.commit()
            return service.to_response(notification)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def mark_read(self, notification_id: UUID, user_id: UUID) -> bool:
        db = self._session_factory()
        try:
            changed = tracker.mark_read(db, notification_id, user_id)
            db.commit()
            return changed
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def mark_all_read(self, user_id: UUID) -> int:
        db = self._session_factory()
        try:
            changed = tracker.mark_all_read(db, user_id)
            db.commit()
            return changed
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def retry_failed(self, tenant_id: UUID, notification_id: UUID) -> DispatchReport:
        return self._dispatcher.retry_failed(notification_id, tenant_id)

    # ── Background passes ──────────────────────────────────────────────

    def process_due(self, now: datetime | None = None) -> list[Future]:
        """Claim due scheduled notifications and dispatch the ones this call won."""
        db = self._session_factory()
        try:
            claimed = claim_due(db, as_utc(now), self._settings.scheduler_batch_size)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
        return [self._dispatch_later(notification_id) for notification_id in claimed]

    def retry_recent_failures(self, now: datetime | None = None) -> int:
        """Retry failed deliveries of notifications completed within the retry window."""
        db = self._session_factory()
        try:
            candidates = recently_completed(db, self._settings.retry_window_hours, as_utc(now))
        finally:
            db.close()

        recovered = 0
        for notification_id in candidates:
            report = self._dispatcher.retry_failed(notification_id)
            recovered += report.succeeded
        if recovered:
            logger.info("Retry pass recovered %d delivery(ies)", recovered)
        return recovered
