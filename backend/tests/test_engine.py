"""Tests for submission, queries and retries through NotificationEngine."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from notify_engine.notifications.enums import Channel, DeliveryStatus, NotificationStatus, UserRole
from notify_engine.notifications.exceptions import (
    NotificationNotFoundError,
    NotificationValidationError,
    UnknownClassError,
)
from notify_engine.notifications.models import DeliveryLog, Notification, UserNotification
from notify_engine.notifications.schemas import NotificationCreateRequest, NotificationFilters
from notify_engine.templates.models import NotificationTemplate


def _request(users=None, **overrides):
    request = {
        "title": "Parent meeting",
        "body": "Thursday 18:00 in the hall",
        "type": "ANNOUNCEMENT",
        "channels": ["IN_APP"],
        "target": {"type": "SPECIFIC_USERS", "user_ids": [str(u.id) for u in users or []]},
    }
    request.update(overrides)
    return request


def _submit(engine, tenant_id, request, **kwargs):
    receipt = engine.submit(tenant_id, request, **kwargs)
    if receipt.dispatch is not None:
        receipt.dispatch.result(timeout=10)
    return receipt


def _count(session_factory, model, **filters):
    db = session_factory()
    try:
        return db.query(model).filter_by(**filters).count()
    finally:
        db.close()


def _email_log(session_factory, notification_id):
    db = session_factory()
    try:
        return (
            db.query(DeliveryLog)
            .filter(DeliveryLog.notification_id == notification_id, DeliveryLog.channel == Channel.EMAIL)
            .one()
        )
    finally:
        db.close()


class TestSubmit:
    def test_all_users_in_empty_tenant(self, notify_engine, session_factory, tenant_id):
        receipt = _submit(notify_engine, tenant_id, _request(target={"type": "ALL_USERS"}))

        assert receipt.total_targets == 0
        report = receipt.dispatch.result()
        assert report.status == NotificationStatus.SENT
        assert report.outcomes == []
        assert _count(session_factory, UserNotification, notification_id=receipt.notification_id) == 0
        assert _count(session_factory, DeliveryLog, notification_id=receipt.notification_id) == 0

    def test_accepts_request_model(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        request = NotificationCreateRequest.model_validate(_request([x]))

        receipt = _submit(notify_engine, tenant_id, request, creator_id=x.id)

        assert receipt.status == NotificationStatus.SENDING
        detail = notify_engine.get_notification(tenant_id, receipt.notification_id)
        assert detail.created_by == x.id
        assert detail.status == NotificationStatus.SENT

    def test_invalid_enum_is_validation_error(self, notify_engine, session_factory, tenant_id):
        with pytest.raises(NotificationValidationError) as exc_info:
            notify_engine.submit(tenant_id, _request(type="NOT_A_TYPE"))

        assert "type" in exc_info.value.message
        assert _count(session_factory, Notification) == 0

    def test_target_shape_is_validated(self, notify_engine, tenant_id):
        with pytest.raises(NotificationValidationError):
            notify_engine.submit(tenant_id, _request(target={"type": "ROLE_BASED", "user_ids": [str(uuid.uuid4())]}))

    def test_expiry_in_the_past_rejected(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        past = (datetime.now(UTC) - timedelta(hours=1)).isoformat()

        with pytest.raises(NotificationValidationError):
            notify_engine.submit(tenant_id, _request([x], expires_at=past))
        assert _count(session_factory, Notification) == 0

    def test_expiry_before_schedule_rejected(self, notify_engine, tenant_id):
        with pytest.raises(NotificationValidationError):
            notify_engine.submit(
                tenant_id,
                _request(scheduled_at="2099-01-02T00:00:00Z", expires_at="2099-01-01T00:00:00Z"),
            )

    def test_unknown_class_creates_nothing(self, notify_engine, session_factory, make_user, tenant_id):
        make_user("x")

        with pytest.raises(UnknownClassError):
            notify_engine.submit(tenant_id, _request(target={"type": "CLASS_BASED", "class_ids": [str(uuid.uuid4())]}))
        assert _count(session_factory, Notification) == 0
        assert _count(session_factory, UserNotification) == 0

    def test_duplicate_recipients_fan_out_once(self, notify_engine, session_factory, make_user, tenant_id):
        teacher = make_user("t", role=UserRole.TEACHER)
        request = _request(
            target={
                "type": "COMBINED",
                "user_ids": [str(teacher.id)],
                "parts": [{"type": "ROLE_BASED", "roles": ["TEACHER"]}],
            }
        )

        receipt = _submit(notify_engine, tenant_id, request)

        assert receipt.total_targets == 1
        assert _count(session_factory, UserNotification, notification_id=receipt.notification_id) == 1

    def test_template_default_channels_used_when_none_requested(
        self, notify_engine, db_session, session_factory, sinks, make_user, tenant_id
    ):
        x = make_user("x")
        template = NotificationTemplate(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name="meeting",
            title_template="",
            body_template="",
            default_channels=["email", "bogus"],
        )
        db_session.add(template)
        db_session.commit()

        receipt = _submit(notify_engine, tenant_id, _request([x], channels=[], template_id=str(template.id)))

        detail = notify_engine.get_notification(tenant_id, receipt.notification_id)
        assert detail.channels == [Channel.EMAIL]
        assert len(sinks[Channel.EMAIL].calls) == 1

    def test_settings_default_channels_when_nothing_else(self, notify_engine, make_user, tenant_id):
        x = make_user("x")

        receipt = _submit(notify_engine, tenant_id, _request([x], channels=[]))

        detail = notify_engine.get_notification(tenant_id, receipt.notification_id)
        assert Channel.IN_APP in detail.channels


class TestRetry:
    def test_retry_recovers_failed_delivery(self, notify_engine, session_factory, sinks, make_user, tenant_id):
        x = make_user("x")
        sinks[Channel.EMAIL].failing.add(x.email)
        receipt = _submit(notify_engine, tenant_id, _request([x], channels=["EMAIL"]))
        assert receipt.dispatch.result().status == NotificationStatus.FAILED

        sinks[Channel.EMAIL].failing.clear()
        report = notify_engine.retry_failed(tenant_id, receipt.notification_id)

        assert report.succeeded == 1
        log = _email_log(session_factory, receipt.notification_id)
        assert log.attempts == 2
        assert log.status == DeliveryStatus.SENT
        assert log.error is None
        # terminal status is not rewritten by a retry
        assert notify_engine.get_notification(tenant_id, receipt.notification_id).status == NotificationStatus.FAILED

    def test_retry_stops_at_max_attempts(self, notify_engine, session_factory, sinks, make_user, tenant_id):
        x = make_user("x")
        sinks[Channel.EMAIL].failing.add(x.email)
        receipt = _submit(notify_engine, tenant_id, _request([x], channels=["EMAIL"]))

        notify_engine.retry_failed(tenant_id, receipt.notification_id)
        notify_engine.retry_failed(tenant_id, receipt.notification_id)
        last = notify_engine.retry_failed(tenant_id, receipt.notification_id)

        assert last.outcomes == []
        assert _email_log(session_factory, receipt.notification_id).attempts == 3
        assert len(sinks[Channel.EMAIL].calls) == 3

    def test_retry_leaves_successful_and_in_app_alone(self, notify_engine, sinks, make_user, tenant_id):
        x = make_user("x")
        receipt = _submit(notify_engine, tenant_id, _request([x], channels=["IN_APP", "EMAIL"]))

        report = notify_engine.retry_failed(tenant_id, receipt.notification_id)

        assert report.outcomes == []
        assert len(sinks[Channel.EMAIL].calls) == 1

    def test_retry_only_resends_external_channels(self, notify_engine, session_factory, sinks, make_user, tenant_id):
        x = make_user("x")
        sinks[Channel.EMAIL].failing.add(x.email)
        receipt = _submit(notify_engine, tenant_id, _request([x], channels=["IN_APP", "EMAIL"]))
        db = session_factory()
        try:
            db.query(DeliveryLog).filter(
                DeliveryLog.notification_id == receipt.notification_id, DeliveryLog.channel == Channel.IN_APP
            ).update({"status": DeliveryStatus.FAILED}, synchronize_session=False)
            db.commit()
        finally:
            db.close()
        sinks[Channel.EMAIL].failing.clear()

        report = notify_engine.retry_failed(tenant_id, receipt.notification_id)

        assert [(o.channel, o.status) for o in report.outcomes] == [(Channel.EMAIL, DeliveryStatus.SENT)]

    def test_retry_scheduled_is_noop(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        receipt = _submit(notify_engine, tenant_id, _request([x], scheduled_at="2099-01-01T00:00:00Z"))

        report = notify_engine.retry_failed(tenant_id, receipt.notification_id)

        assert report.status == NotificationStatus.SCHEDULED
        assert report.outcomes == []

    def test_retry_other_tenant_not_found(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        receipt = _submit(notify_engine, tenant_id, _request([x]))

        with pytest.raises(NotificationNotFoundError):
            notify_engine.retry_failed(uuid.uuid4(), receipt.notification_id)

    def test_retry_recent_failures_pass(self, notify_engine, session_factory, sinks, make_user, tenant_id):
        x = make_user("x")
        y = make_user("y")
        sinks[Channel.EMAIL].failing.update({x.email, y.email})
        _submit(notify_engine, tenant_id, _request([x], channels=["EMAIL"]))
        _submit(notify_engine, tenant_id, _request([y], channels=["EMAIL"]))

        sinks[Channel.EMAIL].failing.discard(x.email)
        recovered = notify_engine.retry_recent_failures()

        assert recovered == 1
        assert _count(session_factory, DeliveryLog, status=DeliveryStatus.SENT) == 1


class TestUserNotifications:
    def test_inbox_rendered_per_recipient(self, notify_engine, db_session, make_user, tenant_id):
        ada = make_user("Ada")
        bo = make_user("Bo")
        template = NotificationTemplate(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            name="greeting",
            title_template="Hello {{ recipient_name }}",
            body_template="Meeting at {{ time }}",
        )
        db_session.add(template)
        db_session.commit()
        _submit(
            notify_engine,
            tenant_id,
            _request([ada, bo], template_id=str(template.id), template_data={"time": "18:00"}),
        )

        ada_inbox = notify_engine.get_user_notifications(ada.id)
        bo_inbox = notify_engine.get_user_notifications(bo.id)

        assert ada_inbox.notifications[0].title == "Hello Ada"
        assert bo_inbox.notifications[0].title == "Hello Bo"
        assert ada_inbox.notifications[0].body == "Meeting at 18:00"
        assert ada_inbox.unread_count == 1

    def test_scheduled_and_expired_are_hidden(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        earlier = datetime.now(UTC) - timedelta(hours=2)
        _submit(notify_engine, tenant_id, _request([x], scheduled_at="2099-01-01T00:00:00Z"))
        _submit(
            notify_engine,
            tenant_id,
            _request([x], expires_at=(earlier + timedelta(hours=1)).isoformat()),
            now=earlier,
        )
        visible = _submit(notify_engine, tenant_id, _request([x]))

        inbox = notify_engine.get_user_notifications(x.id)

        assert [n.notification_id for n in inbox.notifications] == [visible.notification_id]
        assert inbox.unread_count == 1
        assert inbox.pagination.total == 1

    def test_unread_only(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        read = _submit(notify_engine, tenant_id, _request([x]))
        _submit(notify_engine, tenant_id, _request([x]))
        notify_engine.mark_read(read.notification_id, x.id)

        everything = notify_engine.get_user_notifications(x.id)
        unread = notify_engine.get_user_notifications(x.id, unread_only=True)

        assert everything.pagination.total == 2
        assert unread.pagination.total == 1
        assert unread.notifications[0].is_read is False
        assert unread.unread_count == 1


class TestListAndDetail:
    def test_filters_and_pagination(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        for _ in range(3):
            _submit(notify_engine, tenant_id, _request([x]))
        _submit(notify_engine, tenant_id, _request([x], type="EMERGENCY", priority="CRITICAL"))
        _submit(notify_engine, uuid.uuid4(), _request([]))

        first_page = notify_engine.list_notifications(tenant_id, page=1, limit=3)
        emergencies = notify_engine.list_notifications(tenant_id, NotificationFilters(type="EMERGENCY"))

        assert first_page.pagination.total == 4
        assert first_page.pagination.pages == 2
        assert len(first_page.notifications) == 3
        assert [n.priority for n in emergencies.notifications] == ["CRITICAL"]

    def test_page_size_is_capped(self, notify_engine, tenant_id):
        listing = notify_engine.list_notifications(tenant_id, page=0, limit=10_000)

        assert listing.pagination.page == 1
        assert listing.pagination.limit == 100

    def test_detail_includes_logs_and_channel_stats(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        y = make_user("y")
        receipt = _submit(notify_engine, tenant_id, _request([x, y], channels=["IN_APP", "EMAIL"]))

        detail = notify_engine.get_notification(tenant_id, receipt.notification_id)

        assert detail.stats.total_targets == 2
        assert detail.stats.delivered_count == 2
        assert detail.stats.channels == {"IN_APP": 2, "EMAIL": 2}
        assert len(detail.delivery_logs) == 4
        assert {log.recipient for log in detail.delivery_logs if log.channel == Channel.EMAIL} == {x.email, y.email}

    def test_detail_other_tenant_not_found(self, notify_engine, make_user, tenant_id):
        receipt = _submit(notify_engine, tenant_id, _request([make_user("x")]))

        with pytest.raises(NotificationNotFoundError):
            notify_engine.get_notification(uuid.uuid4(), receipt.notification_id)
