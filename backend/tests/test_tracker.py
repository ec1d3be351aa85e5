"""Tests for status transitions and read/delivered counters."""

import uuid

import pytest

from notify_engine.notifications.enums import Channel, DeliveryStatus, NotificationStatus
from notify_engine.notifications.exceptions import InvalidTransitionError, NotificationNotFoundError
from notify_engine.notifications.models import DeliveryLog, Notification, UserNotification
from notify_engine.notifications.tracker import (
    create_notification,
    mark_all_read,
    mark_read,
    recompute_counters,
    transition,
)


def _send(engine, tenant_id, users, channels=("IN_APP",), **overrides):
    request = {
        "title": "Library closed",
        "body": "Closed on Monday",
        "type": "LIBRARY",
        "channels": list(channels),
        "target": {"type": "SPECIFIC_USERS", "user_ids": [str(u.id) for u in users]},
    }
    request.update(overrides)
    receipt = engine.submit(tenant_id, request)
    if receipt.dispatch is not None:
        receipt.dispatch.result(timeout=10)
    return receipt.notification_id


def _fresh(session_factory, notification_id):
    db = session_factory()
    try:
        return db.get(Notification, notification_id)
    finally:
        db.close()


def _draft(db_session, tenant_id, recipients=()):
    notification = create_notification(
        db_session,
        tenant_id,
        {"title": "t", "body": "b", "type": "CUSTOM", "channels": ["IN_APP"], "target_spec": {"type": "ALL_USERS"}},
        recipients,
    )
    db_session.commit()
    return notification


class TestTransitions:
    def test_create_starts_in_draft_with_fan_out(self, db_session, make_user, tenant_id):
        a = make_user("a")
        b = make_user("b")
        notification = _draft(db_session, tenant_id, [a.id, b.id, a.id])

        assert notification.status == NotificationStatus.DRAFT
        assert notification.total_targets == 2
        assert db_session.query(UserNotification).filter_by(notification_id=notification.id).count() == 2

    def test_cas_only_first_caller_wins(self, db_session, tenant_id):
        notification = _draft(db_session, tenant_id)

        assert transition(db_session, notification.id, NotificationStatus.DRAFT, NotificationStatus.SCHEDULED)
        assert not transition(db_session, notification.id, NotificationStatus.DRAFT, NotificationStatus.SENDING)
        db_session.commit()
        assert db_session.get(Notification, notification.id).status == NotificationStatus.SCHEDULED

    def test_terminal_status_sets_completed_at(self, db_session, tenant_id):
        notification = _draft(db_session, tenant_id)
        transition(db_session, notification.id, NotificationStatus.DRAFT, NotificationStatus.SENDING)
        transition(db_session, notification.id, NotificationStatus.SENDING, NotificationStatus.SENT)
        db_session.commit()

        assert db_session.get(Notification, notification.id).completed_at is not None

    @pytest.mark.parametrize(
        "source,target",
        [
            (NotificationStatus.SENT, NotificationStatus.SENDING),
            (NotificationStatus.CANCELLED, NotificationStatus.SCHEDULED),
            (NotificationStatus.FAILED, NotificationStatus.SENT),
            (NotificationStatus.SENDING, NotificationStatus.CANCELLED),
            (NotificationStatus.DRAFT, NotificationStatus.SENT),
        ],
    )
    def test_disallowed_transitions_raise(self, db_session, tenant_id, source, target):
        notification = _draft(db_session, tenant_id)
        with pytest.raises(InvalidTransitionError):
            transition(db_session, notification.id, source, target)


class TestMarkRead:
    def test_second_call_is_noop(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        notification_id = _send(notify_engine, tenant_id, [x])

        assert notify_engine.mark_read(notification_id, x.id) is True
        assert notify_engine.mark_read(notification_id, x.id) is False
        assert _fresh(session_factory, notification_id).read_count == 1

    def test_racing_sessions_count_once(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        notification_id = _send(notify_engine, tenant_id, [x])

        first = session_factory()
        second = session_factory()
        try:
            # both callers observed the record as unread
            for db in (first, second):
                row = db.query(UserNotification).filter_by(notification_id=notification_id, user_id=x.id).one()
                assert row.is_read is False
            results = []
            for db in (first, second):
                results.append(mark_read(db, notification_id, x.id))
                db.commit()
        finally:
            first.close()
            second.close()

        assert sorted(results) == [False, True]
        assert _fresh(session_factory, notification_id).read_count == 1

    def test_in_app_log_moves_to_read(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        notification_id = _send(notify_engine, tenant_id, [x], channels=("IN_APP", "EMAIL"))

        notify_engine.mark_read(notification_id, x.id)

        db = session_factory()
        try:
            logs = {
                Channel(log.channel): log.status
                for log in db.query(DeliveryLog).filter(DeliveryLog.notification_id == notification_id).all()
            }
        finally:
            db.close()
        assert logs == {Channel.IN_APP: DeliveryStatus.READ, Channel.EMAIL: DeliveryStatus.SENT}

    def test_non_recipient_not_found(self, notify_engine, make_user, tenant_id):
        x = make_user("x")
        outsider = make_user("o")
        notification_id = _send(notify_engine, tenant_id, [x])

        with pytest.raises(NotificationNotFoundError):
            notify_engine.mark_read(notification_id, outsider.id)

    def test_unknown_notification_not_found(self, db_session, make_user):
        with pytest.raises(NotificationNotFoundError):
            mark_read(db_session, uuid.uuid4(), make_user("x").id)

    def test_scheduled_notification_cannot_be_read(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        notification_id = _send(notify_engine, tenant_id, [x], scheduled_at="2099-01-01T00:00:00Z")

        with pytest.raises(NotificationNotFoundError):
            notify_engine.mark_read(notification_id, x.id)

        stored = _fresh(session_factory, notification_id)
        assert stored.status == NotificationStatus.SCHEDULED
        assert stored.read_count == 0

    def test_cancelled_notification_cannot_be_read(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        notification_id = _send(notify_engine, tenant_id, [x], scheduled_at="2099-01-01T00:00:00Z")
        notify_engine.cancel(tenant_id, notification_id)

        with pytest.raises(NotificationNotFoundError):
            notify_engine.mark_read(notification_id, x.id)

        stored = _fresh(session_factory, notification_id)
        assert stored.status == NotificationStatus.CANCELLED
        assert stored.read_count == 0


class TestMarkAllRead:
    def test_marks_only_unread_visible(self, notify_engine, session_factory, make_user, tenant_id):
        x = make_user("x")
        first = _send(notify_engine, tenant_id, [x])
        second = _send(notify_engine, tenant_id, [x])
        scheduled = _send(notify_engine, tenant_id, [x], scheduled_at="2099-01-01T00:00:00Z")
        notify_engine.mark_read(first, x.id)

        assert notify_engine.mark_all_read(x.id) == 1
        assert notify_engine.mark_all_read(x.id) == 0
        assert _fresh(session_factory, first).read_count == 1
        assert _fresh(session_factory, second).read_count == 1
        assert _fresh(session_factory, scheduled).read_count == 0

    def test_user_without_notifications(self, db_session, make_user):
        assert mark_all_read(db_session, make_user("x").id) == 0


class TestCounterInvariant:
    def test_counters_equal_recount_after_reads(self, notify_engine, session_factory, make_user, tenant_id):
        users = [make_user(f"u{i}") for i in range(5)]
        notification_id = _send(notify_engine, tenant_id, users)
        for user in users[:3]:
            notify_engine.mark_read(notification_id, user.id)
        notify_engine.mark_read(notification_id, users[0].id)
        notify_engine.mark_all_read(users[1].id)

        stored = _fresh(session_factory, notification_id)
        recount = notify_engine.recompute_counters(notification_id)
        assert recount == {
            "total_targets": stored.total_targets,
            "read_count": stored.read_count,
            "delivered_count": stored.delivered_count,
        }
        assert recount["read_count"] == 3

    def test_recompute_on_db_session(self, db_session, make_user, tenant_id):
        notification = _draft(db_session, tenant_id, [make_user("a").id])
        assert recompute_counters(db_session, notification.id) == {
            "total_targets": 1,
            "read_count": 0,
            "delivered_count": 0,
        }
