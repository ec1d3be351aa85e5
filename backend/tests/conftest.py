"""Shared test fixtures."""

import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from notify_engine.config import Settings
from notify_engine.database.base import Base
from notify_engine.directory.models import ClassEnrollment, GuardianLink, SchoolClass, User
from notify_engine.directory.service import SqlDirectory
from notify_engine.integrations.channels import SendResult
from notify_engine.notifications.engine import NotificationEngine
from notify_engine.notifications.enums import Channel, NotificationCategory, UserRole
from notify_engine.notifications.models import DeliveryLog, Notification, UserNotification
from notify_engine.preferences.models import NotificationPreference, UserNotificationSettings
from notify_engine.preferences.service import SqlPreferenceStore
from notify_engine.templates.models import NotificationTemplate
from notify_engine.templates.service import SqlTemplateStore

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [
    User,
    SchoolClass,
    ClassEnrollment,
    GuardianLink,
    NotificationPreference,
    UserNotificationSettings,
    NotificationTemplate,
    Notification,
    UserNotification,
    DeliveryLog,
]


class FakeSink:
    """Channel sink that records calls. Contacts in `failing` fail, contacts in `raising` raise."""

    def __init__(self):
        self.calls = []
        self.failing = set()
        self.raising = set()

    def send(self, channel, contact, title, body):
        self.calls.append((channel, contact, title, body))
        if contact in self.raising:
            raise ConnectionError(f"{contact} unreachable")
        if contact in self.failing:
            return SendResult.failed("rejected by provider")
        return SendResult.sent(provider_ref=f"ref-{len(self.calls)}")


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    """Create an in-memory SQLite database for testing.

    Note: SQLite doesn't support all PostgreSQL features (JSONB, UUID),
    but works for basic service logic testing.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def make_user(db_session, tenant_id):
    """Factory for directory users; contact fields default to addresses derived from the name."""

    def _make(name="user", role=UserRole.TEACHER, tenant=None, is_active=True, **contacts):
        slug = f"{name}-{uuid.uuid4().hex[:6]}"
        user = User(
            id=uuid.uuid4(),
            tenant_id=tenant or tenant_id,
            name=name,
            email=contacts.get("email", f"{slug}@school.test"),
            phone=contacts.get("phone", f"+1555{uuid.uuid4().int % 10_000_000:07d}"),
            push_token=contacts.get("push_token", f"push-{slug}"),
            webhook_url=contacts.get("webhook_url"),
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def make_class(db_session, tenant_id):
    """Factory for a class with enrolled students and optional guardian links."""

    def _make(students=(), guardians=None, tenant=None, name="5A"):
        school_class = SchoolClass(id=uuid.uuid4(), tenant_id=tenant or tenant_id, name=name)
        db_session.add(school_class)
        for student in students:
            db_session.add(ClassEnrollment(class_id=school_class.id, student_id=student.id, is_active=True))
        for student, guardian in (guardians or {}).items():
            db_session.add(GuardianLink(student_id=student.id, guardian_id=guardian.id))
        db_session.commit()
        return school_class

    return _make


@pytest.fixture
def opt_out(db_session):
    def _opt_out(user, channel, category=NotificationCategory.GENERAL):
        db_session.add(NotificationPreference(user_id=user.id, category=category, channel=channel, enabled=False))
        db_session.commit()

    return _opt_out


@pytest.fixture
def sinks():
    return {
        Channel.EMAIL: FakeSink(),
        Channel.SMS: FakeSink(),
        Channel.PUSH: FakeSink(),
        Channel.WEBHOOK: FakeSink(),
    }


@pytest.fixture
def test_settings():
    """Inline dispatch so every submit has finished by the time it returns."""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        dispatch_workers=0,
        dispatch_concurrency=0,
        scheduler_enabled=False,
        default_webhook_url="",
    )


@pytest.fixture
def notify_engine(session_factory, sinks, test_settings):
    engine = NotificationEngine(
        session_factory,
        directory=SqlDirectory(),
        preferences=SqlPreferenceStore(),
        templates=SqlTemplateStore(),
        sinks=sinks,
        settings=test_settings,
    )
    yield engine
    engine.shutdown()
