"""Closed value sets for notifications, channels and delivery state."""

import enum


class NotificationType(enum.StrEnum):
    SYSTEM = "SYSTEM"
    ACADEMIC = "ACADEMIC"
    ATTENDANCE = "ATTENDANCE"
    EXAM_RESULT = "EXAM_RESULT"
    FEE_REMINDER = "FEE_REMINDER"
    ANNOUNCEMENT = "ANNOUNCEMENT"
    EVENT = "EVENT"
    EMERGENCY = "EMERGENCY"
    WELCOME = "WELCOME"
    PASSWORD_RESET = "PASSWORD_RESET"
    GRADE_UPDATE = "GRADE_UPDATE"
    ASSIGNMENT = "ASSIGNMENT"
    TIMETABLE_CHANGE = "TIMETABLE_CHANGE"
    DISCIPLINARY = "DISCIPLINARY"
    HEALTH = "HEALTH"
    TRANSPORT = "TRANSPORT"
    LIBRARY = "LIBRARY"
    CUSTOM = "CUSTOM"


class NotificationPriority(enum.StrEnum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"


class NotificationCategory(enum.StrEnum):
    GENERAL = "GENERAL"
    ACADEMIC = "ACADEMIC"
    ADMINISTRATIVE = "ADMINISTRATIVE"
    FINANCIAL = "FINANCIAL"
    HEALTH = "HEALTH"
    SAFETY = "SAFETY"
    EVENTS = "EVENTS"
    SYSTEM = "SYSTEM"
    PERSONAL = "PERSONAL"


class Channel(enum.StrEnum):
    EMAIL = "EMAIL"
    SMS = "SMS"
    PUSH = "PUSH"
    IN_APP = "IN_APP"
    WEBHOOK = "WEBHOOK"


EXTERNAL_CHANNELS = (Channel.EMAIL, Channel.SMS, Channel.PUSH, Channel.WEBHOOK)


class NotificationStatus(enum.StrEnum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    SENDING = "SENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({NotificationStatus.SENT, NotificationStatus.FAILED, NotificationStatus.CANCELLED})

ALLOWED_TRANSITIONS: dict[NotificationStatus, frozenset[NotificationStatus]] = {
    NotificationStatus.DRAFT: frozenset({NotificationStatus.SCHEDULED, NotificationStatus.SENDING}),
    NotificationStatus.SCHEDULED: frozenset({NotificationStatus.SENDING, NotificationStatus.CANCELLED}),
    NotificationStatus.SENDING: frozenset({NotificationStatus.SENT, NotificationStatus.FAILED}),
    NotificationStatus.SENT: frozenset(),
    NotificationStatus.FAILED: frozenset(),
    NotificationStatus.CANCELLED: frozenset(),
}


class DeliveryStatus(enum.StrEnum):
    PENDING = "PENDING"
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"
    READ = "READ"


SUCCESS_STATUSES = frozenset({DeliveryStatus.SENT, DeliveryStatus.DELIVERED, DeliveryStatus.READ})


class TargetType(enum.StrEnum):
    ALL_USERS = "ALL_USERS"
    SPECIFIC_USERS = "SPECIFIC_USERS"
    ROLE_BASED = "ROLE_BASED"
    CLASS_BASED = "CLASS_BASED"
    COMBINED = "COMBINED"


class UserRole(enum.StrEnum):
    ADMIN = "ADMIN"
    PRINCIPAL = "PRINCIPAL"
    TEACHER = "TEACHER"
    STAFF = "STAFF"
    STUDENT = "STUDENT"
    PARENT = "PARENT"
    ACCOUNTANT = "ACCOUNTANT"
    LIBRARIAN = "LIBRARIAN"
