"""Notification engine errors.

Only validation, lookup and cancellation errors reach callers; everything that happens
after a notification is accepted is recorded as data instead of raised.
"""

from uuid import UUID


class NotificationError(Exception):
    """Base for all notification engine errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotificationValidationError(NotificationError):
    """Request rejected before any record was created (maps to 422)."""

    pass


class UnknownClassError(NotificationValidationError):
    """CLASS_BASED targeting referenced classes that do not exist in the tenant."""

    def __init__(self, class_ids: list[UUID]) -> None:
        self.class_ids = class_ids
        super().__init__(f"Unknown class id(s): {', '.join(str(c) for c in class_ids)}")


class NotificationNotFoundError(NotificationError):
    """Notification (or fan-out record) not found (maps to 404)."""

    def __init__(self, notification_id: UUID | str) -> None:
        self.notification_id = notification_id
        super().__init__(f"Notification '{notification_id}' not found")


class NotCancellableError(NotificationError):
    """Only SCHEDULED notifications can be cancelled (maps to 409)."""

    def __init__(self, notification_id: UUID, status: str) -> None:
        self.notification_id = notification_id
        self.status = status
        super().__init__(f"Notification '{notification_id}' is {status} and cannot be cancelled")


class InvalidTransitionError(NotificationError):
    """A status transition outside the state machine was requested."""

    def __init__(self, current: str, target: str) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Invalid status transition {current} -> {target}")
