"""Shared FastAPI dependencies."""

from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .database.base import get_db
from .directory.models import User
from .notifications.engine import NotificationEngine


class AuthRequired(Exception):
    """Raised when the caller cannot be identified. Handled by exception handler in main.py."""

    pass


def get_engine(request: Request) -> NotificationEngine:
    """Get the notification engine from app state."""
    return request.app.state.engine


def _header_uuid(request: Request, name: str) -> UUID:
    value = request.headers.get(name)
    if not value:
        raise AuthRequired(f"Missing {name} header")
    try:
        return UUID(value)
    except ValueError:
        raise AuthRequired(f"Invalid {name} header")


def get_caller(request: Request, db: Session = Depends(get_db)) -> User:
    """Resolve the calling user from the X-Tenant-ID / X-User-ID headers set by the gateway."""
    tenant_id = _header_uuid(request, "X-Tenant-ID")
    user_id = _header_uuid(request, "X-User-ID")
    user = db.query(User).filter(User.id == user_id, User.tenant_id == tenant_id).first()
    if not user or not user.is_active:
        raise AuthRequired("Unknown or inactive user")
    return user
