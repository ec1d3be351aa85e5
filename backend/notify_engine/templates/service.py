"""Template lookup."""

from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from .models import NotificationTemplate


class TemplateStore(Protocol):
    def get(self, db: Session, tenant_id: UUID, template_id: UUID) -> NotificationTemplate | None: ...


class SqlTemplateStore:
    def get(self, db: Session, tenant_id: UUID, template_id: UUID) -> NotificationTemplate | None:
        """Active template of the tenant, or None."""
        return (
            db.query(NotificationTemplate)
            .filter(
                NotificationTemplate.id == template_id,
                NotificationTemplate.tenant_id == tenant_id,
                NotificationTemplate.is_active.is_(True),
            )
            .first()
        )
