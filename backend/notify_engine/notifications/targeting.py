"""Target resolution: expand a TargetSpec into a concrete recipient set."""

import logging
from collections.abc import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from ..directory.service import Directory
from .enums import NotificationCategory, TargetType
from .schemas import TargetSpec

logger = logging.getLogger(__name__)


class TargetResolver:
    """Resolves target specifications against the directory.

    The result is a snapshot of the directory at resolution time. Unknown or inactive
    user ids drop out silently; unknown class ids raise UnknownClassError.
    """

    def __init__(self, directory: Directory, guardian_excluded_categories: Iterable[str] = ("SYSTEM", "PERSONAL")):
        self._directory = directory
        self._guardian_excluded = {str(c).upper() for c in guardian_excluded_categories}

    def includes_guardians(self, category: NotificationCategory) -> bool:
        return str(category) not in self._guardian_excluded

    def resolve(
        self,
        db: Session,
        tenant_id: UUID,
        spec: TargetSpec,
        category: NotificationCategory = NotificationCategory.GENERAL,
    ) -> set[UUID]:
        recipients = self._resolve(db, tenant_id, spec, category)
        logger.debug("Resolved %s target for tenant %s: %d recipient(s)", spec.type, tenant_id, len(recipients))
        return recipients

    def _resolve(
        self, db: Session, tenant_id: UUID, spec: TargetSpec, category: NotificationCategory
    ) -> set[UUID]:
        match spec.type:
            case TargetType.ALL_USERS:
                return self._directory.active_user_ids(db, tenant_id)
            case TargetType.SPECIFIC_USERS:
                return self._directory.filter_active(db, tenant_id, spec.user_ids)
            case TargetType.ROLE_BASED:
                return self._directory.users_with_roles(db, tenant_id, spec.roles)
            case TargetType.CLASS_BASED:
                return self._directory.class_members(
                    db, tenant_id, spec.class_ids, include_guardians=self.includes_guardians(category)
                )
            case TargetType.COMBINED:
                result: set[UUID] = set()
                if spec.user_ids:
                    result |= self._directory.filter_active(db, tenant_id, spec.user_ids)
                if spec.roles:
                    result |= self._directory.users_with_roles(db, tenant_id, spec.roles)
                if spec.class_ids:
                    result |= self._directory.class_members(
                        db, tenant_id, spec.class_ids, include_guardians=self.includes_guardians(category)
                    )
                for part in spec.parts:
                    result |= self._resolve(db, tenant_id, part, category)
                return result
        raise ValueError(f"Unsupported target type: {spec.type}")
