"""Directory lookups used by target resolution and dispatch.

Directory is the seam the engine depends on; SqlDirectory reads the directory tables
owned by the rest of the school system.
"""

from collections.abc import Iterable
from typing import Protocol
from uuid import UUID

from sqlalchemy.orm import Session

from ..notifications.enums import UserRole
from ..notifications.exceptions import UnknownClassError
from .models import ClassEnrollment, GuardianLink, SchoolClass, User


class Directory(Protocol):
    """Read-only view of users, roles and class rosters."""

    def active_user_ids(self, db: Session, tenant_id: UUID) -> set[UUID]: ...
    def filter_active(self, db: Session, tenant_id: UUID, user_ids: Iterable[UUID]) -> set[UUID]: ...
    def users_with_roles(self, db: Session, tenant_id: UUID, roles: Iterable[UserRole]) -> set[UUID]: ...
    def class_members(
        self, db: Session, tenant_id: UUID, class_ids: Iterable[UUID], include_guardians: bool
    ) -> set[UUID]: ...
    def get_users(self, db: Session, user_ids: Iterable[UUID]) -> dict[UUID, User]: ...


class SqlDirectory:
    """Directory backed by the shared users/classes tables."""

    def active_user_ids(self, db: Session, tenant_id: UUID) -> set[UUID]:
        rows = db.query(User.id).filter(User.tenant_id == tenant_id, User.is_active.is_(True)).all()
        return {row.id for row in rows}

    def filter_active(self, db: Session, tenant_id: UUID, user_ids: Iterable[UUID]) -> set[UUID]:
        ids = set(user_ids)
        if not ids:
            return set()
        rows = (
            db.query(User.id)
            .filter(User.id.in_(ids), User.tenant_id == tenant_id, User.is_active.is_(True))
            .all()
        )
        return {row.id for row in rows}

    def users_with_roles(self, db: Session, tenant_id: UUID, roles: Iterable[UserRole]) -> set[UUID]:
        wanted = set(roles)
        if not wanted:
            return set()
        rows = (
            db.query(User.id)
            .filter(User.tenant_id == tenant_id, User.role.in_(wanted), User.is_active.is_(True))
            .all()
        )
        return {row.id for row in rows}

    def class_members(
        self, db: Session, tenant_id: UUID, class_ids: Iterable[UUID], include_guardians: bool
    ) -> set[UUID]:
        """Active students enrolled in the classes, plus their active guardians if asked.

        Raises UnknownClassError if any class id does not exist in the tenant.
        """
        wanted = set(class_ids)
        if not wanted:
            return set()

        known = {
            row.id
            for row in db.query(SchoolClass.id)
            .filter(SchoolClass.id.in_(wanted), SchoolClass.tenant_id == tenant_id)
            .all()
        }
        missing = wanted - known
        if missing:
            raise UnknownClassError(sorted(missing, key=str))

        students = {
            row.id
            for row in db.query(User.id)
            .join(ClassEnrollment, ClassEnrollment.student_id == User.id)
            .filter(
                ClassEnrollment.class_id.in_(wanted),
                ClassEnrollment.is_active.is_(True),
                User.tenant_id == tenant_id,
                User.is_active.is_(True),
            )
            .all()
        }
        if not include_guardians or not students:
            return students

        guardians = {
            row.id
            for row in db.query(User.id)
            .join(GuardianLink, GuardianLink.guardian_id == User.id)
            .filter(
                GuardianLink.student_id.in_(students),
                User.tenant_id == tenant_id,
                User.is_active.is_(True),
            )
            .all()
        }
        return students | guardians

    def get_users(self, db: Session, user_ids: Iterable[UUID]) -> dict[UUID, User]:
        ids = set(user_ids)
        if not ids:
            return {}
        return {u.id: u for u in db.query(User).filter(User.id.in_(ids)).all()}
