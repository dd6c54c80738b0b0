"""
Organization directory read port.

The routing engine never queries organization tables directly; it asks
an ``OrganizationDirectory``. ``SqlOrganizationDirectory`` is the default
adapter over the platform tables, tests may hand in an in-memory fake.

Every lookup returns ``None`` / an empty list on a miss. A missing user
or department is a routing outcome, not an error, at this layer.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy import select

from approval_routing.models import db
from approval_routing.models.organization import Department, RoleGroup, User, role_group_members

logger = logging.getLogger(__name__)


class OrganizationDirectory(ABC):
    """Read-only view of users, departments and group membership."""

    @abstractmethod
    def get_user_by_id(self, user_id: int | None) -> User | None:
        ...

    @abstractmethod
    def get_department_by_id(self, department_id: int | None) -> Department | None:
        ...

    @abstractmethod
    def get_users_in_group(self, group_id: int | None) -> list[User]:
        """Members of a role group, in membership order."""

    @abstractmethod
    def get_all_users(self) -> list[User]:
        """Every active user in the organization."""


class SqlOrganizationDirectory(OrganizationDirectory):
    """Directory adapter backed by the shared SQLAlchemy session."""

    def get_user_by_id(self, user_id):
        if user_id is None:
            return None
        return db.session.get(User, user_id)

    def get_department_by_id(self, department_id):
        if department_id is None:
            return None
        return db.session.get(Department, department_id)

    def get_users_in_group(self, group_id):
        if group_id is None or db.session.get(RoleGroup, group_id) is None:
            return []
        return list(
            db.session.execute(
                select(User)
                .join(role_group_members, role_group_members.c.user_id == User.id)
                .where(
                    role_group_members.c.role_group_id == group_id,
                    User.is_active.is_(True),
                )
                .order_by(role_group_members.c.position.asc(), User.id.asc())
            ).scalars()
        )

    def get_all_users(self):
        return list(
            db.session.execute(
                select(User).where(User.is_active.is_(True)).order_by(User.id.asc())
            ).scalars()
        )
