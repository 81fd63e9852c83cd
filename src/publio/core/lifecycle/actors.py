"""
Acting users and how they are resolved.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from sqlalchemy.orm import Session

from publio.core.config.models import OrganizationRole
from publio.core.errors import NotFoundError
from publio.persistence.repo import OrganizationRepository, UserRepository

from .permissions import Permission, require_permission


@dataclass
class Actor:
    """Who is performing an operation, and their role per organization."""

    user_id: int | None
    name: str | None = None
    email: str | None = None
    memberships: dict[int, OrganizationRole] = field(default_factory=dict)
    is_system: bool = False

    def role_in(self, organization_id: int) -> OrganizationRole | None:
        return self.memberships.get(organization_id)

    def is_member_of(self, organization_id: int) -> bool:
        return organization_id in self.memberships

    def require(self, permission: Permission, organization_id: int) -> None:
        require_permission(self.role_in(organization_id), permission, organization_id)

    @property
    def label(self) -> str:
        if self.is_system:
            return "system"
        return self.email or f"user:{self.user_id}"


SYSTEM_ACTOR = Actor(user_id=None, name="System", is_system=True)


class ActorResolver(Protocol):
    def resolve(self, session: Session, user_id: int) -> Actor: ...


class DatabaseActorResolver:
    """Resolve a user id to an Actor with their organization roles."""

    def resolve(self, session: Session, user_id: int) -> Actor:
        user = UserRepository(session).get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        memberships = OrganizationRepository(session).get_memberships(user.id)
        return Actor(
            user_id=user.id,
            name=user.name,
            email=user.email,
            memberships={org_id: OrganizationRole(role) for org_id, role in memberships.items()},
        )
