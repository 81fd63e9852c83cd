"""
Role-based permission checks.

Each operation has an explicit, closed set of organization roles allowed
to perform it.
"""

from __future__ import annotations

from enum import Enum

from publio.core.config.models import OrganizationRole
from publio.core.errors import PermissionDeniedError

_EDITORS = frozenset({OrganizationRole.OWNER, OrganizationRole.ADMIN, OrganizationRole.EDITOR})
_MANAGERS = frozenset({OrganizationRole.OWNER, OrganizationRole.ADMIN})
_MEMBERS = frozenset(OrganizationRole)


class Permission(str, Enum):
    CREATE_TENDER = "CREATE_TENDER"
    EDIT_TENDER = "EDIT_TENDER"
    PUBLISH_TENDER = "PUBLISH_TENDER"
    CLOSE_TENDER = "CLOSE_TENDER"
    REVEAL_IDENTITY = "REVEAL_IDENTITY"
    VIEW_OFFERS = "VIEW_OFFERS"
    SHORTLIST_OFFER = "SHORTLIST_OFFER"
    SUBMIT_OFFER = "SUBMIT_OFFER"
    WITHDRAW_OFFER = "WITHDRAW_OFFER"
    VIEW_EQUITY_LOG = "VIEW_EQUITY_LOG"


ALLOWED_ROLES: dict[Permission, frozenset[OrganizationRole]] = {
    Permission.CREATE_TENDER: _EDITORS,
    Permission.EDIT_TENDER: _EDITORS,
    Permission.PUBLISH_TENDER: _EDITORS,
    Permission.CLOSE_TENDER: _EDITORS,
    Permission.REVEAL_IDENTITY: _MANAGERS,
    Permission.VIEW_OFFERS: _MEMBERS,
    Permission.SHORTLIST_OFFER: _EDITORS,
    Permission.SUBMIT_OFFER: _EDITORS,
    Permission.WITHDRAW_OFFER: _EDITORS,
    Permission.VIEW_EQUITY_LOG: _MEMBERS,
}


def has_permission(role: OrganizationRole | str | None, permission: Permission) -> bool:
    """Whether ``role`` is in the allowed set for ``permission``."""
    if role is None:
        return False
    try:
        role = OrganizationRole(role)
    except ValueError:
        return False
    return role in ALLOWED_ROLES[permission]


def require_permission(
    role: OrganizationRole | str | None,
    permission: Permission,
    organization_id: int | None = None,
) -> None:
    """Raise PermissionDeniedError unless ``role`` grants ``permission``."""
    if has_permission(role, permission):
        return

    allowed = ", ".join(sorted(r.value for r in ALLOWED_ROLES[permission]))
    target = f" on organization {organization_id}" if organization_id is not None else ""
    if role is None:
        if organization_id is None:
            raise PermissionDeniedError("Not a member of the organization")
        raise PermissionDeniedError(f"Not a member of organization {organization_id}")
    role_name = role.value if isinstance(role, OrganizationRole) else role
    action = permission.value.lower().replace("_", " ")
    raise PermissionDeniedError(f"Role {role_name} cannot {action}{target} (requires {allowed})")
