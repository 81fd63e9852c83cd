from __future__ import annotations

import pytest

from publio.core.config.models import OrganizationRole
from publio.core.errors import NotFoundError, PermissionDeniedError
from publio.core.lifecycle import (
    SYSTEM_ACTOR,
    Actor,
    DatabaseActorResolver,
    Permission,
    has_permission,
    require_permission,
)

OWNER, ADMIN, EDITOR, VIEWER = (
    OrganizationRole.OWNER,
    OrganizationRole.ADMIN,
    OrganizationRole.EDITOR,
    OrganizationRole.VIEWER,
)


@pytest.mark.parametrize(
    "permission, allowed",
    [
        (Permission.CREATE_TENDER, {OWNER, ADMIN, EDITOR}),
        (Permission.EDIT_TENDER, {OWNER, ADMIN, EDITOR}),
        (Permission.PUBLISH_TENDER, {OWNER, ADMIN, EDITOR}),
        (Permission.CLOSE_TENDER, {OWNER, ADMIN, EDITOR}),
        (Permission.REVEAL_IDENTITY, {OWNER, ADMIN}),
        (Permission.VIEW_OFFERS, {OWNER, ADMIN, EDITOR, VIEWER}),
        (Permission.SHORTLIST_OFFER, {OWNER, ADMIN, EDITOR}),
        (Permission.VIEW_EQUITY_LOG, {OWNER, ADMIN, EDITOR, VIEWER}),
    ],
)
def test_role_sets(permission, allowed):
    for role in OrganizationRole:
        assert has_permission(role, permission) is (role in allowed)


def test_roles_as_strings_and_unknown_roles():
    assert has_permission("OWNER", Permission.REVEAL_IDENTITY)
    assert not has_permission("SUPERUSER", Permission.CREATE_TENDER)
    assert not has_permission(None, Permission.VIEW_OFFERS)


def test_require_permission_messages():
    with pytest.raises(PermissionDeniedError, match="Not a member"):
        require_permission(None, Permission.CREATE_TENDER, organization_id=3)

    with pytest.raises(PermissionDeniedError, match="Role EDITOR cannot reveal identity") as excinfo:
        require_permission(EDITOR, Permission.REVEAL_IDENTITY, organization_id=3)
    assert excinfo.value.to_dict()["kind"] == "PermissionError"


def test_actor_roles_are_per_organization():
    actor = Actor(user_id=7, email="x@example.com", memberships={1: OWNER, 2: VIEWER})

    actor.require(Permission.REVEAL_IDENTITY, 1)
    with pytest.raises(PermissionDeniedError):
        actor.require(Permission.REVEAL_IDENTITY, 2)
    with pytest.raises(PermissionDeniedError):
        actor.require(Permission.VIEW_OFFERS, 3)
    assert actor.label == "x@example.com"
    assert SYSTEM_ACTOR.label == "system"


def test_database_resolver_loads_memberships(db, world):
    with db.session() as session:
        actor = DatabaseActorResolver().resolve(session, world.admin)

    assert actor.user_id == world.admin
    assert actor.memberships == {world.commune: ADMIN}
    assert actor.is_member_of(world.commune)
    assert not actor.is_member_of(world.builder)


def test_database_resolver_unknown_user(db):
    with pytest.raises(NotFoundError):
        with db.session() as session:
            DatabaseActorResolver().resolve(session, 404)
