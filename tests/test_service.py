from __future__ import annotations

import sqlite3

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from publio.core.config.models import OrganizationRole
from publio.core.errors import StateError, ValidationError
from publio.core.lifecycle import Actor
from publio.core.service import MarketplaceService, OperationResult
from publio.persistence.db import Database, is_lock_contention
from publio.persistence.models import User
from publio.persistence.repo import OrganizationRepository, UserRepository


def test_operation_result_to_dict():
    assert OperationResult.success({"id": 1}).to_dict() == {"ok": True, "data": {"id": 1}}

    failure = OperationResult.failure(ValidationError("Title is required"))
    assert failure.to_dict() == {
        "ok": False,
        "error": {"kind": "ValidationError", "message": "Title is required"},
    }


def test_failed_operation_leaves_no_partial_changes(service, db):
    def op(session, actor):
        UserRepository(session).create("half@example.com", name="Half Done")
        session.flush()
        raise StateError("changed my mind")

    result = service._run("test", None, op)

    assert result.error == {"kind": "StateError", "message": "changed my mind"}
    with db.session() as session:
        assert UserRepository(session).get_by_email("half@example.com") is None


def test_uniqueness_violation_is_reported_as_conflict(service, world):
    def op(session, actor):
        OrganizationRepository(session).add_member(world.commune, world.owner, OrganizationRole.ADMIN.value)

    result = service._run("add_member", None, op)

    assert not result.ok
    assert result.error["kind"] == "ConflictError"


def test_unknown_user_and_tender(service, world):
    assert service.get_tender(12345).error == {"kind": "NotFoundError", "message": "Tender 12345 not found"}
    assert service.publish_tender(999, 1).error["kind"] == "NotFoundError"


def test_get_tender_hides_anonymous_issuer(service, published_tender):
    tender_id = published_tender(mode="ANONYMOUS")

    tender = service.get_tender(tender_id).data

    assert tender["issuer"] == "Anonymous organization"
    assert tender["identity_revealed"] is False


def test_custom_actor_resolver(db, world, draft_data, clock):
    class ReadOnlyResolver:
        def resolve(self, session, user_id):
            user = session.get(User, user_id)
            return Actor(
                user_id=user.id,
                name=user.name,
                email=user.email,
                memberships={world.commune: OrganizationRole.VIEWER},
            )

    service = MarketplaceService(db, resolver=ReadOnlyResolver(), clock=clock)

    result = service.create_tender(world.owner, draft_data())

    assert result.error["kind"] == "PermissionError"


def test_write_blocked_past_busy_timeout_is_a_state_error(db, world, draft_data, clock):
    impatient = Database(db.url, busy_timeout=0.05)
    service = MarketplaceService(impatient, clock=clock)
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    try:
        with db.session() as session:
            # Any statement takes the write lock for the whole transaction
            UserRepository(session).get_by_id(world.owner)
            result = service.publish_tender(world.owner, tender_id)
    finally:
        impatient.dispose()

    assert result.error == {"kind": "StateError", "message": "The record was changed concurrently, retry the operation"}
    assert MarketplaceService(db).get_tender(tender_id).data["status"] == "DRAFT"


def test_other_operational_errors_propagate(service):
    def op(session, actor):
        session.execute(text("SELECT * FROM no_such_table"))

    with pytest.raises(OperationalError):
        service._run("broken", None, op)


def test_lock_contention_detection():
    def error(orig):
        return OperationalError("UPDATE tenders", {}, orig)

    class SerializationFailure(Exception):
        pgcode = "40001"

    assert is_lock_contention(error(sqlite3.OperationalError("database is locked")))
    assert is_lock_contention(error(SerializationFailure("could not serialize access")))
    assert not is_lock_contention(error(sqlite3.OperationalError("no such table: tenders")))
