from __future__ import annotations

import threading
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from publio.core.config.models import CloseReason, LifecycleConfig
from publio.core.errors import StateError
from publio.core.lifecycle import SYSTEM_ACTOR, DatabaseActorResolver, TenderLifecycle
from publio.core.service import MarketplaceService
from publio.persistence.models import EquityLog, Tender, TenderCriterion, TenderLot
from publio.persistence.repo import TenderRepository


def _actions(service, tender_id):
    result = service.get_equity_logs(tender_id)
    assert result.ok, result.error
    return [entry["action"] for entry in result.data]


def test_create_tender_starts_as_draft_and_is_logged(service, world, draft_data):
    result = service.create_tender(world.editor, draft_data())

    assert result.ok
    tender = result.data
    assert tender["status"] == "DRAFT"
    assert tender["mode"] == "CLASSIC"
    assert tender["issuer"] == "Commune de Lausanne"
    assert [lot["title"] for lot in tender["lots"]] == ["Roofing"]
    assert [c["name"] for c in tender["criteria"]] == ["Price", "Quality"]
    assert _actions(service, tender["id"]) == ["TENDER_CREATED"]


def test_create_tender_requires_lot_or_criterion(service, world, draft_data):
    result = service.create_tender(world.owner, draft_data(lots=[], criteria=[]))

    assert not result.ok
    assert result.error["kind"] == "ValidationError"


def test_create_tender_rejects_blank_title(service, world, draft_data):
    result = service.create_tender(world.owner, draft_data(title="   "))

    assert not result.ok
    assert result.error["kind"] == "ValidationError"


def test_create_tender_for_unknown_organization(service, world, draft_data):
    result = service.create_tender(world.owner, draft_data(organization_id=9999))

    assert not result.ok
    assert result.error["kind"] == "ValidationError"


@pytest.mark.parametrize("who", ["viewer", "outsider", "bidder"])
def test_create_tender_requires_editor_role(service, world, draft_data, who):
    result = service.create_tender(getattr(world, who), draft_data())

    assert not result.ok
    assert result.error["kind"] == "PermissionError"


def test_unknown_user_is_reported(service, draft_data):
    result = service.create_tender(424242, draft_data())

    assert not result.ok
    assert result.error["kind"] == "NotFoundError"


def test_create_edit_publish_edit_scenario(service, world, draft_data, clock):
    created = service.create_tender(world.owner, draft_data())
    tender_id = created.data["id"]

    clock.advance(minutes=5)
    edited = service.edit_tender(world.editor, tender_id, {"title": "Bellevue school roof", "budget": 300_000})
    assert edited.ok
    assert edited.data["title"] == "Bellevue school roof"
    assert edited.data["budget"] == 300_000

    clock.advance(minutes=5)
    published = service.publish_tender(world.owner, tender_id)
    assert published.ok
    assert published.data["status"] == "PUBLISHED"
    assert published.data["published_at"] == clock.now.isoformat()

    clock.advance(minutes=5)
    late_edit = service.edit_tender(world.owner, tender_id, {"title": "Too late"})
    assert not late_edit.ok
    assert late_edit.error["kind"] == "StateError"

    assert service.get_tender(tender_id).data["title"] == "Bellevue school roof"
    assert _actions(service, tender_id) == ["TENDER_PUBLISHED", "TENDER_UPDATED", "TENDER_CREATED"]


def test_edit_records_changed_fields(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    service.edit_tender(world.owner, tender_id, {"budget": 100_000, "city": "Pully"})

    entry = service.get_equity_logs(tender_id).data[0]
    assert entry["action"] == "TENDER_UPDATED"
    assert entry["metadata"]["fields"] == ["budget", "city"]
    assert entry["metadata"]["changes"]["city"] == {"old": "Lausanne", "new": "Pully"}


def test_edit_without_changes_writes_no_entry(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    result = service.edit_tender(world.owner, tender_id, {"city": "Lausanne"})

    assert result.ok
    assert _actions(service, tender_id) == ["TENDER_CREATED"]


def test_edit_cannot_clear_required_field(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    result = service.edit_tender(world.owner, tender_id, {"title": None})

    assert not result.ok
    assert result.error["kind"] == "ValidationError"


def test_edit_replaces_lots(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    result = service.edit_tender(
        world.owner,
        tender_id,
        {"lots": [{"number": 1, "title": "Roofing"}, {"number": 2, "title": "Insulation"}]},
    )

    assert result.ok
    assert [lot["title"] for lot in result.data["lots"]] == ["Roofing", "Insulation"]
    assert service.get_equity_logs(tender_id).data[0]["metadata"]["fields"] == ["lots"]


def test_publish_twice_fails(service, world, published_tender):
    tender_id = published_tender()

    result = service.publish_tender(world.owner, tender_id)

    assert not result.ok
    assert result.error["kind"] == "StateError"


def test_status_never_moves_backwards(service, world, published_tender):
    tender_id = published_tender()
    assert service.close_tender(world.owner, tender_id).ok

    assert service.publish_tender(world.owner, tender_id).error["kind"] == "StateError"
    assert service.edit_tender(world.owner, tender_id, {"title": "Again"}).error["kind"] == "StateError"
    assert service.get_tender(tender_id).data["status"] == "CLOSED"


def test_close_draft_fails(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    result = service.close_tender(world.owner, tender_id)

    assert not result.ok
    assert result.error["kind"] == "StateError"


def test_close_is_manual_and_idempotent(service, world, published_tender):
    tender_id = published_tender()

    first = service.close_tender(world.editor, tender_id)
    second = service.close_tender(world.editor, tender_id)

    assert first.ok and second.ok
    assert first.data["closed_reason"] == "MANUAL"
    assert second.data["closed_at"] == first.data["closed_at"]
    assert _actions(service, tender_id).count("TENDER_CLOSED") == 1


def test_close_requires_editor_role(service, world, published_tender):
    tender_id = published_tender()

    result = service.close_tender(world.viewer, tender_id)

    assert result.error["kind"] == "PermissionError"


def test_anonymous_tender_hides_issuer_until_revealed(service, world, published_tender):
    tender_id = published_tender(mode="ANONYMOUS")

    assert service.get_tender(tender_id).data["issuer"] == "Anonymous organization"

    revealed = service.reveal_identity(world.owner, tender_id)

    assert revealed.ok
    assert revealed.data["identity_revealed"] is True
    assert revealed.data["issuer"] == "Commune de Lausanne"
    assert _actions(service, tender_id)[0] == "IDENTITY_REVEALED"


def test_reveal_requires_owner_or_admin(service, world, published_tender):
    tender_id = published_tender(mode="ANONYMOUS")

    by_editor = service.reveal_identity(world.editor, tender_id)
    assert not by_editor.ok
    assert by_editor.error["kind"] == "PermissionError"
    assert service.get_tender(tender_id).data["identity_revealed"] is False

    by_admin = service.reveal_identity(world.admin, tender_id)
    assert by_admin.ok


def test_second_reveal_fails_and_reveal_is_permanent(service, world, published_tender):
    tender_id = published_tender(mode="ANONYMOUS")
    first = service.reveal_identity(world.owner, tender_id)

    second = service.reveal_identity(world.owner, tender_id)
    assert not second.ok
    assert second.error["kind"] == "StateError"

    service.close_tender(world.owner, tender_id)
    tender = service.get_tender(tender_id).data
    assert tender["identity_revealed"] is True
    assert tender["revealed_at"] == first.data["revealed_at"]


def test_reveal_on_classic_tender_fails(service, world, published_tender):
    tender_id = published_tender()

    result = service.reveal_identity(world.owner, tender_id)

    assert result.error["kind"] == "StateError"


def test_reveal_on_draft_fails(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data(mode="ANONYMOUS")).data["id"]

    result = service.reveal_identity(world.owner, tender_id)

    assert result.error["kind"] == "StateError"
    assert service.get_tender(tender_id).data["identity_revealed"] is False


def test_closing_anonymous_tender_reveals_issuer(service, world, published_tender):
    tender_id = published_tender(mode="ANONYMOUS")

    closed = service.close_tender(world.owner, tender_id)

    assert closed.data["identity_revealed"] is True
    assert closed.data["issuer"] == "Commune de Lausanne"
    entry = service.get_equity_logs(tender_id).data[0]
    assert entry["action"] == "TENDER_CLOSED"
    assert entry["metadata"]["identity_revealed"] is True


def test_reveal_can_wait_for_deadline(db, world, clock, draft_data):
    service = MarketplaceService(db, config=LifecycleConfig(reveal_requires_deadline_passed=True), clock=clock)
    tender_id = service.create_tender(world.owner, draft_data(mode="ANONYMOUS")).data["id"]
    service.publish_tender(world.owner, tender_id)

    early = service.reveal_identity(world.owner, tender_id)
    assert early.error["kind"] == "StateError"

    clock.advance(days=15)
    assert service.reveal_identity(world.owner, tender_id).ok


def test_lifecycle_controller_raises_domain_errors(db, world, clock, draft_data):
    with db.session() as session:
        actor = DatabaseActorResolver().resolve(session, world.owner)
        lifecycle = TenderLifecycle(session, clock=clock)
        tender = lifecycle.create(draft_data(), actor)
        lifecycle.publish(tender.id, actor)

        with pytest.raises(StateError):
            lifecycle.publish(tender.id, actor)

        assert tender.published_at == clock.now
        assert lifecycle.display_issuer(tender) == "Commune de Lausanne"


def test_deadline_is_stored_as_naive_utc(service, world, draft_data, clock):
    from datetime import timezone

    aware = (clock.now + timedelta(days=3)).replace(tzinfo=timezone(timedelta(hours=1)))
    result = service.create_tender(world.owner, draft_data(deadline=aware))

    assert result.data["deadline"] == (clock.now + timedelta(days=3) - timedelta(hours=1)).isoformat()


# =============================================================================
# Draft deletion
# =============================================================================


def _row_counts(db, tender_id):
    with db.session() as session:
        return {
            model.__name__: session.execute(
                select(func.count()).select_from(model).where(model.tender_id == tender_id)
            ).scalar_one()
            for model in (TenderLot, TenderCriterion, EquityLog)
        }


def test_delete_draft_removes_tender_and_children(service, world, draft_data, db):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]
    assert _row_counts(db, tender_id) == {"TenderLot": 1, "TenderCriterion": 2, "EquityLog": 1}

    result = service.delete_draft_tender(world.editor, tender_id)

    assert result.data == {"id": tender_id, "deleted": True}
    assert service.get_tender(tender_id).error["kind"] == "NotFoundError"
    assert _row_counts(db, tender_id) == {"TenderLot": 0, "TenderCriterion": 0, "EquityLog": 0}


def test_delete_refuses_published_tender(service, world, published_tender):
    tender_id = published_tender()

    result = service.delete_draft_tender(world.owner, tender_id)

    assert result.error["kind"] == "StateError"
    assert service.get_tender(tender_id).data["status"] == "PUBLISHED"


@pytest.mark.parametrize("who", ["viewer", "bidder"])
def test_delete_requires_editor_role(service, world, draft_data, who):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    result = service.delete_draft_tender(getattr(world, who), tender_id)

    assert result.error["kind"] == "PermissionError"
    assert service.get_tender(tender_id).ok


# =============================================================================
# Concurrent writers
# =============================================================================


def _interleave(monkeypatch, method, **competing):
    """Apply ``competing`` to the tender just before ``method`` runs its guarded write."""
    original = getattr(TenderRepository, method)

    def wrapper(self, tender_id, *args, **kwargs):
        self.session.execute(
            update(Tender)
            .where(Tender.id == tender_id)
            .values(**competing)
            .execution_options(synchronize_session=False)
        )
        return original(self, tender_id, *args, **kwargs)

    monkeypatch.setattr(TenderRepository, method, wrapper)


def _in_thread(fn):
    outcome = {}

    def target():
        outcome["result"] = fn()

    thread = threading.Thread(target=target)
    thread.start()
    return thread, outcome


def test_edit_losing_to_publish_changes_nothing(service, world, draft_data, monkeypatch):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]
    _interleave(monkeypatch, "transition", status="PUBLISHED")

    result = service.edit_tender(world.editor, tender_id, {"budget": 1, "lots": [{"number": 1, "title": "Gutters"}]})

    assert result.error["kind"] == "StateError"
    monkeypatch.undo()
    tender = service.get_tender(tender_id).data
    assert tender["status"] == "DRAFT"
    assert tender["budget"] == 250_000
    assert [lot["title"] for lot in tender["lots"]] == ["Roofing"]
    assert _actions(service, tender_id) == ["TENDER_CREATED"]


def test_publish_losing_to_publish_fails(service, world, draft_data, monkeypatch):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]
    _interleave(monkeypatch, "transition", status="PUBLISHED")

    result = service.publish_tender(world.editor, tender_id)

    assert result.error["kind"] == "StateError"
    monkeypatch.undo()
    assert _actions(service, tender_id) == ["TENDER_CREATED"]


def test_second_revealer_losing_the_race_fails(service, world, published_tender, monkeypatch):
    tender_id = published_tender(mode="ANONYMOUS")
    _interleave(monkeypatch, "mark_revealed", identity_revealed=True)

    result = service.reveal_identity(world.admin, tender_id)

    assert result.error["kind"] == "StateError"
    assert "already been revealed" in result.error["message"]
    monkeypatch.undo()
    assert "IDENTITY_REVEALED" not in _actions(service, tender_id)


def test_manual_close_after_concurrent_expiry_close_is_noop(service, world, published_tender, monkeypatch, clock):
    tender_id = published_tender()
    _interleave(monkeypatch, "transition", status="CLOSED", closed_reason="EXPIRY", closed_at=clock.now)

    result = service.close_tender(world.owner, tender_id)

    assert result.ok, result.error
    assert result.data["status"] == "CLOSED"
    assert result.data["closed_reason"] == "EXPIRY"
    monkeypatch.undo()
    assert "TENDER_CLOSED" not in _actions(service, tender_id)


def test_delete_losing_to_publish_fails(service, world, draft_data, monkeypatch):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]
    _interleave(monkeypatch, "delete_if_status", status="PUBLISHED")

    result = service.delete_draft_tender(world.owner, tender_id)

    assert result.error["kind"] == "StateError"
    monkeypatch.undo()
    assert service.get_tender(tender_id).data["status"] == "DRAFT"


def test_edit_waits_for_open_publish_and_then_fails(db, service, world, draft_data, clock):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    with db.session() as session:
        actor = DatabaseActorResolver().resolve(session, world.owner)
        TenderLifecycle(session, clock=clock).publish(tender_id, actor)

        thread, outcome = _in_thread(lambda: service.edit_tender(world.editor, tender_id, {"budget": 1}))
        thread.join(timeout=0.5)
        assert thread.is_alive()

    thread.join(timeout=10)
    assert outcome["result"].error["kind"] == "StateError"
    tender = service.get_tender(tender_id).data
    assert (tender["status"], tender["budget"]) == ("PUBLISHED", 250_000)
    assert _actions(service, tender_id) == ["TENDER_PUBLISHED", "TENDER_CREATED"]


def test_reveal_waits_for_open_reveal_and_then_fails(db, service, world, published_tender, clock):
    tender_id = published_tender(mode="ANONYMOUS")

    with db.session() as session:
        actor = DatabaseActorResolver().resolve(session, world.owner)
        TenderLifecycle(session, clock=clock).reveal_identity(tender_id, actor)
        thread, outcome = _in_thread(lambda: service.reveal_identity(world.admin, tender_id))

    thread.join(timeout=10)
    assert outcome["result"].error["kind"] == "StateError"
    assert _actions(service, tender_id).count("IDENTITY_REVEALED") == 1


def test_manual_close_waits_for_expiry_close_and_is_noop(db, service, world, published_tender, clock):
    tender_id = published_tender()

    with db.session() as session:
        TenderLifecycle(session, clock=clock).close(tender_id, SYSTEM_ACTOR, CloseReason.EXPIRY)
        thread, outcome = _in_thread(lambda: service.close_tender(world.owner, tender_id))

    thread.join(timeout=10)
    result = outcome["result"]
    assert result.ok, result.error
    assert result.data["closed_reason"] == "EXPIRY"
    assert _actions(service, tender_id).count("TENDER_CLOSED") == 1
