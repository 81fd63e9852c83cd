from __future__ import annotations

import logging

from publio.core.lifecycle import SYSTEM_ACTOR, EquityLogStore
from publio.persistence.repo import EquityLogRepository


def test_entries_are_newest_first(service, world, draft_data, clock):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]
    clock.advance(minutes=1)
    service.edit_tender(world.owner, tender_id, {"budget": 1000})
    clock.advance(minutes=1)
    service.publish_tender(world.owner, tender_id)

    entries = service.get_equity_logs(tender_id).data

    assert [e["action"] for e in entries] == ["TENDER_PUBLISHED", "TENDER_UPDATED", "TENDER_CREATED"]
    timestamps = [e["created_at"] for e in entries]
    assert timestamps == sorted(timestamps, reverse=True)


def test_same_timestamp_entries_keep_insertion_order_reversed(service, world, draft_data):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]
    service.edit_tender(world.owner, tender_id, {"budget": 1000})
    service.publish_tender(world.owner, tender_id)

    entries = service.get_equity_logs(tender_id).data

    assert [e["action"] for e in entries] == ["TENDER_PUBLISHED", "TENDER_UPDATED", "TENDER_CREATED"]


def test_entries_carry_actor_identity(service, world, draft_data):
    tender_id = service.create_tender(world.editor, draft_data()).data["id"]

    entry = service.get_equity_logs(tender_id).data[0]

    assert entry["user"] == {"id": world.editor, "name": "Eda Editor", "email": "editor@lausanne.ch"}
    assert entry["description"] == 'Tender created: "Renovation of the Bellevue school roof"'
    assert entry["metadata"]["mode"] == "CLASSIC"


def test_log_failure_does_not_abort_operation(service, world, draft_data, monkeypatch, caplog):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    def broken_add(self, *args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(EquityLogRepository, "add", broken_add)
    with caplog.at_level(logging.ERROR, logger="publio"):
        result = service.publish_tender(world.owner, tender_id)

    assert result.ok
    assert result.data["status"] == "PUBLISHED"
    assert "Failed to write equity log entry TENDER_PUBLISHED" in caplog.text

    monkeypatch.undo()
    assert service.get_tender(tender_id).data["status"] == "PUBLISHED"
    assert [e["action"] for e in service.get_equity_logs(tender_id).data] == ["TENDER_CREATED"]


def test_failed_flush_is_rolled_back_to_savepoint(db, world, service, draft_data, clock):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    with db.session() as session:
        store = EquityLogStore(session, clock=clock)
        # Unknown tender id violates the foreign key
        assert store.append(999_999, SYSTEM_ACTOR, "TENDER_CLOSED", "orphan") is None
        assert store.append(tender_id, SYSTEM_ACTOR, "TENDER_CLOSED", "kept") is not None

    entries = service.get_equity_logs(tender_id).data
    assert entries[0]["description"] == "kept"


def test_system_entries_have_no_user(db, world, service, draft_data, clock):
    tender_id = service.create_tender(world.owner, draft_data()).data["id"]

    with db.session() as session:
        EquityLogStore(session, clock=clock).append(tender_id, SYSTEM_ACTOR, "TENDER_CLOSED", "by the system")

    entry = service.get_equity_logs(tender_id).data[0]
    assert entry["user"] == {"id": None, "name": "System", "email": None}


def test_reading_log_requires_issuer_membership(service, world, published_tender):
    tender_id = published_tender()

    assert service.get_equity_logs(tender_id, user_id=world.viewer).ok
    denied = service.get_equity_logs(tender_id, user_id=world.bidder)
    assert denied.error["kind"] == "PermissionError"


def test_unknown_tender_log(service, world):
    assert service.get_equity_logs(31337).error["kind"] == "NotFoundError"


def test_recent_tenders_with_logs(service, world, draft_data, clock):
    first = service.create_tender(world.owner, draft_data(title="First")).data["id"]
    clock.advance(hours=1)
    second = service.create_tender(world.owner, draft_data(title="Second")).data["id"]
    clock.advance(hours=1)
    service.publish_tender(world.owner, first)

    result = service.recent_tenders_with_logs(world.owner, world.commune)

    assert result.ok
    assert [row["tender_id"] for row in result.data] == [first, second]
    assert result.data[0]["entries"] == 2
    assert result.data[0]["latest_entry_at"] == clock.now
