from __future__ import annotations

import json
import logging

import pytest
from typer.testing import CliRunner

from publio import __version__
from publio.cli.main import app

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("PUBLIO_CONFIG", raising=False)
    path = tmp_path / "app.yaml"
    path.write_text(
        f"""
data_dir: {tmp_path / 'data'}
database:
  url: sqlite:///{tmp_path / 'data' / 'publio.db'}
logging:
  level: WARNING
  file: null
  rich_console: false
""",
        encoding="utf-8",
    )
    yield path
    logger = logging.getLogger("publio")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def cli(config_file):
    def invoke(*args: str):
        return runner.invoke(app, ["-c", str(config_file), *args])

    return invoke


@pytest.fixture
def marketplace(cli):
    """Initialized database with an issuer (user 1, org 1) and a bidder (user 2, org 2)."""
    assert cli("init").exit_code == 0
    assert cli("orgs", "add-user", "owner@lausanne.ch", "--name", "Olivia Owner").exit_code == 0
    assert cli("orgs", "add-user", "bids@builder.ch").exit_code == 0
    assert cli("orgs", "create", "Commune de Lausanne", "--type", "COMMUNE", "--owner", "1").exit_code == 0
    assert cli("orgs", "create", "Builder SA", "--owner", "2").exit_code == 0
    return cli


def create_tender(cli, *extra: str) -> dict:
    result = cli(
        "tenders", "create",
        "--as", "1",
        "--org", "1",
        "--title", "School roof",
        "--description", "Replace the roof of the Bellevue school",
        "--deadline", "in 30 days",
        "--lot", "Roofing",
        "--criterion", "Price:60",
        "--format", "json",
        *extra,
    )
    assert result.exit_code == 0, result.output
    return json.loads(result.stdout)


def test_version(cli):
    result = cli("--version")

    assert result.exit_code == 0
    assert __version__ in result.stdout


def test_init_creates_schema(cli, tmp_path):
    result = cli("init")

    assert result.exit_code == 0
    assert (tmp_path / "data" / "publio.db").exists()
    assert cli("status").exit_code == 0


def test_org_listing(marketplace):
    result = marketplace("orgs", "list", "--format", "json")

    assert result.exit_code == 0
    names = [org["name"] for org in json.loads(result.stdout)]
    assert names == ["Builder SA", "Commune de Lausanne"]


def test_tender_and_offer_flow(marketplace):
    tender = create_tender(marketplace, "--budget", "250000", "--canton", "VD")
    assert tender["status"] == "DRAFT"
    assert tender["criteria"][0] == {"name": "Price", "description": None, "weight": 60.0, "position": 0}

    published = marketplace("tenders", "publish", str(tender["id"]), "--as", "1", "--format", "json")
    assert published.exit_code == 0
    assert json.loads(published.stdout)["status"] == "PUBLISHED"

    listing = json.loads(marketplace("tenders", "list", "--status", "published", "--format", "json").stdout)
    assert [row["id"] for row in listing] == [tender["id"]]

    offer = marketplace(
        "offers", "submit", str(tender["id"]), "--as", "2", "--org", "2", "--price", "199000", "--format", "json"
    )
    assert offer.exit_code == 0
    assert json.loads(offer.stdout)["submitter"] == "Builder SA"

    log = json.loads(marketplace("tenders", "log", str(tender["id"]), "--as", "1", "--format", "json").stdout)
    assert [entry["action"] for entry in log] == ["OFFER_RECEIVED", "TENDER_PUBLISHED", "TENDER_CREATED"]


def test_failed_operation_exits_with_error(marketplace):
    tender = create_tender(marketplace)

    result = marketplace("tenders", "publish", str(tender["id"]), "--as", "2", "--format", "json")

    assert result.exit_code == 1
    assert json.loads(result.stdout) == {
        "ok": False,
        "error": {"kind": "PermissionError", "message": "Not a member of organization 1"},
    }


def test_reveal_of_classic_tender_is_refused(marketplace):
    tender = create_tender(marketplace)
    marketplace("tenders", "publish", str(tender["id"]), "--as", "1")

    result = marketplace("tenders", "reveal", str(tender["id"]), "--as", "1", "--yes")

    assert result.exit_code == 1


def test_unknown_format_is_rejected(marketplace):
    assert marketplace("tenders", "list", "--format", "xml").exit_code == 1


def test_close_expired_json_report(marketplace):
    result = marketplace("jobs", "close-expired", "--format", "json")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {
        "examined": 0,
        "reminders_sent": 0,
        "awaiting_manual_close": 0,
        "closed": 0,
        "errors": 0,
        "closed_tender_ids": [],
    }


def test_saved_search_and_alerts(marketplace):
    tender = create_tender(marketplace, "--canton", "VD")
    marketplace("tenders", "publish", str(tender["id"]), "--as", "1")

    assert marketplace("searches", "add", "Vaud", "--as", "2", "--canton", "VD").exit_code == 0
    result = marketplace("jobs", "send-alerts", "--format", "json")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"processed": 1, "alerts": 1, "skipped": 0, "errors": 0}


def test_schedule_rejects_unknown_job(marketplace):
    assert marketplace("schedule", "run-now", "compact-db").exit_code != 0


def test_validate_command(cli, tmp_path):
    broken = tmp_path / "broken.yaml"
    broken.write_text("scheduler:\n  alerts_cron: hourly\n", encoding="utf-8")

    assert cli("validate", str(tmp_path / "app.yaml")).exit_code == 0
    assert cli("validate", str(broken)).exit_code == 1


def test_delete_draft_tender(marketplace):
    tender = create_tender(marketplace)

    result = marketplace("tenders", "delete", str(tender["id"]), "--as", "1", "--yes", "--format", "json")

    assert result.exit_code == 0
    assert json.loads(result.stdout) == {"id": tender["id"], "deleted": True}
    assert marketplace("tenders", "show", str(tender["id"])).exit_code == 1


def test_unread_offers_listing(marketplace):
    tender = create_tender(marketplace)
    marketplace("tenders", "publish", str(tender["id"]), "--as", "1")
    marketplace("offers", "submit", str(tender["id"]), "--as", "2", "--org", "2", "--price", "199000")

    result = marketplace("offers", "unread", "--as", "1", "--org", "1", "--format", "json")

    assert result.exit_code == 0
    [row] = json.loads(result.stdout)
    assert (row["tender_id"], row["unread_offers"], row["total_offers"]) == (tender["id"], 1, 1)
