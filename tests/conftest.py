from __future__ import annotations

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from publio.core.config.models import LifecycleConfig, OrganizationRole, OrganizationType
from publio.core.service import MarketplaceService
from publio.persistence.db import Database
from publio.persistence.repo import OrganizationRepository, UserRepository

START = datetime(2025, 3, 3, 9, 0, 0)


class FakeClock:
    """Deterministic naive-UTC clock that tests move forward by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'publio.db'}")
    database.create_all()
    yield database
    database.dispose()


@pytest.fixture
def world(db):
    """Two issuers and two bidders with members in every role.

    - commune (COMMUNE, VD/Lausanne): owner, admin, editor, viewer
    - builder (ENTREPRISE, GE/Geneva): bidder
    - studio (PRIVE, VD/Morges): bidder2
    - outsider: no memberships
    """
    with db.session() as session:
        users = UserRepository(session)
        orgs = OrganizationRepository(session)

        owner = users.create("owner@lausanne.ch", name="Olivia Owner")
        admin = users.create("admin@lausanne.ch", name="Adrian Admin")
        editor = users.create("editor@lausanne.ch", name="Eda Editor")
        viewer = users.create("viewer@lausanne.ch", name="Vic Viewer")
        bidder = users.create("bids@builder.ch", name="Bea Bidder")
        bidder2 = users.create("hello@studio.ch", name="Sam Studio")
        outsider = users.create("someone@example.com", name="Otto Outsider")

        commune = orgs.create("Commune de Lausanne", OrganizationType.COMMUNE.value, canton="VD", city="Lausanne")
        builder = orgs.create("Builder SA", OrganizationType.ENTREPRISE.value, canton="GE", city="Geneva")
        studio = orgs.create("Studio Morges", OrganizationType.PRIVE.value, canton="VD", city="Morges")

        orgs.add_member(commune.id, owner.id, OrganizationRole.OWNER.value)
        orgs.add_member(commune.id, admin.id, OrganizationRole.ADMIN.value)
        orgs.add_member(commune.id, editor.id, OrganizationRole.EDITOR.value)
        orgs.add_member(commune.id, viewer.id, OrganizationRole.VIEWER.value)
        orgs.add_member(builder.id, bidder.id, OrganizationRole.OWNER.value)
        orgs.add_member(studio.id, bidder2.id, OrganizationRole.OWNER.value)

        return SimpleNamespace(
            owner=owner.id,
            admin=admin.id,
            editor=editor.id,
            viewer=viewer.id,
            bidder=bidder.id,
            bidder2=bidder2.id,
            outsider=outsider.id,
            commune=commune.id,
            builder=builder.id,
            studio=studio.id,
        )


@pytest.fixture
def service(db, clock) -> MarketplaceService:
    return MarketplaceService(db, config=LifecycleConfig(), clock=clock)


@pytest.fixture
def draft_data(world, clock):
    def make(**overrides):
        data = {
            "organization_id": world.commune,
            "title": "Renovation of the Bellevue school roof",
            "description": "Full replacement of the roof covering and insulation.",
            "market_type": "CONSTRUCTION",
            "budget": 250_000,
            "canton": "VD",
            "city": "Lausanne",
            "deadline": clock.now + timedelta(days=14),
            "lots": [{"number": 1, "title": "Roofing"}],
            "criteria": [{"name": "Price", "weight": 60}, {"name": "Quality", "weight": 40, "position": 1}],
        }
        data.update(overrides)
        return data

    return make


@pytest.fixture
def published_tender(service, world, draft_data):
    """Factory creating and publishing a tender, returning its id."""

    def make(**overrides):
        created = service.create_tender(world.owner, draft_data(**overrides))
        assert created.ok, created.error
        published = service.publish_tender(world.owner, created.data["id"])
        assert published.ok, published.error
        return created.data["id"]

    return make
