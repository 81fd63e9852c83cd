"""
Marketplace service: the entry point used by request handlers and the CLI.

Each call runs in its own transaction. Domain errors roll the transaction
back and come back as ``OperationResult(ok=False, error={kind, message})``;
nothing is partially applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from publio.core.config.models import CloseReason, LifecycleConfig
from publio.core.errors import ConflictError, LifecycleError, StateError
from publio.core.lifecycle import (
    SYSTEM_ACTOR,
    Actor,
    ActorResolver,
    DatabaseActorResolver,
    EquityLogStore,
    OfferLifecycle,
    Permission,
    TenderLifecycle,
)
from publio.core.logging import get_logger
from publio.core.search import SavedSearchCriteria, matches_saved_search_criteria
from publio.persistence.db import Database, is_lock_contention
from publio.persistence.models import Offer, Tender, utcnow

logger = get_logger("service")


@dataclass
class OperationResult:
    """Success payload or structured error of one service call."""

    ok: bool
    data: Any = None
    error: dict[str, str] | None = None

    @classmethod
    def success(cls, data: Any = None) -> "OperationResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: LifecycleError) -> "OperationResult":
        return cls(ok=False, error=error.to_dict())

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, "data": self.data}
        return {"ok": False, "error": self.error}


# =============================================================================
# Serialization
# =============================================================================


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def tender_to_dict(tender: Tender, issuer: str) -> dict[str, Any]:
    return {
        "id": tender.id,
        "title": tender.title,
        "summary": tender.summary,
        "description": tender.description,
        "status": tender.status,
        "visibility": tender.visibility,
        "mode": tender.mode,
        "procedure": tender.procedure,
        "market_type": tender.market_type,
        "budget": tender.budget,
        "currency": tender.currency,
        "canton": tender.canton,
        "city": tender.city,
        "location": tender.location,
        "deadline": _iso(tender.deadline),
        "organization_id": tender.organization_id,
        "issuer": issuer,
        "identity_revealed": tender.identity_revealed,
        "revealed_at": _iso(tender.revealed_at),
        "published_at": _iso(tender.published_at),
        "closed_at": _iso(tender.closed_at),
        "closed_reason": tender.closed_reason,
        "created_at": _iso(tender.created_at),
        "updated_at": _iso(tender.updated_at),
        "lots": [
            {"number": lot.number, "title": lot.title, "description": lot.description, "budget": lot.budget}
            for lot in tender.lots
        ],
        "criteria": [
            {"name": c.name, "description": c.description, "weight": c.weight, "position": c.position}
            for c in tender.criteria
        ],
    }


def offer_to_dict(offer: Offer, submitter: str) -> dict[str, Any]:
    return {
        "id": offer.id,
        "tender_id": offer.tender_id,
        "submitter": submitter,
        "status": offer.effective_status.value,
        "stored_status": offer.status,
        "shortlisted": offer.shortlisted,
        "viewed_at": _iso(offer.viewed_at),
        "price": offer.price,
        "currency": offer.currency,
        "description": offer.description,
        "submitted_at": _iso(offer.submitted_at),
        "withdrawn_at": _iso(offer.withdrawn_at),
    }


# =============================================================================
# Service
# =============================================================================


class MarketplaceService:
    """Tender, offer and equity log operations with structured results."""

    def __init__(
        self,
        db: Database,
        resolver: ActorResolver | None = None,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.resolver = resolver or DatabaseActorResolver()
        self.config = config or LifecycleConfig()
        self.clock = clock

    def _run(
        self,
        operation: str,
        user_id: int | None,
        fn: Callable[[Session, Actor], Any],
    ) -> OperationResult:
        try:
            with self.db.session() as session:
                actor = self.resolver.resolve(session, user_id) if user_id is not None else SYSTEM_ACTOR
                data = fn(session, actor)
        except LifecycleError as e:
            logger.info("%s rejected (%s): %s", operation, e.kind, e.message)
            return OperationResult.failure(e)
        except IntegrityError as e:
            logger.info("%s rejected by a uniqueness constraint: %s", operation, e.orig)
            return OperationResult.failure(ConflictError("The record conflicts with an existing one"))
        except OperationalError as e:
            if not is_lock_contention(e):
                raise
            logger.warning("%s lost to a concurrent write: %s", operation, e.orig)
            return OperationResult.failure(StateError("The record was changed concurrently, retry the operation"))
        return OperationResult.success(data)

    def _tenders(self, session: Session) -> TenderLifecycle:
        return TenderLifecycle(session, config=self.config, clock=self.clock)

    def _offers(self, session: Session) -> OfferLifecycle:
        return OfferLifecycle(session, config=self.config, clock=self.clock)

    def _tender_payload(self, lifecycle: TenderLifecycle, tender: Tender) -> dict[str, Any]:
        return tender_to_dict(tender, lifecycle.display_issuer(tender))

    def _offer_payload(self, lifecycle: OfferLifecycle, offer: Offer) -> dict[str, Any]:
        tender = lifecycle.tenders.get_with_organization(offer.tender_id)
        return offer_to_dict(offer, lifecycle.display_submitter(offer, tender))

    # -------------------------------------------------------------------------
    # Tenders
    # -------------------------------------------------------------------------

    def create_tender(self, user_id: int, draft: Mapping[str, Any]) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._tenders(session)
            return self._tender_payload(lifecycle, lifecycle.create(dict(draft), actor))

        return self._run("create_tender", user_id, op)

    def edit_tender(self, user_id: int, tender_id: int, patch: Mapping[str, Any]) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._tenders(session)
            return self._tender_payload(lifecycle, lifecycle.edit(tender_id, dict(patch), actor))

        return self._run("edit_tender", user_id, op)

    def delete_draft_tender(self, user_id: int, tender_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            return {"id": self._tenders(session).delete_draft(tender_id, actor), "deleted": True}

        return self._run("delete_draft_tender", user_id, op)

    def publish_tender(self, user_id: int, tender_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._tenders(session)
            return self._tender_payload(lifecycle, lifecycle.publish(tender_id, actor))

        return self._run("publish_tender", user_id, op)

    def close_tender(self, user_id: int, tender_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._tenders(session)
            return self._tender_payload(lifecycle, lifecycle.close(tender_id, actor, CloseReason.MANUAL))

        return self._run("close_tender", user_id, op)

    def reveal_identity(self, user_id: int, tender_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._tenders(session)
            return self._tender_payload(lifecycle, lifecycle.reveal_identity(tender_id, actor))

        return self._run("reveal_identity", user_id, op)

    def get_tender(self, tender_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._tenders(session)
            return self._tender_payload(lifecycle, lifecycle.get(tender_id))

        return self._run("get_tender", None, op)

    # -------------------------------------------------------------------------
    # Offers
    # -------------------------------------------------------------------------

    def submit_offer(
        self,
        user_id: int,
        tender_id: int,
        organization_id: int,
        payload: Mapping[str, Any] | None = None,
    ) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._offers(session)
            offer = lifecycle.submit(tender_id, organization_id, dict(payload or {}), actor)
            return self._offer_payload(lifecycle, offer)

        return self._run("submit_offer", user_id, op)

    def mark_offer_viewed(self, user_id: int, offer_id: int, viewer_org_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._offers(session)
            return self._offer_payload(lifecycle, lifecycle.mark_viewed(offer_id, viewer_org_id, actor))

        return self._run("mark_offer_viewed", user_id, op)

    def shortlist_offer(self, user_id: int, offer_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._offers(session)
            return self._offer_payload(lifecycle, lifecycle.shortlist(offer_id, actor))

        return self._run("shortlist_offer", user_id, op)

    def unshortlist_offer(self, user_id: int, offer_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._offers(session)
            return self._offer_payload(lifecycle, lifecycle.unshortlist(offer_id, actor))

        return self._run("unshortlist_offer", user_id, op)

    def withdraw_offer(self, user_id: int, offer_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._offers(session)
            return self._offer_payload(lifecycle, lifecycle.withdraw(offer_id, actor))

        return self._run("withdraw_offer", user_id, op)

    def list_offers(self, user_id: int, tender_id: int, viewer_org_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            lifecycle = self._offers(session)
            return [
                offer_to_dict(offer, submitter)
                for offer, submitter in lifecycle.list_for_tender(tender_id, viewer_org_id, actor)
            ]

        return self._run("list_offers", user_id, op)

    def unread_offers_count(self, user_id: int, organization_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            return self._offers(session).unread_count(organization_id, actor)

        return self._run("unread_offers_count", user_id, op)

    def tenders_with_unread_offers(self, user_id: int, organization_id: int) -> OperationResult:
        def op(session: Session, actor: Actor):
            rows = self._offers(session).tenders_with_unread(organization_id, actor)
            return [{**row, "deadline": _iso(row["deadline"])} for row in rows]

        return self._run("tenders_with_unread_offers", user_id, op)

    # -------------------------------------------------------------------------
    # Equity log
    # -------------------------------------------------------------------------

    def get_equity_logs(self, tender_id: int, user_id: int | None = None) -> OperationResult:
        """Entries for a tender, newest first.

        With a ``user_id``, the user must belong to the issuing organization.
        """

        def op(session: Session, actor: Actor):
            tender = self._tenders(session).get(tender_id)
            if not actor.is_system:
                actor.require(Permission.VIEW_EQUITY_LOG, tender.organization_id)
            return [entry.to_dict() for entry in EquityLogStore(session).query(tender.id)]

        return self._run("get_equity_logs", user_id, op)

    def recent_tenders_with_logs(self, user_id: int, organization_id: int, limit: int = 10) -> OperationResult:
        def op(session: Session, actor: Actor):
            actor.require(Permission.VIEW_EQUITY_LOG, organization_id)
            return EquityLogStore(session).recent_tenders_with_logs(organization_id, limit)

        return self._run("recent_tenders_with_logs", user_id, op)

    # -------------------------------------------------------------------------
    # Saved searches
    # -------------------------------------------------------------------------

    @staticmethod
    def matches_saved_search_criteria(
        tender: Any,
        criteria: SavedSearchCriteria | Mapping[str, Any] | None,
    ) -> bool:
        return matches_saved_search_criteria(tender, criteria)
