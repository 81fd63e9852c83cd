"""
Offer lifecycle controller.

Stored offer status only moves forward (SUBMITTED -> VIEWED -> WITHDRAWN).
Shortlisting toggles a separate flag and never touches the stored status
or ``viewed_at``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from publio.core.config.models import (
    EquityLogAction,
    LifecycleConfig,
    OfferStatus,
    TenderStatus,
)
from publio.core.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
)
from publio.core.logging import get_contextual_logger
from publio.persistence.models import Offer, Tender, utcnow
from publio.persistence.repo import OfferRepository, TenderRepository

from .actors import Actor
from .equity_log import EquityLogStore
from .permissions import Permission
from .schemas import OfferPayload, parse_input


class OfferLifecycle:
    """Submission, viewing, shortlisting and withdrawal of offers."""

    def __init__(
        self,
        session: Session,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.config = config or LifecycleConfig()
        self.clock = clock
        self.offers = OfferRepository(session)
        self.tenders = TenderRepository(session)
        self.equity_log = EquityLogStore(session, clock=clock)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, offer_id: int) -> Offer:
        offer = self.offers.get_by_id(offer_id)
        if offer is None:
            raise NotFoundError("Offer", offer_id)
        return offer

    def display_submitter(self, offer: Offer, tender: Tender) -> str:
        """Submitter name, or an anonymized label while the tender hides identities."""
        if tender.is_anonymous and not tender.identity_revealed:
            return self.config.anonymous_bidder_label.format(offer_id=offer.id)
        return offer.organization.name

    def list_for_tender(
        self,
        tender_id: int,
        viewer_org_id: int,
        actor: Actor | None = None,
    ) -> list[tuple[Offer, str]]:
        """Offers of a tender with their display names, newest submission first.

        Only the tender's owning organization may list them.
        """
        tender = self._get_tender(tender_id)
        self._require_owner(tender, viewer_org_id, actor)
        return [(offer, self.display_submitter(offer, tender)) for offer in self.offers.list_for_tender(tender.id)]

    def unread_count(self, organization_id: int, actor: Actor) -> int:
        actor.require(Permission.VIEW_OFFERS, organization_id)
        return self.offers.count_unread_for_organization(organization_id)

    def tenders_with_unread(self, organization_id: int, actor: Actor) -> list[dict[str, Any]]:
        """The organization's tenders that have offers nobody has opened yet."""
        actor.require(Permission.VIEW_OFFERS, organization_id)
        return [
            {
                "tender_id": row.tender_id,
                "title": row.title,
                "status": row.status,
                "deadline": row.deadline,
                "total_offers": row.total_offers,
                "unread_offers": row.unread_offers,
            }
            for row in self.offers.unread_by_tender(organization_id)
        ]

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def submit(
        self,
        tender_id: int,
        organization_id: int,
        payload: OfferPayload | dict[str, Any] | None,
        actor: Actor,
    ) -> Offer:
        tender = self._get_tender(tender_id)
        payload = parse_input(OfferPayload, payload)
        actor.require(Permission.SUBMIT_OFFER, organization_id)

        if tender.organization_id == organization_id:
            raise PermissionDeniedError("An organization cannot submit an offer on its own tender")
        if tender.status != TenderStatus.PUBLISHED.value:
            raise StateError(f"Tender {tender.id} is {tender.status}; offers require a PUBLISHED tender")

        now = self.clock()
        if tender.deadline is not None and now > tender.deadline:
            raise StateError(f"The submission deadline of tender {tender.id} has passed")

        if self.offers.get_by_tender_and_organization(tender.id, organization_id) is not None:
            raise ConflictError(
                f"Organization {organization_id} has already submitted an offer for tender {tender.id}"
            )

        try:
            with self.session.begin_nested():
                offer = self.offers.create(tender.id, organization_id, payload.model_dump(), submitted_at=now)
        except IntegrityError as e:
            raise ConflictError(
                f"Organization {organization_id} has already submitted an offer for tender {tender.id}"
            ) from e

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.OFFER_RECEIVED,
            f"Offer received from {self.display_submitter(offer, tender)}",
            {"offer_id": offer.id, "price": offer.price, "currency": offer.currency},
        )
        self._log(tender.id, actor).info("Offer %s submitted", offer.id)
        return offer

    def mark_viewed(self, offer_id: int, viewer_org_id: int, actor: Actor | None = None) -> Offer:
        """Record the first view by the issuing organization. Later calls are no-ops."""
        offer = self.get(offer_id)
        tender = self._get_tender(offer.tender_id)
        self._require_owner(tender, viewer_org_id, actor)

        if offer.viewed_at is None and self.offers.mark_viewed(offer.id, self.clock()):
            self.offers.refresh(offer)
        return offer

    def shortlist(self, offer_id: int, actor: Actor) -> Offer:
        offer = self.get(offer_id)
        tender = self._get_tender(offer.tender_id)
        actor.require(Permission.SHORTLIST_OFFER, tender.organization_id)

        if tender.status == TenderStatus.DRAFT.value:
            raise StateError(f"Tender {tender.id} is still a draft")
        if offer.status == OfferStatus.WITHDRAWN.value:
            raise StateError(f"Offer {offer.id} has been withdrawn")
        if offer.shortlisted:
            raise StateError(f"Offer {offer.id} is already shortlisted")

        if not self.offers.set_shortlisted(offer.id, True, self.clock()):
            raise StateError(f"Offer {offer.id} was changed concurrently")
        self.offers.refresh(offer)

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.OFFER_SHORTLISTED,
            f"Offer from {self.display_submitter(offer, tender)} shortlisted",
            {"offer_id": offer.id},
        )
        return offer

    def unshortlist(self, offer_id: int, actor: Actor) -> Offer:
        offer = self.get(offer_id)
        tender = self._get_tender(offer.tender_id)
        actor.require(Permission.SHORTLIST_OFFER, tender.organization_id)

        if not offer.shortlisted:
            raise StateError(f"Offer {offer.id} is not shortlisted")

        if not self.offers.set_shortlisted(offer.id, False, self.clock()):
            raise StateError(f"Offer {offer.id} was changed concurrently")
        self.offers.refresh(offer)

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.OFFER_UNSHORTLISTED,
            f"Offer from {self.display_submitter(offer, tender)} removed from shortlist",
            {"offer_id": offer.id},
        )
        return offer

    def withdraw(self, offer_id: int, actor: Actor) -> Offer:
        """Withdraw an offer. The organization keeps its slot and cannot resubmit."""
        offer = self.get(offer_id)
        tender = self._get_tender(offer.tender_id)
        actor.require(Permission.WITHDRAW_OFFER, offer.organization_id)

        if offer.status == OfferStatus.WITHDRAWN.value:
            raise StateError(f"Offer {offer.id} has already been withdrawn")
        if tender.status != TenderStatus.PUBLISHED.value:
            raise StateError(f"Tender {tender.id} is {tender.status}; offers can no longer be withdrawn")

        now = self.clock()
        if tender.deadline is not None and now > tender.deadline:
            raise StateError(f"The submission deadline of tender {tender.id} has passed")

        if not self.offers.withdraw(offer.id, now):
            raise StateError(f"Offer {offer.id} has already been withdrawn")
        self.offers.refresh(offer)

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.OFFER_WITHDRAWN,
            f"Offer from {self.display_submitter(offer, tender)} withdrawn",
            {"offer_id": offer.id},
        )
        self._log(tender.id, actor).info("Offer %s withdrawn", offer.id)
        return offer

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _get_tender(self, tender_id: int) -> Tender:
        tender = self.tenders.get_with_organization(tender_id)
        if tender is None:
            raise NotFoundError("Tender", tender_id)
        return tender

    def _require_owner(self, tender: Tender, viewer_org_id: int, actor: Actor | None) -> None:
        if tender.organization_id != viewer_org_id:
            raise PermissionDeniedError(
                f"Only the issuing organization can view offers of tender {tender.id}"
            )
        if actor is not None:
            actor.require(Permission.VIEW_OFFERS, viewer_org_id)

    def _log(self, tender_id: int, actor: Actor):
        return get_contextual_logger("lifecycle.offers", tender_id=tender_id, actor=actor.label)
