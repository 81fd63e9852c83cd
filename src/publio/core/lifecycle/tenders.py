"""
Tender lifecycle controller.

States move DRAFT -> PUBLISHED -> CLOSED and never back. Every transition
is a compare-and-set UPDATE guarded on the status read beforehand, so a
concurrent writer that loses the race gets a StateError instead of
overwriting the winner. Each successful transition appends exactly one
equity log entry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from publio.core.config.models import (
    CloseReason,
    EquityLogAction,
    LifecycleConfig,
    TenderStatus,
)
from publio.core.errors import NotFoundError, StateError, ValidationError
from publio.core.logging import get_contextual_logger
from publio.persistence.models import Tender, utcnow
from publio.persistence.repo import OfferRepository, OrganizationRepository, TenderRepository

from .actors import Actor
from .equity_log import EquityLogStore
from .permissions import Permission
from .schemas import TenderDraft, TenderPatch, parse_input


class TenderLifecycle:
    """Owns tender status, anonymity and identity reveal transitions."""

    def __init__(
        self,
        session: Session,
        config: LifecycleConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session = session
        self.config = config or LifecycleConfig()
        self.clock = clock
        self.tenders = TenderRepository(session)
        self.offers = OfferRepository(session)
        self.equity_log = EquityLogStore(session, clock=clock)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, tender_id: int) -> Tender:
        tender = self.tenders.get_with_organization(tender_id)
        if tender is None:
            raise NotFoundError("Tender", tender_id)
        return tender

    def display_issuer(self, tender: Tender) -> str:
        """Issuer name, or the anonymous label until identity is revealed."""
        if tender.is_anonymous and not tender.identity_revealed:
            return self.config.anonymous_issuer_label
        return tender.organization.name

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    def create(self, draft: TenderDraft | dict[str, Any], actor: Actor) -> Tender:
        draft = parse_input(TenderDraft, draft)

        if OrganizationRepository(self.session).get_by_id(draft.organization_id) is None:
            raise ValidationError(f"Unknown organization {draft.organization_id}")
        actor.require(Permission.CREATE_TENDER, draft.organization_id)

        tender = self.tenders.create(
            draft.organization_id,
            draft.columns(),
            lots=[lot.model_dump() for lot in draft.lots],
            criteria=[criterion.model_dump() for criterion in draft.criteria],
            created_at=self.clock(),
        )

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.TENDER_CREATED,
            f'Tender created: "{tender.title}"',
            {
                "market_type": tender.market_type,
                "visibility": tender.visibility,
                "mode": tender.mode,
            },
        )
        self._log(tender.id, actor).info("Created draft tender %r", tender.title)
        return self.get(tender.id)

    def edit(self, tender_id: int, patch: TenderPatch | dict[str, Any], actor: Actor) -> Tender:
        tender = self.get(tender_id)
        actor.require(Permission.EDIT_TENDER, tender.organization_id)
        self._require_status(tender, TenderStatus.DRAFT, "edited")

        patch = parse_input(TenderPatch, patch)
        columns = patch.columns()
        lots = patch.lots if "lots" in patch.model_fields_set else None
        criteria = patch.criteria if "criteria" in patch.model_fields_set else None

        remaining_lots = lots if lots is not None else tender.lots
        remaining_criteria = criteria if criteria is not None else tender.criteria
        if not remaining_lots and not remaining_criteria:
            raise ValidationError("at least one lot or evaluation criterion is required")

        diff = self.tenders.compute_diff(tender, columns)
        if not diff and lots is None and criteria is None:
            return tender

        now = self.clock()
        changed = {field: values["new"] for field, values in diff.items()}
        if not self.tenders.transition(tender.id, TenderStatus.DRAFT.value, {**changed, "updated_at": now}):
            raise StateError(f"Tender {tender.id} is no longer a draft")

        if lots is not None:
            self.tenders.replace_lots(tender, [lot.model_dump() for lot in lots])
        if criteria is not None:
            self.tenders.replace_criteria(tender, [criterion.model_dump() for criterion in criteria])
        self.session.flush()
        self.tenders.refresh(tender)

        fields = sorted(diff) + [name for name, value in (("lots", lots), ("criteria", criteria)) if value is not None]
        details: dict[str, Any] = {"fields": fields, "changes": self.tenders.serialize_diff(diff)}
        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.TENDER_UPDATED,
            f"Tender updated: {', '.join(fields)}",
            details,
        )
        self._log(tender.id, actor).info("Edited tender fields: %s", ", ".join(fields))
        return tender

    def delete_draft(self, tender_id: int, actor: Actor) -> int:
        """Delete a DRAFT tender with its lots, criteria and log. Returns the deleted id."""
        tender = self.get(tender_id)
        actor.require(Permission.EDIT_TENDER, tender.organization_id)
        self._require_status(tender, TenderStatus.DRAFT, "deleted")

        if not self.tenders.delete_if_status(tender.id, TenderStatus.DRAFT.value):
            raise StateError(f"Tender {tender.id} was changed concurrently and is no longer a draft")
        self.session.expunge(tender)

        self._log(tender_id, actor).info("Deleted draft tender %r", tender.title)
        return tender_id

    def publish(self, tender_id: int, actor: Actor) -> Tender:
        tender = self.get(tender_id)
        actor.require(Permission.PUBLISH_TENDER, tender.organization_id)
        self._require_status(tender, TenderStatus.DRAFT, "published")

        now = self.clock()
        published = self.tenders.transition(
            tender.id,
            TenderStatus.DRAFT.value,
            {"status": TenderStatus.PUBLISHED.value, "published_at": now, "updated_at": now},
        )
        if not published:
            raise StateError(f"Tender {tender.id} was changed concurrently and is no longer a draft")
        self.tenders.refresh(tender)

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.TENDER_PUBLISHED,
            f'Tender published: "{tender.title}"',
            {
                "published_at": now.isoformat(),
                "deadline": tender.deadline.isoformat() if tender.deadline else None,
            },
        )
        self._log(tender.id, actor).info("Published tender")
        return tender

    def close(
        self,
        tender_id: int,
        actor: Actor,
        reason: CloseReason = CloseReason.MANUAL,
    ) -> Tender:
        """Close a published tender. Closing a closed tender is a no-op.

        An anonymous tender whose identity is still hidden is revealed as
        part of closing.
        """
        tender = self.get(tender_id)
        if not actor.is_system:
            actor.require(Permission.CLOSE_TENDER, tender.organization_id)

        if tender.status == TenderStatus.CLOSED.value:
            return tender
        self._require_status(tender, TenderStatus.PUBLISHED, "closed")

        now = self.clock()
        reveal = tender.is_anonymous and not tender.identity_revealed
        values: dict[str, Any] = {
            "status": TenderStatus.CLOSED.value,
            "closed_at": now,
            "closed_reason": CloseReason(reason).value,
            "updated_at": now,
        }
        if reveal:
            values.update(identity_revealed=True, revealed_at=now)

        if not self.tenders.transition(tender.id, TenderStatus.PUBLISHED.value, values):
            self.tenders.refresh(tender)
            if tender.status == TenderStatus.CLOSED.value:
                return tender
            raise StateError(f"Tender {tender.id} was changed concurrently")
        self.tenders.refresh(tender)

        offers_count = self.offers.count_for_tender(tender.id)
        if reason == CloseReason.EXPIRY:
            description = f"Tender closed automatically after its deadline with {offers_count} offer(s) received"
        else:
            description = f"Tender closed with {offers_count} offer(s) received"

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.TENDER_CLOSED,
            description,
            {
                "reason": CloseReason(reason).value,
                "offers_count": offers_count,
                "identity_revealed": tender.identity_revealed,
            },
        )
        self._log(tender.id, actor).info("Closed tender (%s)", CloseReason(reason).value)
        return tender

    def reveal_identity(self, tender_id: int, actor: Actor) -> Tender:
        """Irreversibly disclose the issuer of an anonymous tender."""
        tender = self.get(tender_id)
        actor.require(Permission.REVEAL_IDENTITY, tender.organization_id)

        if not tender.is_anonymous:
            raise StateError(f"Tender {tender.id} is not anonymous")
        if tender.identity_revealed:
            raise StateError(f"Identity of tender {tender.id} has already been revealed")
        if tender.status == TenderStatus.DRAFT.value:
            raise StateError(f"Tender {tender.id} must be published before its identity can be revealed")

        now = self.clock()
        if self.config.reveal_requires_deadline_passed and (
            tender.deadline is None or now < tender.deadline
        ):
            raise StateError("Identity can only be revealed after the tender deadline")

        if not self.tenders.mark_revealed(tender.id, now):
            raise StateError(f"Identity of tender {tender.id} has already been revealed")
        self.tenders.refresh(tender)

        self.equity_log.append(
            tender.id,
            actor,
            EquityLogAction.IDENTITY_REVEALED,
            f"Issuer identity revealed: {tender.organization.name}",
            {"revealed_at": now.isoformat()},
        )
        self._log(tender.id, actor).info("Revealed issuer identity")
        return tender

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _require_status(self, tender: Tender, expected: TenderStatus, verb: str) -> None:
        if tender.status != expected.value:
            raise StateError(
                f"Tender {tender.id} is {tender.status}; only {expected.value} tenders can be {verb}"
            )

    def _log(self, tender_id: int, actor: Actor):
        return get_contextual_logger("lifecycle.tenders", tender_id=tender_id, actor=actor.label)
