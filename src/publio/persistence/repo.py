"""
Repository pattern for database operations.

Provides thin abstractions over the ORM for the marketplace models. Every
lifecycle transition is a guarded UPDATE whose rowcount tells the caller
whether it won the compare-and-set.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.orm import Session, selectinload

from publio.core.config.models import OfferStatus, TenderStatus

from .models import (
    EquityLog,
    Offer,
    Organization,
    OrganizationMember,
    SavedSearch,
    Tender,
    TenderCriterion,
    TenderLot,
    User,
)


# =============================================================================
# User / Organization Repositories
# =============================================================================


class UserRepository:
    """Repository for User operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, user_id: int) -> User | None:
        return self.session.get(User, user_id)

    def get_by_email(self, email: str) -> User | None:
        stmt = select(User).where(User.email == email)
        return self.session.execute(stmt).scalar_one_or_none()

    def create(self, email: str, name: str | None = None) -> User:
        user = User(email=email, name=name)
        self.session.add(user)
        self.session.flush()
        return user


class OrganizationRepository:
    """Repository for Organization and membership operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, organization_id: int) -> Organization | None:
        return self.session.get(Organization, organization_id)

    def get_all(self) -> Sequence[Organization]:
        stmt = select(Organization).order_by(Organization.name)
        return self.session.execute(stmt).scalars().all()

    def create(
        self,
        name: str,
        org_type: str = "ENTREPRISE",
        canton: str | None = None,
        city: str | None = None,
    ) -> Organization:
        organization = Organization(name=name, type=org_type, canton=canton, city=city)
        self.session.add(organization)
        self.session.flush()
        return organization

    def add_member(self, organization_id: int, user_id: int, role: str) -> OrganizationMember:
        member = OrganizationMember(
            organization_id=organization_id,
            user_id=user_id,
            role=role,
        )
        self.session.add(member)
        self.session.flush()
        return member

    def get_memberships(self, user_id: int) -> dict[int, str]:
        """Map of organization id -> role for a user."""
        stmt = select(OrganizationMember.organization_id, OrganizationMember.role).where(
            OrganizationMember.user_id == user_id
        )
        return {org_id: role for org_id, role in self.session.execute(stmt).all()}

    def get_member_users(self, organization_id: int, roles: Sequence[str] | None = None) -> Sequence[User]:
        """Users belonging to an organization, optionally filtered by role."""
        stmt = (
            select(User)
            .join(OrganizationMember, OrganizationMember.user_id == User.id)
            .where(OrganizationMember.organization_id == organization_id)
        )
        if roles:
            stmt = stmt.where(OrganizationMember.role.in_(list(roles)))
        return self.session.execute(stmt.order_by(User.id)).scalars().all()


# =============================================================================
# Tender Repository
# =============================================================================


class TenderRepository:
    """Repository for Tender operations with guarded status transitions."""

    # Fields compared when building the edit diff
    TRACKED_FIELDS = [
        "title",
        "summary",
        "description",
        "visibility",
        "mode",
        "procedure",
        "market_type",
        "budget",
        "currency",
        "canton",
        "city",
        "location",
        "deadline",
    ]

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, tender_id: int) -> Tender | None:
        return self.session.get(Tender, tender_id)

    def get_with_organization(self, tender_id: int) -> Tender | None:
        stmt = (
            select(Tender)
            .where(Tender.id == tender_id)
            .options(
                selectinload(Tender.organization),
                selectinload(Tender.lots),
                selectinload(Tender.criteria),
            )
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def create(
        self,
        organization_id: int,
        data: dict[str, Any],
        lots: Sequence[dict[str, Any]] = (),
        criteria: Sequence[dict[str, Any]] = (),
        created_at: datetime | None = None,
    ) -> Tender:
        tender = Tender(
            organization_id=organization_id,
            status=TenderStatus.DRAFT.value,
            **{k: v for k, v in data.items() if k in self.TRACKED_FIELDS},
        )
        if created_at is not None:
            tender.created_at = created_at
        tender.lots = [TenderLot(**lot) for lot in lots]
        tender.criteria = [TenderCriterion(**criterion) for criterion in criteria]
        self.session.add(tender)
        self.session.flush()
        return tender

    def list_tenders(
        self,
        status: str | None = None,
        organization_id: int | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> Sequence[Tender]:
        """List tenders with filters, newest first."""
        stmt = select(Tender).options(selectinload(Tender.organization))

        conditions = []
        if status is not None:
            conditions.append(Tender.status == status)
        if organization_id is not None:
            conditions.append(Tender.organization_id == organization_id)

        if conditions:
            stmt = stmt.where(and_(*conditions))

        stmt = stmt.order_by(Tender.created_at.desc(), Tender.id.desc())
        stmt = stmt.limit(limit).offset(offset)

        return self.session.execute(stmt).scalars().all()

    def list_past_deadline(self, cutoff: datetime) -> Sequence[Tender]:
        """PUBLISHED tenders whose deadline is at or before ``cutoff``."""
        stmt = (
            select(Tender)
            .where(
                and_(
                    Tender.status == TenderStatus.PUBLISHED.value,
                    Tender.deadline.is_not(None),
                    Tender.deadline <= cutoff,
                )
            )
            .order_by(Tender.deadline.asc(), Tender.id.asc())
        )
        return self.session.execute(stmt).scalars().all()

    def list_published_since(self, since: datetime, inclusive: bool = True) -> Sequence[Tender]:
        """PUBLISHED tenders published after ``since``, newest first.

        With ``inclusive`` a tender published exactly at ``since`` is included.
        """
        lower_bound = Tender.published_at >= since if inclusive else Tender.published_at > since
        stmt = (
            select(Tender)
            .options(selectinload(Tender.organization))
            .where(
                and_(
                    Tender.status == TenderStatus.PUBLISHED.value,
                    lower_bound,
                )
            )
            .order_by(Tender.published_at.desc(), Tender.id.desc())
        )
        return self.session.execute(stmt).scalars().all()

    def transition(
        self,
        tender_id: int,
        expected_status: str,
        values: dict[str, Any],
    ) -> bool:
        """Compare-and-set update guarded on the current status.

        Returns:
            True if this call performed the update
        """
        stmt = (
            update(Tender)
            .where(and_(Tender.id == tender_id, Tender.status == expected_status))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def mark_revealed(self, tender_id: int, revealed_at: datetime) -> bool:
        """Set identity_revealed once. Returns False if it was already set."""
        stmt = (
            update(Tender)
            .where(
                and_(
                    Tender.id == tender_id,
                    Tender.identity_revealed == False,  # noqa: E712
                )
            )
            .values(identity_revealed=True, revealed_at=revealed_at, updated_at=revealed_at)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        return result.rowcount == 1

    def delete_if_status(self, tender_id: int, expected_status: str) -> bool:
        """Delete a tender still in ``expected_status``.

        Lots, criteria, offers and equity log entries go with it through the
        ON DELETE CASCADE foreign keys.
        """
        stmt = (
            delete(Tender)
            .where(and_(Tender.id == tender_id, Tender.status == expected_status))
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def replace_lots(self, tender: Tender, lots: Sequence[dict[str, Any]]) -> None:
        tender.lots = [TenderLot(**lot) for lot in lots]

    def replace_criteria(self, tender: Tender, criteria: Sequence[dict[str, Any]]) -> None:
        tender.criteria = [TenderCriterion(**criterion) for criterion in criteria]

    def compute_diff(
        self,
        existing: Tender,
        patch: dict[str, Any],
    ) -> dict[str, dict[str, Any]]:
        """Compute differences between a tender and a patch.

        Returns:
            Dict of field -> {"old": value, "new": value}
        """
        diff: dict[str, dict[str, Any]] = {}

        for field in self.TRACKED_FIELDS:
            if field not in patch:
                continue
            old_value = getattr(existing, field, None)
            new_value = patch[field]

            if old_value != new_value:
                diff[field] = {"old": old_value, "new": new_value}

        return diff

    def serialize_diff(self, diff: dict[str, dict[str, Any]]) -> dict[str, Any]:
        """Serialize diff for JSON storage."""
        serialized = {}
        for field, values in diff.items():
            serialized[field] = {
                "old": self._serialize_value(values["old"]),
                "new": self._serialize_value(values["new"]),
            }
        return serialized

    def _serialize_value(self, value: Any) -> Any:
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    def refresh(self, tender: Tender) -> Tender:
        self.session.refresh(tender)
        return tender

    def count_by_status(self, organization_id: int | None = None) -> dict[str, int]:
        """Count tenders grouped by status."""
        stmt = select(Tender.status, func.count(Tender.id)).group_by(Tender.status)

        if organization_id is not None:
            stmt = stmt.where(Tender.organization_id == organization_id)

        result = self.session.execute(stmt).all()
        return {status: count for status, count in result}


# =============================================================================
# Offer Repository
# =============================================================================


class OfferRepository:
    """Repository for Offer operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, offer_id: int) -> Offer | None:
        return self.session.get(Offer, offer_id)

    def get_by_tender_and_organization(self, tender_id: int, organization_id: int) -> Offer | None:
        stmt = select(Offer).where(
            and_(
                Offer.tender_id == tender_id,
                Offer.organization_id == organization_id,
            )
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def create(
        self,
        tender_id: int,
        organization_id: int,
        data: dict[str, Any],
        submitted_at: datetime,
    ) -> Offer:
        offer = Offer(
            tender_id=tender_id,
            organization_id=organization_id,
            status=OfferStatus.SUBMITTED.value,
            submitted_at=submitted_at,
            created_at=submitted_at,
            price=data.get("price"),
            currency=data.get("currency") or "CHF",
            description=data.get("description"),
        )
        self.session.add(offer)
        self.session.flush()
        return offer

    def list_for_tender(self, tender_id: int) -> Sequence[Offer]:
        """Offers for a tender, newest submission first."""
        stmt = (
            select(Offer)
            .options(selectinload(Offer.organization))
            .where(Offer.tender_id == tender_id)
            .order_by(Offer.submitted_at.desc(), Offer.id.desc())
        )
        return self.session.execute(stmt).scalars().all()

    def count_for_tender(self, tender_id: int, include_withdrawn: bool = False) -> int:
        stmt = select(func.count(Offer.id)).where(Offer.tender_id == tender_id)
        if not include_withdrawn:
            stmt = stmt.where(Offer.status != OfferStatus.WITHDRAWN.value)
        return int(self.session.execute(stmt).scalar_one())

    @staticmethod
    def _unread_condition():
        return and_(Offer.status == OfferStatus.SUBMITTED.value, Offer.viewed_at.is_(None))

    def count_unread_for_organization(self, organization_id: int) -> int:
        """Submitted offers the issuing organization has not opened yet."""
        stmt = (
            select(func.count(Offer.id))
            .join(Tender, Tender.id == Offer.tender_id)
            .where(and_(Tender.organization_id == organization_id, self._unread_condition()))
        )
        return int(self.session.execute(stmt).scalar_one())

    def unread_by_tender(self, organization_id: int) -> Sequence[Any]:
        """Per-tender offer counts for the organization's tenders that have unread offers.

        Rows carry tender_id, title, status, deadline, created_at,
        total_offers and unread_offers, newest tender first.
        """
        unread = func.count(case((self._unread_condition(), Offer.id)))
        total = func.count(case((Offer.status != OfferStatus.WITHDRAWN.value, Offer.id)))
        stmt = (
            select(
                Tender.id.label("tender_id"),
                Tender.title,
                Tender.status,
                Tender.deadline,
                Tender.created_at,
                total.label("total_offers"),
                unread.label("unread_offers"),
            )
            .join(Offer, Offer.tender_id == Tender.id)
            .where(Tender.organization_id == organization_id)
            .group_by(Tender.id, Tender.title, Tender.status, Tender.deadline, Tender.created_at)
            .having(unread > 0)
            .order_by(Tender.created_at.desc(), Tender.id.desc())
        )
        return self.session.execute(stmt).all()

    def mark_viewed(self, offer_id: int, viewed_at: datetime) -> bool:
        """Set viewed_at only if unset. Returns True if this call set it."""
        stmt = (
            update(Offer)
            .where(and_(Offer.id == offer_id, Offer.viewed_at.is_(None)))
            .values(viewed_at=viewed_at, updated_at=viewed_at)
            .execution_options(synchronize_session=False)
        )
        if not self.session.execute(stmt).rowcount:
            return False

        # Only a fresh submission moves forward; other statuses stay put
        self.session.execute(
            update(Offer)
            .where(and_(Offer.id == offer_id, Offer.status == OfferStatus.SUBMITTED.value))
            .values(status=OfferStatus.VIEWED.value)
            .execution_options(synchronize_session=False)
        )
        return True

    def set_shortlisted(self, offer_id: int, value: bool, now: datetime) -> bool:
        """Flip the shortlisted flag if it currently holds the opposite value."""
        conditions = [Offer.id == offer_id, Offer.shortlisted == (not value)]
        if value:
            conditions.append(Offer.status != OfferStatus.WITHDRAWN.value)

        stmt = (
            update(Offer)
            .where(and_(*conditions))
            .values(shortlisted=value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def withdraw(self, offer_id: int, withdrawn_at: datetime) -> bool:
        stmt = (
            update(Offer)
            .where(
                and_(
                    Offer.id == offer_id,
                    Offer.status != OfferStatus.WITHDRAWN.value,
                )
            )
            .values(
                status=OfferStatus.WITHDRAWN.value,
                shortlisted=False,
                withdrawn_at=withdrawn_at,
                updated_at=withdrawn_at,
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def refresh(self, offer: Offer) -> Offer:
        self.session.refresh(offer)
        return offer


# =============================================================================
# Equity Log Repository
# =============================================================================


class EquityLogRepository:
    """Insert and read equity log rows. There is no update or delete."""

    def __init__(self, session: Session):
        self.session = session

    def add(
        self,
        tender_id: int,
        user_id: int | None,
        action: str,
        description: str,
        details: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> EquityLog:
        entry = EquityLog(
            tender_id=tender_id,
            user_id=user_id,
            action=action,
            description=description,
            details=details,
        )
        if created_at is not None:
            entry.created_at = created_at
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_tender(self, tender_id: int, limit: int | None = None) -> Sequence[EquityLog]:
        """Entries for a tender, newest first."""
        stmt = (
            select(EquityLog)
            .options(selectinload(EquityLog.user))
            .where(EquityLog.tender_id == tender_id)
            .order_by(EquityLog.created_at.desc(), EquityLog.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return self.session.execute(stmt).scalars().all()

    def count_for_tender(self, tender_id: int) -> int:
        stmt = select(func.count(EquityLog.id)).where(EquityLog.tender_id == tender_id)
        return int(self.session.execute(stmt).scalar_one())

    def recent_tenders_with_logs(
        self,
        organization_id: int,
        limit: int = 10,
    ) -> list[tuple[Tender, int, datetime]]:
        """Tenders of an organization that have log entries.

        Returns:
            List of (tender, entry count, latest entry time), latest activity first
        """
        counts = (
            select(
                EquityLog.tender_id.label("tender_id"),
                func.count(EquityLog.id).label("entries"),
                func.max(EquityLog.created_at).label("latest"),
            )
            .group_by(EquityLog.tender_id)
            .subquery()
        )
        stmt = (
            select(Tender, counts.c.entries, counts.c.latest)
            .join(counts, counts.c.tender_id == Tender.id)
            .where(Tender.organization_id == organization_id)
            .order_by(counts.c.latest.desc(), Tender.id.desc())
            .limit(limit)
        )
        return [(tender, int(entries), latest) for tender, entries, latest in self.session.execute(stmt).all()]


# =============================================================================
# Saved Search Repository
# =============================================================================


class SavedSearchRepository:
    """Repository for SavedSearch operations."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, search_id: int) -> SavedSearch | None:
        return self.session.get(SavedSearch, search_id)

    def create(
        self,
        user_id: int,
        name: str,
        criteria: dict[str, Any],
        alerts_enabled: bool = True,
    ) -> SavedSearch:
        search = SavedSearch(
            user_id=user_id,
            name=name,
            criteria=criteria,
            alerts_enabled=alerts_enabled,
        )
        self.session.add(search)
        self.session.flush()
        return search

    def list_for_user(self, user_id: int) -> Sequence[SavedSearch]:
        stmt = (
            select(SavedSearch)
            .where(SavedSearch.user_id == user_id)
            .order_by(SavedSearch.created_at.desc(), SavedSearch.id.desc())
        )
        return self.session.execute(stmt).scalars().all()

    def list_alert_enabled(self) -> Sequence[SavedSearch]:
        stmt = (
            select(SavedSearch)
            .options(selectinload(SavedSearch.user))
            .where(SavedSearch.alerts_enabled == True)  # noqa: E712
            .order_by(SavedSearch.id)
        )
        return self.session.execute(stmt).scalars().all()

    def mark_alert_sent(self, search_id: int, sent_at: datetime) -> None:
        stmt = (
            update(SavedSearch)
            .where(SavedSearch.id == search_id)
            .values(last_alert_sent_at=sent_at)
            .execution_options(synchronize_session=False)
        )
        self.session.execute(stmt)
