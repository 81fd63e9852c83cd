"""
SQLAlchemy ORM models for Publio.

Defines the complete database schema including:
- Users, Organizations and memberships
- Tenders with their lots and evaluation criteria
- Offers submitted against tenders
- EquityLogs: append-only audit trail per tender
- SavedSearches: alert criteria per user
- RunLocks: overlap protection for batch jobs
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from publio.core.config.models import (
    OfferStatus,
    TenderMode,
    TenderProcedure,
    TenderStatus,
    TenderVisibility,
)


def utcnow() -> datetime:
    """Current time as naive UTC, the convention for every timestamp column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Base Class
# =============================================================================


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        dict[str, Any]: JSON,
    }


# =============================================================================
# Mixins
# =============================================================================


class TimestampMixin:
    """Mixin providing created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime,
        default=None,
        onupdate=utcnow,
        nullable=True,
    )


# =============================================================================
# Users and Organizations
# =============================================================================


class User(Base, TimestampMixin):
    """A person acting on the marketplace."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False, index=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    memberships: Mapped[list["OrganizationMember"]] = relationship(
        "OrganizationMember",
        back_populates="user",
        cascade="all, delete-orphan",
    )
    saved_searches: Mapped[list["SavedSearch"]] = relationship(
        "SavedSearch",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}')>"


class Organization(Base, TimestampMixin):
    """An organization issuing tenders or submitting offers."""

    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="ENTREPRISE")
    canton: Mapped[str | None] = mapped_column(String(10), nullable=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)

    members: Mapped[list["OrganizationMember"]] = relationship(
        "OrganizationMember",
        back_populates="organization",
        cascade="all, delete-orphan",
    )
    tenders: Mapped[list["Tender"]] = relationship(
        "Tender",
        back_populates="organization",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name='{self.name}')>"


class OrganizationMember(Base):
    """Membership of a user in an organization, with a role."""

    __tablename__ = "organization_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="VIEWER")
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    organization: Mapped["Organization"] = relationship("Organization", back_populates="members")
    user: Mapped["User"] = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_member_org_user"),
    )

    def __repr__(self) -> str:
        return f"<OrganizationMember(org={self.organization_id}, user={self.user_id}, role='{self.role}')>"


# =============================================================================
# Tender Model
# =============================================================================


class Tender(Base, TimestampMixin):
    """A procurement call accepting offers."""

    __tablename__ = "tenders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    organization_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Core fields
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=TenderStatus.DRAFT.value,
        index=True,
    )
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TenderVisibility.PUBLIC.value
    )
    mode: Mapped[str] = mapped_column(String(20), nullable=False, default=TenderMode.CLASSIC.value)
    procedure: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TenderProcedure.OPEN.value
    )
    market_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Value
    budget: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CHF")

    # Location
    canton: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)
    city: Mapped[str | None] = mapped_column(String(200), nullable=True)
    location: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Dates
    deadline: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    published_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    closed_reason: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Anonymity
    identity_revealed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    revealed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Relationships
    organization: Mapped["Organization"] = relationship("Organization", back_populates="tenders")
    lots: Mapped[list["TenderLot"]] = relationship(
        "TenderLot",
        back_populates="tender",
        cascade="all, delete-orphan",
        order_by="TenderLot.number",
    )
    criteria: Mapped[list["TenderCriterion"]] = relationship(
        "TenderCriterion",
        back_populates="tender",
        cascade="all, delete-orphan",
        order_by="TenderCriterion.position",
    )
    offers: Mapped[list["Offer"]] = relationship(
        "Offer",
        back_populates="tender",
        cascade="all, delete-orphan",
    )
    equity_logs: Mapped[list["EquityLog"]] = relationship(
        "EquityLog",
        back_populates="tender",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_tender_status_deadline", "status", "deadline"),
        Index("ix_tender_status_published", "status", "published_at"),
    )

    @property
    def is_anonymous(self) -> bool:
        return self.mode == TenderMode.ANONYMOUS.value

    def __repr__(self) -> str:
        return f"<Tender(id={self.id}, status='{self.status}', title='{self.title[:50] if self.title else ''}')>"


class TenderLot(Base):
    """A lot inside a tender."""

    __tablename__ = "tender_lots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    budget: Mapped[float | None] = mapped_column(Float, nullable=True)

    tender: Mapped["Tender"] = relationship("Tender", back_populates="lots")


class TenderCriterion(Base):
    """An evaluation criterion of a tender."""

    __tablename__ = "tender_criteria"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    tender: Mapped["Tender"] = relationship("Tender", back_populates="criteria")


# =============================================================================
# Offer Model
# =============================================================================


class Offer(Base, TimestampMixin):
    """A bid submitted by an organization against a tender."""

    __tablename__ = "offers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    organization_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OfferStatus.SUBMITTED.value,
        index=True,
    )
    shortlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    viewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    price: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="CHF")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    withdrawn_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    tender: Mapped["Tender"] = relationship("Tender", back_populates="offers")
    organization: Mapped["Organization"] = relationship("Organization")

    __table_args__ = (
        UniqueConstraint("tender_id", "organization_id", name="uq_offer_tender_organization"),
    )

    @property
    def effective_status(self) -> OfferStatus:
        """Status as shown to users: SHORTLISTED while the flag is set."""
        if self.shortlisted and self.status != OfferStatus.WITHDRAWN.value:
            return OfferStatus.SHORTLISTED
        return OfferStatus(self.status)

    def __repr__(self) -> str:
        return f"<Offer(id={self.id}, tender_id={self.tender_id}, status='{self.status}')>"


# =============================================================================
# Equity Log Model
# =============================================================================


class EquityLog(Base):
    """Immutable audit record of a tender-related action.

    ``user_id`` is NULL for entries written by the system actor
    (e.g. the expiry sweep).
    """

    __tablename__ = "equity_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tender_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tenders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(1000), nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
        index=True,
    )

    tender: Mapped["Tender"] = relationship("Tender", back_populates="equity_logs")
    user: Mapped["User | None"] = relationship("User")

    __table_args__ = (
        Index("ix_equity_log_tender_created", "tender_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EquityLog(id={self.id}, action='{self.action}', tender_id={self.tender_id})>"


# =============================================================================
# Saved Search Model
# =============================================================================


class SavedSearch(Base, TimestampMixin):
    """Persisted search criteria used for tender alerts."""

    __tablename__ = "saved_searches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    criteria: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    alerts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_alert_sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="saved_searches")

    def __repr__(self) -> str:
        return f"<SavedSearch(id={self.id}, name='{self.name}', alerts={self.alerts_enabled})>"


# =============================================================================
# Lock Model (for overlap protection)
# =============================================================================


class RunLock(Base):
    """Distributed lock for preventing overlapping batch runs."""

    __tablename__ = "run_locks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lock_name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=utcnow,
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    holder_id: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<RunLock(name='{self.lock_name}', holder='{self.holder_id}')>"
