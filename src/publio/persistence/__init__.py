"""Database persistence layer."""

from .db import Database
from .models import (
    Base,
    EquityLog,
    Offer,
    Organization,
    OrganizationMember,
    RunLock,
    SavedSearch,
    Tender,
    TenderCriterion,
    TenderLot,
    User,
    utcnow,
)
from .repo import (
    EquityLogRepository,
    OfferRepository,
    OrganizationRepository,
    SavedSearchRepository,
    TenderRepository,
    UserRepository,
)

__all__ = [
    "Database",
    "Base",
    "EquityLog",
    "Offer",
    "Organization",
    "OrganizationMember",
    "RunLock",
    "SavedSearch",
    "Tender",
    "TenderCriterion",
    "TenderLot",
    "User",
    "utcnow",
    "EquityLogRepository",
    "OfferRepository",
    "OrganizationRepository",
    "SavedSearchRepository",
    "TenderRepository",
    "UserRepository",
]
