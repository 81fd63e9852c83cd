"""Tender and offer lifecycle controllers with the equity audit trail."""

from .actors import SYSTEM_ACTOR, Actor, ActorResolver, DatabaseActorResolver
from .equity_log import EquityLogEntry, EquityLogStore
from .offers import OfferLifecycle
from .permissions import ALLOWED_ROLES, Permission, has_permission, require_permission
from .schemas import CriterionInput, LotInput, OfferPayload, TenderDraft, TenderPatch
from .tenders import TenderLifecycle

__all__ = [
    "SYSTEM_ACTOR",
    "Actor",
    "ActorResolver",
    "DatabaseActorResolver",
    "EquityLogEntry",
    "EquityLogStore",
    "OfferLifecycle",
    "ALLOWED_ROLES",
    "Permission",
    "has_permission",
    "require_permission",
    "CriterionInput",
    "LotInput",
    "OfferPayload",
    "TenderDraft",
    "TenderPatch",
    "TenderLifecycle",
]
