"""
Saved-search matching.

``matches_saved_search_criteria`` is a pure predicate: every criterion that
is present must hold, absent criteria impose no constraint. It runs once per
(saved search, candidate tender) pair on every alert sweep, so it must stay
free of side effects.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from publio.core.errors import ValidationError


class SavedSearchCriteria(BaseModel):
    """Optional filters of a saved search.

    Accepts both snake_case and camelCase keys; unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    search: str | None = None
    canton: str | None = None
    city: str | None = None
    market_type: str | None = Field(
        default=None, validation_alias=AliasChoices("market_type", "marketType")
    )
    budget_min: float | None = Field(
        default=None, validation_alias=AliasChoices("budget_min", "budgetMin")
    )
    budget_max: float | None = Field(
        default=None, validation_alias=AliasChoices("budget_max", "budgetMax")
    )
    mode: str | None = None
    organization_type: str | None = Field(
        default=None, validation_alias=AliasChoices("organization_type", "organizationType")
    )

    @field_validator("search", "canton", "city", "market_type", "mode", "organization_type", mode="before")
    @classmethod
    def blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            v = v.value
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("budget_min", "budget_max", mode="before")
    @classmethod
    def blank_budget_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)

    def to_storage(self) -> dict[str, Any]:
        """Compact mapping for the saved_searches.criteria column."""
        return self.model_dump(exclude_none=True)


def parse_criteria(criteria: SavedSearchCriteria | Mapping[str, Any] | None) -> SavedSearchCriteria:
    if isinstance(criteria, SavedSearchCriteria):
        return criteria
    try:
        return SavedSearchCriteria.model_validate(dict(criteria or {}))
    except PydanticValidationError as e:
        errors = [f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise ValidationError(f"Invalid search criteria: {'; '.join(errors)}", errors=errors) from e


def _get(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _text(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _organization_type(tender: Any) -> Any:
    organization = _get(tender, "organization")
    if organization is not None:
        return _text(_get(organization, "type"))
    return _text(_get(tender, "organization_type"))


def matches_saved_search_criteria(
    tender: Any,
    criteria: SavedSearchCriteria | Mapping[str, Any] | None,
) -> bool:
    """Whether ``tender`` satisfies every present criterion.

    ``tender`` is a Tender model or any object/mapping exposing the same
    attribute names (``organization.type`` or ``organization_type`` for the
    issuer type).
    """
    c = parse_criteria(criteria)

    if c.search is not None:
        needle = c.search.lower()
        title = (_get(tender, "title") or "").lower()
        description = (_get(tender, "description") or "").lower()
        if needle not in title and needle not in description:
            return False

    if c.canton is not None and _get(tender, "canton") != c.canton:
        return False

    if c.city is not None and _get(tender, "city") != c.city:
        return False

    if c.market_type is not None and _text(_get(tender, "market_type")) != c.market_type:
        return False

    budget = _get(tender, "budget")
    if c.budget_min is not None and (budget is None or budget < c.budget_min):
        return False
    if c.budget_max is not None and (budget is None or budget > c.budget_max):
        return False

    if c.mode is not None and _text(_get(tender, "mode")) != c.mode:
        return False

    if c.organization_type is not None and _organization_type(tender) != c.organization_type:
        return False

    return True
