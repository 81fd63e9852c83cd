"""
Input models for lifecycle operations.

Validated with pydantic before anything touches the database; failures
surface as ``publio.core.errors.ValidationError``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from publio.core.config.models import (
    MarketType,
    TenderMode,
    TenderProcedure,
    TenderVisibility,
)
from publio.core.errors import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def _naive_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _not_blank(value: str | None, field_name: str) -> str | None:
    if value is not None and not value.strip():
        raise ValueError(f"{field_name} must not be blank")
    return value


# =============================================================================
# Tender inputs
# =============================================================================


class LotInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    number: int = Field(ge=1)
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    budget: float | None = Field(default=None, ge=0)


class CriterionInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, max_length=200)
    description: str | None = None
    weight: float = Field(default=0.0, ge=0, le=100)
    position: int = Field(default=0, ge=0)


class TenderDraft(BaseModel):
    """Fields needed to create a DRAFT tender."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        use_enum_values=True,
        validate_default=True,
        extra="forbid",
    )

    organization_id: int
    title: str = Field(max_length=500)
    description: str
    summary: str | None = None
    market_type: MarketType = MarketType.OTHER
    visibility: TenderVisibility = TenderVisibility.PUBLIC
    mode: TenderMode = TenderMode.CLASSIC
    procedure: TenderProcedure = TenderProcedure.OPEN
    budget: float | None = Field(default=None, ge=0)
    currency: str = Field(default="CHF", min_length=3, max_length=3)
    canton: str | None = None
    city: str | None = None
    location: str | None = None
    deadline: datetime | None = None
    lots: list[LotInput] = Field(default_factory=list)
    criteria: list[CriterionInput] = Field(default_factory=list)

    @field_validator("title", "description")
    @classmethod
    def required_text(cls, v: str, info) -> str:
        _not_blank(v, info.field_name)
        return v

    @field_validator("deadline")
    @classmethod
    def deadline_utc(cls, v: datetime | None) -> datetime | None:
        return _naive_utc(v)

    @model_validator(mode="after")
    def has_lot_or_criterion(self) -> "TenderDraft":
        if not self.lots and not self.criteria:
            raise ValueError("at least one lot or evaluation criterion is required")
        return self

    def columns(self) -> dict[str, Any]:
        return self.model_dump(exclude={"organization_id", "lots", "criteria"})


class TenderPatch(BaseModel):
    """Partial update of a DRAFT tender. Only provided fields change."""

    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True, extra="forbid")

    title: str | None = Field(default=None, max_length=500)
    description: str | None = None
    summary: str | None = None
    market_type: MarketType | None = None
    visibility: TenderVisibility | None = None
    mode: TenderMode | None = None
    procedure: TenderProcedure | None = None
    budget: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    canton: str | None = None
    city: str | None = None
    location: str | None = None
    deadline: datetime | None = None
    lots: list[LotInput] | None = None
    criteria: list[CriterionInput] | None = None

    @field_validator("title", "description")
    @classmethod
    def required_text(cls, v: str | None, info) -> str | None:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        return _not_blank(v, info.field_name)

    @field_validator("market_type", "visibility", "mode", "procedure", "currency")
    @classmethod
    def not_null(cls, v: Any, info) -> Any:
        if v is None:
            raise ValueError(f"{info.field_name} cannot be cleared")
        return v

    @field_validator("deadline")
    @classmethod
    def deadline_utc(cls, v: datetime | None) -> datetime | None:
        return _naive_utc(v)

    def columns(self) -> dict[str, Any]:
        """Scalar fields explicitly set on the patch."""
        return self.model_dump(exclude_unset=True, exclude={"lots", "criteria"})


# =============================================================================
# Offer inputs
# =============================================================================


class OfferPayload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    price: float | None = Field(default=None, ge=0)
    currency: str = Field(default="CHF", min_length=3, max_length=3)
    description: str | None = None


def parse_input(model: type[ModelT], data: ModelT | dict[str, Any] | None) -> ModelT:
    """Validate ``data`` against ``model``, raising the domain ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"{loc}: {error['msg']}" if loc else error["msg"])
        raise ValidationError(f"Invalid {model.__name__}: {'; '.join(errors)}", errors=errors) from e
