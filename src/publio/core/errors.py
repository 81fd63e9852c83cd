"""
Domain errors raised by the lifecycle controllers.

Every error carries a ``kind`` string that the service layer reports back
to callers as ``{"kind": ..., "message": ...}``.
"""

from __future__ import annotations

from typing import Any


class LifecycleError(Exception):
    """Base class for recoverable, caller-reported marketplace errors."""

    kind = "LifecycleError"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(LifecycleError):
    """Malformed or missing input, rejected before any state change."""

    kind = "ValidationError"

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors} if self.errors else None)


class PermissionDeniedError(LifecycleError):
    """Actor lacks the required organization role."""

    kind = "PermissionError"


class StateError(LifecycleError):
    """Operation invalid for the current lifecycle state (including lost races)."""

    kind = "StateError"


class ConflictError(LifecycleError):
    """Uniqueness violation, e.g. a second offer from the same organization."""

    kind = "ConflictError"


class NotFoundError(LifecycleError):
    kind = "NotFoundError"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")
