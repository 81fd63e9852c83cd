"""
Equity log store: the append-only fairness audit trail of a tender.

Appends are best-effort. A failed write is rolled back to its own
SAVEPOINT and reported through the package logger; it never propagates
and never undoes the business change it documents.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from sqlalchemy.orm import Session

from publio.core.config.models import EquityLogAction
from publio.core.logging import get_logger
from publio.persistence.models import EquityLog, utcnow
from publio.persistence.repo import EquityLogRepository

from .actors import SYSTEM_ACTOR, Actor

logger = get_logger("equity_log")


@dataclass
class EquityLogEntry:
    """Read model of a log entry joined with its actor identity."""

    id: int
    tender_id: int
    action: str
    description: str
    metadata: dict[str, Any] | None
    created_at: datetime
    user_id: int | None
    user_name: str | None
    user_email: str | None

    @property
    def is_system(self) -> bool:
        return self.user_id is None

    @classmethod
    def from_model(cls, entry: EquityLog) -> "EquityLogEntry":
        user = entry.user
        return cls(
            id=entry.id,
            tender_id=entry.tender_id,
            action=entry.action,
            description=entry.description,
            metadata=entry.details,
            created_at=entry.created_at,
            user_id=entry.user_id,
            user_name=user.name if user is not None else SYSTEM_ACTOR.name,
            user_email=user.email if user is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tender_id": self.tender_id,
            "action": self.action,
            "description": self.description,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "user": {"id": self.user_id, "name": self.user_name, "email": self.user_email},
        }


class EquityLogStore:
    """Append and read equity log entries within a session."""

    def __init__(self, session: Session, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self._repo = EquityLogRepository(session)

    def append(
        self,
        tender_id: int,
        actor: Actor,
        action: EquityLogAction | str,
        description: str,
        metadata: dict[str, Any] | None = None,
    ) -> EquityLog | None:
        """Record an action. Returns the entry, or None if the write failed."""
        action_value = action.value if isinstance(action, EquityLogAction) else str(action)

        try:
            with self.session.begin_nested():
                entry = self._repo.add(
                    tender_id=tender_id,
                    user_id=actor.user_id,
                    action=action_value,
                    description=description,
                    details=metadata,
                    created_at=self.clock(),
                )
        except Exception:
            logger.exception(
                "Failed to write equity log entry %s",
                action_value,
                extra={"tender_id": tender_id, "actor": actor.label},
            )
            return None

        logger.debug(
            "Equity log %s: %s",
            action_value,
            description,
            extra={"tender_id": tender_id, "actor": actor.label},
        )
        return entry

    def query(self, tender_id: int) -> list[EquityLogEntry]:
        """All entries for a tender, newest first."""
        return [EquityLogEntry.from_model(e) for e in self._repo.list_for_tender(tender_id)]

    def recent_tenders_with_logs(self, organization_id: int, limit: int = 10) -> list[dict[str, Any]]:
        """Tenders of an organization with at least one entry, latest activity first."""
        return [
            {
                "tender_id": tender.id,
                "title": tender.title,
                "status": tender.status,
                "entries": entries,
                "latest_entry_at": latest,
            }
            for tender, entries, latest in self._repo.recent_tenders_with_logs(organization_id, limit)
        ]
