"""
Expiry sweep: remind issuers about passed deadlines and auto-close stale tenders.

For every PUBLISHED tender whose deadline passed at least a day ago:

- within the grace period, the issuer's owners/admins are reminded once
  (on the first day);
- after the grace period but before ``auto_close_after_days``, the tender
  waits for a manual close;
- from ``auto_close_after_days`` on, it is closed by the system actor with
  reason EXPIRY (revealing an anonymous issuer) and the issuer is notified.

Each tender is handled in its own transaction. Re-running the sweep is
safe: closed tenders are no longer candidates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from publio.core.config.models import CloseReason, LifecycleConfig, OrganizationRole, TenderStatus
from publio.core.errors import LifecycleError
from publio.core.lifecycle import SYSTEM_ACTOR, TenderLifecycle
from publio.persistence.db import Database
from publio.persistence.models import utcnow
from publio.persistence.repo import OfferRepository, OrganizationRepository, TenderRepository

from .delivery import LoggingNotifier, Notifier

logger = logging.getLogger(__name__)

ISSUER_CONTACT_ROLES = (OrganizationRole.OWNER.value, OrganizationRole.ADMIN.value)


@dataclass
class ExpiryReport:
    """Outcome of one expiry sweep."""

    examined: int = 0
    reminders_sent: int = 0
    awaiting_manual_close: int = 0
    closed: int = 0
    errors: int = 0
    closed_tender_ids: list[int] = field(default_factory=list)
    details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "examined": self.examined,
            "reminders_sent": self.reminders_sent,
            "awaiting_manual_close": self.awaiting_manual_close,
            "closed": self.closed,
            "errors": self.errors,
            "closed_tender_ids": self.closed_tender_ids,
        }


def close_expired_tenders(
    db: Database,
    config: LifecycleConfig | None = None,
    notifier: Notifier | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> ExpiryReport:
    """Run one expiry sweep and return what it did."""
    config = config or LifecycleConfig()
    notifier = notifier or LoggingNotifier()
    report = ExpiryReport()
    now = clock()

    with db.session() as session:
        candidates = [
            (tender.id, tender.deadline)
            for tender in TenderRepository(session).list_past_deadline(now - timedelta(days=1))
        ]

    logger.info("Expiry sweep found %d tender(s) past deadline", len(candidates))

    for tender_id, deadline in candidates:
        report.examined += 1
        days_since_deadline = (now - deadline).days

        try:
            if days_since_deadline <= config.grace_period_days:
                if days_since_deadline == 1 and _send_reminder(db, tender_id, notifier):
                    report.reminders_sent += 1
                    report.details.append(f"Reminder sent for tender {tender_id}")
                continue

            if days_since_deadline < config.auto_close_after_days:
                report.awaiting_manual_close += 1
                report.details.append(
                    f"Tender {tender_id} awaits manual close "
                    f"({days_since_deadline}/{config.auto_close_after_days} days)"
                )
                continue

            if _auto_close(db, tender_id, days_since_deadline, config, notifier, clock):
                report.closed += 1
                report.closed_tender_ids.append(tender_id)
                report.details.append(f"Tender {tender_id} closed after {days_since_deadline} days")
        except LifecycleError as e:
            # Lost a race with a manual close or similar
            report.details.append(f"Tender {tender_id} skipped: {e}")
            logger.warning("Skipping tender %s: %s", tender_id, e, extra={"tender_id": tender_id})
        except Exception as e:
            report.errors += 1
            report.details.append(f"Tender {tender_id} failed: {e}")
            logger.exception("Expiry sweep failed for tender %s", tender_id, extra={"tender_id": tender_id})

    logger.info(
        "Expiry sweep done: %d closed, %d reminder(s), %d awaiting, %d error(s)",
        report.closed,
        report.reminders_sent,
        report.awaiting_manual_close,
        report.errors,
    )
    return report


def _issuer_contacts(session, organization_id: int) -> list[str]:
    users = OrganizationRepository(session).get_member_users(organization_id, roles=ISSUER_CONTACT_ROLES)
    return [user.email for user in users if user.email]


def _send_reminder(db: Database, tender_id: int, notifier: Notifier) -> bool:
    with db.session() as session:
        tender = TenderRepository(session).get_by_id(tender_id)
        recipients = _issuer_contacts(session, tender.organization_id)
        offers_count = OfferRepository(session).count_for_tender(tender_id)
        title = tender.title

    if not recipients:
        return False
    notifier.deadline_passed(recipients, tender_id, title, offers_count)
    return True


def _auto_close(
    db: Database,
    tender_id: int,
    days_since_deadline: int,
    config: LifecycleConfig,
    notifier: Notifier,
    clock: Callable[[], datetime],
) -> bool:
    with db.session() as session:
        lifecycle = TenderLifecycle(session, config=config, clock=clock)
        tender = lifecycle.get(tender_id)
        if tender.status != TenderStatus.PUBLISHED.value:
            return False

        tender = lifecycle.close(tender_id, SYSTEM_ACTOR, reason=CloseReason.EXPIRY)
        recipients = _issuer_contacts(session, tender.organization_id)
        offers_count = OfferRepository(session).count_for_tender(tender_id)
        title = tender.title

    # Notify only after the close has committed
    if recipients:
        try:
            notifier.tender_auto_closed(recipients, tender_id, title, offers_count, days_since_deadline)
        except Exception:
            logger.exception("Auto-close notification failed", extra={"tender_id": tender_id})
    return True
