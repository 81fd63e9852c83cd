"""
Saved-search alert sweep.

For every saved search with alerts enabled, collects the tenders published
since the last alert (bounded by the look-back window), filters them with
the saved-search matcher and hands one digest to the alert delivery. A
search is not alerted again before ``min_interval_hours`` have passed, and
``last_alert_sent_at`` only moves when delivery succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable

from publio.core.config.models import AlertsConfig
from publio.core.search import matches_saved_search_criteria
from publio.persistence.db import Database
from publio.persistence.models import Tender, utcnow
from publio.persistence.repo import SavedSearchRepository, TenderRepository

from .delivery import AlertDelivery, AlertTender, LoggingAlertDelivery, SearchAlert

logger = logging.getLogger(__name__)


@dataclass
class AlertReport:
    """Outcome of one alert sweep."""

    processed: int = 0
    alerts: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "alerts": self.alerts,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _alert_tender(tender: Tender, app_url: str) -> AlertTender:
    return AlertTender(
        id=tender.id,
        title=tender.title,
        budget=tender.budget,
        deadline=tender.deadline,
        location=tender.city or tender.canton or "Switzerland",
        url=f"{app_url.rstrip('/')}/tenders/{tender.id}",
    )


def send_search_alerts(
    db: Database,
    config: AlertsConfig | None = None,
    delivery: AlertDelivery | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> AlertReport:
    """Run one alert sweep and return what it did."""
    config = config or AlertsConfig()
    delivery = delivery or LoggingAlertDelivery()
    report = AlertReport()
    now = clock()

    with db.session() as session:
        searches = [
            (search.id, search.name, search.criteria, search.last_alert_sent_at, search.user.email)
            for search in SavedSearchRepository(session).list_alert_enabled()
        ]

    report.processed = len(searches)
    logger.info("Alert sweep: %d saved search(es) with alerts enabled", len(searches))

    min_interval = timedelta(hours=config.min_interval_hours)
    lookback_start = now - timedelta(hours=config.lookback_hours)

    for search_id, name, criteria, last_sent, recipient in searches:
        if last_sent is not None and now - last_sent < min_interval:
            report.skipped += 1
            report.details.append(f'Skipping "{name}": alerted less than {config.min_interval_hours:g}h ago')
            continue

        # Tenders published at the previous alert instant were already sent
        from_last_alert = last_sent is not None and last_sent >= lookback_start
        since = last_sent if from_last_alert else lookback_start

        try:
            with db.session() as session:
                candidates = TenderRepository(session).list_published_since(since, inclusive=not from_last_alert)
                matching = [
                    _alert_tender(tender, config.app_url)
                    for tender in candidates
                    if matches_saved_search_criteria(tender, criteria)
                ]

            if not matching:
                continue

            alert = SearchAlert(search_id=search_id, search_name=name, recipient=recipient, tenders=matching)
            if not delivery.deliver(alert):
                report.errors += 1
                report.details.append(f"Failed to deliver alert to {recipient}")
                continue

            with db.session() as session:
                SavedSearchRepository(session).mark_alert_sent(search_id, now)

            report.alerts += 1
            report.details.append(f'Alert sent to {recipient} for "{name}" ({len(matching)} tender(s))')
        except Exception as e:
            report.errors += 1
            report.details.append(f'Error for search "{name}": {e}')
            logger.exception("Alert sweep failed for saved search %s", search_id)

    logger.info(
        "Alert sweep done: %d alert(s), %d skipped, %d error(s)",
        report.alerts,
        report.skipped,
        report.errors,
    )
    return report
