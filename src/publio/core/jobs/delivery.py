"""
Outbound collaborators used by the batch jobs.

Alert delivery and issuer notifications are injected objects. The logging
implementations are the defaults; ``WebhookAlertDelivery`` posts alerts as
JSON with retries.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Protocol, Sequence

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from publio.core.logging import get_logger, json_dumps

logger = get_logger("delivery")


# =============================================================================
# Payloads
# =============================================================================


@dataclass
class AlertTender:
    id: int
    title: str
    budget: float | None
    deadline: datetime | None
    location: str
    url: str


@dataclass
class SearchAlert:
    """A digest of newly published tenders matching one saved search."""

    search_id: int
    search_name: str
    recipient: str
    tenders: list[AlertTender] = field(default_factory=list)

    @property
    def subject(self) -> str:
        count = len(self.tenders)
        return f"{count} new tender{'s' if count != 1 else ''} for \"{self.search_name}\""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["subject"] = self.subject
        return data


# =============================================================================
# Alert delivery
# =============================================================================


class AlertDelivery(Protocol):
    def deliver(self, alert: SearchAlert) -> bool:
        """Send an alert. Returns True once it has been handed off."""
        ...


class LoggingAlertDelivery:
    """Writes alerts to the log instead of sending them."""

    def __init__(self) -> None:
        self.delivered: list[SearchAlert] = []

    def deliver(self, alert: SearchAlert) -> bool:
        logger.info(
            "Alert to %s: %s (%s)",
            alert.recipient,
            alert.subject,
            ", ".join(f"#{t.id}" for t in alert.tenders),
        )
        self.delivered.append(alert)
        return True


class WebhookAlertDelivery:
    """POSTs alerts as JSON to a webhook, retrying transient failures."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        max_attempts: int = 3,
        client: httpx.Client | None = None,
        min_wait: float = 1.0,
        max_wait: float = 30.0,
    ):
        self.url = url
        self.max_attempts = max_attempts
        self.min_wait = min_wait
        self.max_wait = max_wait
        self._client = client or httpx.Client(timeout=timeout)

    def _post(self, body: bytes) -> None:
        response = self._client.post(
            self.url,
            content=body,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()

    def deliver(self, alert: SearchAlert) -> bool:
        body = json_dumps(alert.to_dict()).encode("utf-8")
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_random_exponential(multiplier=2, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(httpx.HTTPError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    self._post(body)
        except httpx.HTTPError as e:
            logger.error("Alert delivery to %s failed: %s", self.url, e)
            return False

        return True

    def close(self) -> None:
        self._client.close()


# =============================================================================
# Issuer notifications
# =============================================================================


class Notifier(Protocol):
    def deadline_passed(self, recipients: Sequence[str], tender_id: int, title: str, offers_count: int) -> None:
        ...

    def tender_auto_closed(
        self,
        recipients: Sequence[str],
        tender_id: int,
        title: str,
        offers_count: int,
        days_since_deadline: int,
    ) -> None:
        ...


class LoggingNotifier:
    """Notifier that only logs. Keeps a record of what it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, int, tuple[str, ...]]] = []

    def deadline_passed(self, recipients: Sequence[str], tender_id: int, title: str, offers_count: int) -> None:
        logger.info(
            "Deadline reminder for %r to %s (%d offer(s))",
            title,
            ", ".join(recipients),
            offers_count,
            extra={"tender_id": tender_id},
        )
        self.sent.append(("deadline_passed", tender_id, tuple(recipients)))

    def tender_auto_closed(
        self,
        recipients: Sequence[str],
        tender_id: int,
        title: str,
        offers_count: int,
        days_since_deadline: int,
    ) -> None:
        logger.info(
            "Auto-close notice for %r to %s (%d offer(s), %d day(s) after deadline)",
            title,
            ", ".join(recipients),
            offers_count,
            days_since_deadline,
            extra={"tender_id": tender_id},
        )
        self.sent.append(("tender_auto_closed", tender_id, tuple(recipients)))


def build_alert_delivery(webhook_url: str | None, timeout: float = 10.0, max_attempts: int = 3) -> AlertDelivery:
    """Webhook delivery when a URL is configured, logging delivery otherwise."""
    if webhook_url:
        return WebhookAlertDelivery(webhook_url, timeout=timeout, max_attempts=max_attempts)
    return LoggingAlertDelivery()
