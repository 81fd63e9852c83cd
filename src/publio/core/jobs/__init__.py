"""Out-of-band batch jobs: tender expiry and saved-search alerts."""

from .alerts import AlertReport, send_search_alerts
from .delivery import (
    AlertDelivery,
    AlertTender,
    LoggingAlertDelivery,
    LoggingNotifier,
    Notifier,
    SearchAlert,
    WebhookAlertDelivery,
    build_alert_delivery,
)
from .expiry import ExpiryReport, close_expired_tenders

__all__ = [
    "AlertReport",
    "send_search_alerts",
    "AlertDelivery",
    "AlertTender",
    "LoggingAlertDelivery",
    "LoggingNotifier",
    "Notifier",
    "SearchAlert",
    "WebhookAlertDelivery",
    "build_alert_delivery",
    "ExpiryReport",
    "close_expired_tenders",
]
