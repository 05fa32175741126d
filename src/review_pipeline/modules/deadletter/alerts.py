from __future__ import annotations

import logging

import httpx

from review_pipeline.core.config import settings
from review_pipeline.core.logging import get_logger, log_event
from review_pipeline.modules.deadletter.schemas import CriticalAlert

logger = get_logger(__name__)


class AlertNotifier:
    def send_critical_alert(self, alert: CriticalAlert) -> None:  # pragma: no cover
        raise NotImplementedError


class LoggingAlertNotifier(AlertNotifier):
    def send_critical_alert(self, alert: CriticalAlert) -> None:
        log_event(
            logger,
            "dlq.alert.critical",
            level=logging.ERROR,
            **alert.model_dump(),
        )


class WebhookAlertNotifier(AlertNotifier):
    """Posts alerts to a chat/paging webhook (Slack-compatible `text` body)."""

    def __init__(self, url: str, *, timeout_seconds: float | None = None):
        self._url = url
        self._timeout = float(timeout_seconds or settings.alert_timeout_seconds)

    def send_critical_alert(self, alert: CriticalAlert) -> None:
        log_event(
            logger,
            "dlq.alert.critical",
            level=logging.ERROR,
            **alert.model_dump(),
        )
        body = {
            "severity": "critical",
            "title": "Job Max Retries Exceeded",
            "text": (
                f"Submission {alert.submission_id} failed {alert.failure_count} times "
                f"on {alert.original_queue_name}: {alert.failure_reason}"
            ),
            "alert": alert.model_dump(by_alias=True),
        }
        resp = httpx.post(self._url, json=body, timeout=self._timeout)
        resp.raise_for_status()


def get_alert_notifier() -> AlertNotifier:
    if settings.alert_webhook_url:
        return WebhookAlertNotifier(settings.alert_webhook_url)
    return LoggingAlertNotifier()
