"""
Terminal sink for review jobs that exhausted their retries.

Each job is counted, appended to a bounded per-day failure log and, past the alert
threshold, escalated to the configured notifier. Metric and log writes must land
before the job is acknowledged, so their failures propagate to the caller; alert
failures are only logged.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from review_pipeline.core.config import settings
from review_pipeline.core.kv import KeyValueStore, get_kv_store
from review_pipeline.core.logging import get_logger, log_event, log_exception
from review_pipeline.core.periods import day_key, utc_now
from review_pipeline.modules.deadletter.alerts import AlertNotifier, get_alert_notifier
from review_pipeline.modules.deadletter.schemas import CriticalAlert, DeadLetterJob, DeadLetterResult

logger = get_logger(__name__)

FAILURES_PREFIX = "dlq:failures:"
FAILURE_LOG_PREFIX = "dlq:failure:log:"


class DeadLetterProcessor:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        notifier: AlertNotifier | None = None,
        alert_threshold: int | None = None,
        now: Callable[[], datetime] = utc_now,
    ):
        self._store = store or get_kv_store()
        self._notifier = notifier or get_alert_notifier()
        self._alert_threshold = (
            settings.dlq_alert_threshold if alert_threshold is None else alert_threshold
        )
        self._now = now

    @property
    def _retention_seconds(self) -> int:
        return settings.dlq_retention_days * 86400

    def process(self, job: DeadLetterJob, *, job_id: str | None = None) -> DeadLetterResult:
        log_event(
            logger,
            "dlq.job.start",
            level=logging.WARNING,
            dlq_job_id=job_id,
            original_job_id=job.original_job_id,
            submission_id=job.submission_id,
            original_queue=job.original_queue_name,
            failure_count=job.failure_count,
            failure_reason=str(job.failure_reason),
        )
        try:
            self.log_failure_metrics(job)
        except Exception:
            log_exception(
                logger,
                "dlq.job.error",
                dlq_job_id=job_id,
                submission_id=job.submission_id,
            )
            raise

        alerted = False
        if job.failure_count >= self._alert_threshold:
            alerted = self.send_critical_alert(job)

        log_event(
            logger,
            "dlq.job.processed",
            dlq_job_id=job_id,
            submission_id=job.submission_id,
            alerted=alerted,
        )
        return DeadLetterResult(
            processed=True,
            submission_id=job.submission_id,
            failure_count=job.failure_count,
            alerted=alerted,
        )

    def log_failure_metrics(self, job: DeadLetterJob) -> None:
        date = day_key(job.failed_at)
        metrics_key = f"{FAILURES_PREFIX}{date}"

        record = {
            "original_job_id": job.original_job_id,
            "submission_id": job.submission_id,
            "failure_reason": job.failure_reason.message,
            "failure_category": job.failure_reason.category.value,
            "failure_count": job.failure_count,
            "original_queue": job.original_queue_name,
            "failed_at": job.failed_at.isoformat(),
            "processed_at": self._now().isoformat(),
        }
        # Counters and log entry are one transaction; a retried job counts once.
        self._store.record_failure(
            [f"{metrics_key}:{job.failure_reason.category.value}", f"{metrics_key}:total"],
            f"{FAILURE_LOG_PREFIX}{date}",
            json.dumps(record),
            max_len=settings.dlq_log_max_entries,
            ttl_seconds=self._retention_seconds,
        )
        log_event(
            logger,
            "dlq.metrics.logged",
            level=logging.DEBUG,
            submission_id=job.submission_id,
            failure_count=job.failure_count,
        )

    def send_critical_alert(self, job: DeadLetterJob) -> bool:
        alert = CriticalAlert(
            submission_id=job.submission_id,
            failure_count=job.failure_count,
            failure_reason=str(job.failure_reason),
            original_queue_name=job.original_queue_name,
        )
        try:
            self._notifier.send_critical_alert(alert)
        except Exception:  # noqa: BLE001
            log_exception(logger, "dlq.alert.failure", submission_id=job.submission_id)
            return False
        return True

    def get_failure_counts(self, date: str) -> dict[str, int]:
        prefix = f"{FAILURES_PREFIX}{date}:"
        counts: dict[str, int] = {}
        for key in sorted(self._store.scan_keys(f"{prefix}*")):
            counts[key[len(prefix):]] = int(self._store.get(key) or 0)
        counts.setdefault("total", 0)
        return counts

    def get_failure_log(self, date: str, *, limit: int = 100) -> list[dict[str, Any]]:
        if limit <= 0:
            return []
        raw = self._store.lrange(f"{FAILURE_LOG_PREFIX}{date}", 0, limit - 1)
        return [json.loads(item) for item in raw]


def get_dead_letter_processor() -> DeadLetterProcessor:
    return DeadLetterProcessor(get_kv_store())
