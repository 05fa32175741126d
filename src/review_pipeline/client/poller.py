"""
Consumer side of the review status contract.

`ReviewStatusPoller` queries `{status, progress}` immediately and then on a fixed
interval until the run is terminal. A REVIEWED run triggers exactly one fetch of
the review payload; an ERROR run stops without fetching. Query failures are
retried in place, and the configured number of consecutive failures ends polling
with `ReviewPollingError`.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from review_pipeline.core.config import settings
from review_pipeline.core.logging import get_logger, log_event
from review_pipeline.modules.reviews.models import ReviewStatus
from review_pipeline.modules.reviews.schemas import ReviewStatusOut

logger = get_logger(__name__)


class ReviewPollingError(RuntimeError):
    def __init__(self, review_run_id: str, failures: int):
        super().__init__(f"Status polling for {review_run_id} failed {failures} times in a row")
        self.review_run_id = review_run_id
        self.failures = failures


@dataclass
class PollResult:
    status: ReviewStatus | None
    progress: int
    review: dict[str, Any] | None = None
    cancelled: bool = False
    queries: int = 0
    history: list[ReviewStatus] = field(default_factory=list)


class ReviewStatusPoller:
    def __init__(
        self,
        fetch_status: Callable[[str], ReviewStatusOut],
        fetch_review: Callable[[str], dict[str, Any]],
        *,
        interval_seconds: float | None = None,
        max_consecutive_errors: int | None = None,
        on_update: Callable[[ReviewStatusOut], None] | None = None,
    ):
        self._fetch_status = fetch_status
        self._fetch_review = fetch_review
        self._interval = (
            settings.poll_interval_seconds if interval_seconds is None else interval_seconds
        )
        self._max_errors = (
            settings.poll_max_consecutive_errors
            if max_consecutive_errors is None
            else max_consecutive_errors
        )
        self._on_update = on_update
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def poll(self, review_run_id: str) -> PollResult:
        result = PollResult(status=None, progress=0)
        failures = 0

        while not self._cancelled.is_set():
            result.queries += 1
            try:
                current = self._fetch_status(review_run_id)
            except Exception as e:
                failures += 1
                log_event(
                    logger,
                    "poll.status.failure",
                    level=logging.WARNING,
                    review_run_id=review_run_id,
                    consecutive_failures=failures,
                    error_type=type(e).__name__,
                )
                if failures >= self._max_errors:
                    raise ReviewPollingError(review_run_id, failures) from e
            else:
                failures = 0
                result.status = current.status
                result.progress = current.progress
                result.history.append(current.status)
                if current.status == ReviewStatus.REVIEWED:
                    result.progress = 100
                if self._on_update is not None:
                    self._on_update(ReviewStatusOut(status=result.status, progress=result.progress))

                if current.status == ReviewStatus.REVIEWED:
                    result.review = self._fetch_review(review_run_id)
                    log_event(logger, "poll.finish", review_run_id=review_run_id, status="REVIEWED")
                    return result
                if current.status == ReviewStatus.ERROR:
                    log_event(
                        logger,
                        "poll.finish",
                        level=logging.WARNING,
                        review_run_id=review_run_id,
                        status="ERROR",
                    )
                    return result

            # cancel() interrupts the wait.
            if self._cancelled.wait(self._interval):
                break

        result.cancelled = True
        log_event(logger, "poll.cancelled", review_run_id=review_run_id, queries=result.queries)
        return result


class HttpReviewStatusClient:
    """Fetches status and review payloads from the HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self._base_url = (base_url or settings.base_url).rstrip("/")
        self._timeout = timeout_seconds
        self._client = client

    def _get(self, path: str) -> Any:
        url = f"{self._base_url}{path}"
        if self._client is not None:
            resp = self._client.get(url, timeout=self._timeout)
        else:
            resp = httpx.get(url, timeout=self._timeout, follow_redirects=True)
        resp.raise_for_status()
        return resp.json()

    def fetch_status(self, review_run_id: str) -> ReviewStatusOut:
        return ReviewStatusOut.model_validate(self._get(f"/api/reviews/{review_run_id}/status"))

    def fetch_review(self, review_run_id: str) -> dict[str, Any]:
        return self._get(f"/api/reviews/{review_run_id}")

    def poller(self, **kwargs: Any) -> ReviewStatusPoller:
        return ReviewStatusPoller(self.fetch_status, self.fetch_review, **kwargs)
