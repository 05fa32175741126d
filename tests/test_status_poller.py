from __future__ import annotations

import threading

import httpx
import pytest

from review_pipeline.client.poller import (
    HttpReviewStatusClient,
    ReviewPollingError,
    ReviewStatusPoller,
)
from review_pipeline.modules.reviews.models import ReviewStatus
from review_pipeline.modules.reviews.schemas import ReviewStatusOut


class ScriptedStatus:
    """Replays a scripted sequence of statuses (or exceptions) for `fetch_status`."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = 0

    def __call__(self, review_run_id: str) -> ReviewStatusOut:
        step = self.script[min(self.calls, len(self.script) - 1)]
        self.calls += 1
        if isinstance(step, Exception):
            raise step
        status, progress = step
        return ReviewStatusOut(status=status, progress=progress)


class ReviewFetcher:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, review_run_id: str) -> dict:
        self.calls += 1
        return {"id": review_run_id, "review": {"score": 8}}


def test_polling_stops_after_reviewed_and_fetches_once():
    fetch_status = ScriptedStatus(
        [
            (ReviewStatus.PENDING, 0),
            (ReviewStatus.REVIEWING, 10),
            (ReviewStatus.REVIEWING, 80),
            (ReviewStatus.REVIEWED, 99),
            (ReviewStatus.REVIEWED, 99),
        ]
    )
    fetch_review = ReviewFetcher()
    updates = []
    poller = ReviewStatusPoller(
        fetch_status, fetch_review, interval_seconds=0, on_update=updates.append
    )

    result = poller.poll("run-1")

    assert fetch_status.calls == 4
    assert fetch_review.calls == 1
    assert result.status == ReviewStatus.REVIEWED
    assert result.progress == 100
    assert result.review == {"id": "run-1", "review": {"score": 8}}
    assert result.history == [
        ReviewStatus.PENDING,
        ReviewStatus.REVIEWING,
        ReviewStatus.REVIEWING,
        ReviewStatus.REVIEWED,
    ]
    assert [u.progress for u in updates] == [0, 10, 80, 100]


def test_error_status_stops_without_fetching_review():
    fetch_status = ScriptedStatus([(ReviewStatus.REVIEWING, 10), (ReviewStatus.ERROR, 10)])
    fetch_review = ReviewFetcher()

    result = ReviewStatusPoller(fetch_status, fetch_review, interval_seconds=0).poll("run-1")

    assert result.status == ReviewStatus.ERROR
    assert result.review is None
    assert fetch_review.calls == 0
    assert fetch_status.calls == 2


def test_three_consecutive_failures_surface_an_error():
    last = httpx.ConnectError("down again")
    fetch_status = ScriptedStatus(
        [
            (ReviewStatus.REVIEWING, 10),
            httpx.ConnectError("down"),
            httpx.ConnectError("still down"),
            last,
            (ReviewStatus.REVIEWED, 100),
        ]
    )
    poller = ReviewStatusPoller(
        fetch_status, ReviewFetcher(), interval_seconds=0, max_consecutive_errors=3
    )

    with pytest.raises(ReviewPollingError) as exc_info:
        poller.poll("run-1")

    assert exc_info.value.failures == 3
    assert exc_info.value.__cause__ is last
    assert fetch_status.calls == 4


def test_two_failures_then_success_keep_polling():
    fetch_status = ScriptedStatus(
        [
            httpx.ConnectError("down"),
            httpx.ConnectError("still down"),
            (ReviewStatus.REVIEWING, 50),
            httpx.ConnectError("blip"),
            httpx.ConnectError("blip"),
            (ReviewStatus.REVIEWED, 100),
        ]
    )
    fetch_review = ReviewFetcher()

    result = ReviewStatusPoller(fetch_status, fetch_review, interval_seconds=0).poll("run-1")

    assert result.status == ReviewStatus.REVIEWED
    assert fetch_review.calls == 1
    assert fetch_status.calls == 6


def test_cancel_from_update_callback():
    fetch_status = ScriptedStatus([(ReviewStatus.REVIEWING, 10)])
    seen = []

    def _on_update(update):
        seen.append(update)
        if len(seen) == 2:
            poller.cancel()

    poller = ReviewStatusPoller(
        fetch_status, ReviewFetcher(), interval_seconds=0, on_update=_on_update
    )
    result = poller.poll("run-1")

    assert result.cancelled is True
    assert result.queries == 2
    assert fetch_status.calls == 2


def test_cancel_interrupts_waiting_poller():
    first_query = threading.Event()

    def _fetch_status(review_run_id: str) -> ReviewStatusOut:
        first_query.set()
        return ReviewStatusOut(status=ReviewStatus.PENDING, progress=0)

    poller = ReviewStatusPoller(_fetch_status, ReviewFetcher(), interval_seconds=60)
    results = []
    worker = threading.Thread(target=lambda: results.append(poller.poll("run-1")))
    worker.start()

    assert first_query.wait(5)
    poller.cancel()
    worker.join(5)

    assert not worker.is_alive()
    assert results[0].cancelled is True
    assert results[0].queries == 1


def test_http_client_reads_status_and_review():
    def _handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/status"):
            return httpx.Response(200, json={"status": "REVIEWED", "progress": 100})
        return httpx.Response(200, json={"id": "run-1", "review": {"score": 5}})

    http = httpx.Client(transport=httpx.MockTransport(_handler))
    client = HttpReviewStatusClient("http://reviews.test", client=http)

    result = client.poller(interval_seconds=0).poll("run-1")

    assert result.status == ReviewStatus.REVIEWED
    assert result.review["review"] == {"score": 5}


def test_http_client_raises_on_server_error():
    http = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    client = HttpReviewStatusClient("http://reviews.test", client=http)

    with pytest.raises(httpx.HTTPStatusError):
        client.fetch_status("run-1")


def test_zero_error_budget_stops_on_first_failure():
    fetch_status = ScriptedStatus([httpx.ConnectError("down"), (ReviewStatus.REVIEWED, 100)])
    poller = ReviewStatusPoller(
        fetch_status, ReviewFetcher(), interval_seconds=0, max_consecutive_errors=0
    )

    with pytest.raises(ReviewPollingError):
        poller.poll("run-1")
    assert fetch_status.calls == 1
