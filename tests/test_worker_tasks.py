from __future__ import annotations

import pytest
from prometheus_client import REGISTRY

from review_pipeline.core.config import settings
from review_pipeline.core.db import SessionLocal
from review_pipeline.core.kv import StoreError
from review_pipeline.core.periods import day_key, utc_now
from review_pipeline.modules.deadletter.alerts import AlertNotifier
from review_pipeline.modules.deadletter.service import DeadLetterProcessor
from review_pipeline.modules.reviews.models import ReviewStatus
from review_pipeline.modules.reviews.reviewer import Reviewer, ReviewerError, ReviewerResponse
from review_pipeline.modules.reviews.service import create_review_run, find_review_run
from review_pipeline.worker.tasks import (
    process_dead_letter_task,
    review_retry_countdown,
    review_submission_task,
)


class ScriptedReviewer(Reviewer):
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    def review(self, *, prompt: str, model: str) -> ReviewerResponse:
        self.calls += 1
        if self.calls <= self.failures:
            raise ReviewerError("Reviewer returned HTTP 500")
        return ReviewerResponse(
            result={"score": 6}, model=model, input_tokens=10, output_tokens=10
        )


class RecordingNotifier(AlertNotifier):
    def __init__(self) -> None:
        self.alerts = []

    def send_critical_alert(self, alert) -> None:
        self.alerts.append(alert)


@pytest.fixture
def reviewer_factory(monkeypatch):
    from review_pipeline.modules.reviews import pipeline as pipeline_mod

    def _install(failures: int) -> ScriptedReviewer:
        reviewer = ScriptedReviewer(failures)
        monkeypatch.setattr(pipeline_mod, "get_reviewer", lambda: reviewer)
        return reviewer

    return _install


@pytest.fixture
def notifier(monkeypatch, kv_store):
    from review_pipeline.modules.deadletter import service as dlq_service

    recording = RecordingNotifier()
    monkeypatch.setattr(
        dlq_service,
        "get_dead_letter_processor",
        lambda: DeadLetterProcessor(kv_store, notifier=recording),
    )
    return recording


def _create_run(submission_id: str = "sub-1") -> str:
    with SessionLocal() as session:
        return str(create_review_run(session, submission_id=submission_id, prompt="Review").id)


def _load(review_run_id: str):
    with SessionLocal() as session:
        return find_review_run(session, review_run_id=review_run_id)


def test_retry_countdown_backs_off_exponentially():
    base = settings.review_backoff_base_seconds
    assert [review_retry_countdown(n) for n in range(3)] == [base, base * 2, base * 4]


def test_review_task_completes_run(reviewer_factory, notifier):
    reviewer = reviewer_factory(failures=0)
    run_id = _create_run()

    result = review_submission_task.delay(run_id).get()

    assert result["status"] == "REVIEWED"
    assert reviewer.calls == 1
    assert _load(run_id).status == ReviewStatus.REVIEWED


def test_transient_failure_is_retried_without_error_status(reviewer_factory, notifier, kv_store):
    reviewer = reviewer_factory(failures=2)
    run_id = _create_run()

    review_submission_task.delay(run_id)

    run = _load(run_id)
    assert reviewer.calls == 3
    assert run.status == ReviewStatus.REVIEWED
    assert run.attempts == 3
    assert notifier.alerts == []
    assert kv_store.scan_keys("dlq:*") == []


def test_exhausted_retries_dead_letter_the_job(reviewer_factory, notifier, kv_store):
    reviewer = reviewer_factory(failures=10)
    run_id = _create_run("sub-dead")

    result = review_submission_task.delay(run_id)

    assert result.state == "FAILURE"
    with pytest.raises(ReviewerError):
        result.get()

    assert reviewer.calls == settings.review_max_attempts

    run = _load(run_id)
    assert run.status == ReviewStatus.ERROR
    assert run.error_message == "reviewer_error: Reviewer returned HTTP 500"

    today = day_key(utc_now())
    processor = DeadLetterProcessor(kv_store, notifier=notifier)
    assert processor.get_failure_counts(today) == {"reviewer_error": 1, "total": 1}
    entry = processor.get_failure_log(today)[0]
    assert entry["submission_id"] == "sub-dead"
    assert entry["failure_count"] == settings.review_max_attempts
    assert entry["original_queue"] == "reviews"

    assert len(notifier.alerts) == 1
    assert notifier.alerts[0].submission_id == "sub-dead"


def test_dead_letter_task_accepts_wire_payload(notifier):
    payload = {
        "originalJobId": "7",
        "submissionId": "sub-7",
        "failureReason": "reviewer_timeout: Reviewer timed out after 60.0s",
        "failureCount": 1,
        "originalQueueName": "reviews",
        "failedAt": "2026-03-12T10:00:00Z",
    }

    result = process_dead_letter_task.apply(args=[payload]).get()

    assert result == {
        "processed": True,
        "submission_id": "sub-7",
        "failure_count": 1,
        "alerted": False,
    }


def test_dead_letter_task_retries_store_failures(monkeypatch, broken_store):
    from review_pipeline.modules.deadletter import service as dlq_service

    attempts = []

    def _processor():
        attempts.append(1)
        return DeadLetterProcessor(broken_store, notifier=RecordingNotifier())

    monkeypatch.setattr(dlq_service, "get_dead_letter_processor", _processor)
    payload = {
        "submissionId": "sub-8",
        "failureReason": "unknown: boom",
        "failureCount": 3,
        "originalQueueName": "reviews",
    }

    result = process_dead_letter_task.apply(args=[payload])

    assert result.state == "FAILURE"
    assert isinstance(result.result, StoreError)

    assert len(attempts) == settings.dlq_max_retries + 1


def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


def test_job_metrics_count_completions_and_failed_attempts(reviewer_factory, notifier):
    completed = _sample("queue_jobs_completed_total", queue_name="reviews")
    failed = _sample("queue_jobs_failed_total", queue_name="reviews")
    durations = _sample(
        "queue_job_duration_seconds_count", queue_name="reviews", job_type="review_submission"
    )
    processing = _sample(
        "worker_job_processing_time_seconds_count",
        worker_name="review-worker",
        job_type="review_submission",
    )
    reviewer_factory(failures=2)

    review_submission_task.delay(_create_run())

    assert _sample("queue_jobs_completed_total", queue_name="reviews") == completed + 1
    assert _sample("queue_jobs_failed_total", queue_name="reviews") == failed + 2
    assert (
        _sample(
            "queue_job_duration_seconds_count",
            queue_name="reviews",
            job_type="review_submission",
        )
        == durations + 3
    )
    assert (
        _sample(
            "worker_job_processing_time_seconds_count",
            worker_name="review-worker",
            job_type="review_submission",
        )
        == processing + 3
    )


def test_dead_letter_job_metrics(notifier):
    completed = _sample("queue_jobs_completed_total", queue_name="dead-letter")
    payload = {
        "submissionId": "sub-m",
        "failureReason": "unknown: boom",
        "failureCount": 1,
        "originalQueueName": "reviews",
    }

    process_dead_letter_task.apply(args=[payload])

    assert _sample("queue_jobs_completed_total", queue_name="dead-letter") == completed + 1
