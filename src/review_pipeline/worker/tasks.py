from __future__ import annotations

# Ensure all models are registered before any task runs
# isort: off
import review_pipeline.models  # noqa: F401
# isort: on

import logging
import time

from review_pipeline.core.config import settings
from review_pipeline.core.logging import (
    get_logger,
    log_event,
    log_exception,
    monotonic_ms,
    reset_task_context,
    set_task_context,
)
from review_pipeline.core.metrics import observe_job
from review_pipeline.core.periods import utc_now
from review_pipeline.modules.deadletter.schemas import DeadLetterJob, FailureReason
from review_pipeline.worker.celery_app import DEAD_LETTER_QUEUE, REVIEW_QUEUE, celery_app

logger = get_logger(__name__)

REVIEW_WORKER_NAME = "review-worker"
DEAD_LETTER_WORKER_NAME = "dead-letter-worker"


def review_retry_countdown(retries: int) -> float:
    return settings.review_backoff_base_seconds * (2**retries)


def dead_letter_review(
    review_run_id: str, *, exc: BaseException, attempts: int, task_id: str | None
) -> DeadLetterJob | None:
    """Mark the run ERROR and hand the job to the dead-letter queue."""
    from review_pipeline.modules.reviews.pipeline import get_review_pipeline

    reason = FailureReason.from_exception(exc)
    run = get_review_pipeline().fail(review_run_id, error_message=str(reason))
    job = DeadLetterJob(
        original_job_id=task_id,
        submission_id=run.submission_id if run else review_run_id,
        failure_reason=reason,
        failure_count=attempts,
        original_queue_name=REVIEW_QUEUE,
        failed_at=utc_now(),
    )
    try:
        async_result = process_dead_letter_task.delay(job.model_dump(mode="json", by_alias=True))
    except Exception:  # noqa: BLE001
        log_exception(
            logger,
            "celery.task.dead_letter_failure",
            review_run_id=review_run_id,
            submission_id=job.submission_id,
        )
        return None
    log_event(
        logger,
        "celery.task.dead_lettered",
        level=logging.WARNING,
        review_run_id=review_run_id,
        submission_id=job.submission_id,
        failure_count=attempts,
        failure_category=reason.category.value,
        dlq_task_id=async_result.id,
    )
    return job


@celery_app.task(name="review_submission", bind=True, max_retries=None)
def review_submission_task(self, review_run_id: str) -> dict | None:
    from review_pipeline.modules.reviews.pipeline import get_review_pipeline

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    start = time.monotonic()
    attempt = self.request.retries + 1
    succeeded = False
    log_event(
        logger,
        "celery.task.start",
        task_name="review_submission",
        celery_task_id=task_id,
        review_run_id=review_run_id,
        attempt=attempt,
    )
    try:
        outcome = get_review_pipeline().run(review_run_id, attempt=attempt)
        succeeded = True
        log_event(
            logger,
            "celery.task.finish",
            task_name="review_submission",
            celery_task_id=task_id,
            review_run_id=review_run_id,
            duration_ms=monotonic_ms(start),
        )
        return outcome.as_dict() if outcome else None
    except Exception as e:
        if attempt < settings.review_max_attempts:
            countdown = review_retry_countdown(self.request.retries)
            log_event(
                logger,
                "celery.task.retry",
                level=logging.WARNING,
                task_name="review_submission",
                celery_task_id=task_id,
                review_run_id=review_run_id,
                attempt=attempt,
                countdown_s=countdown,
                error_type=type(e).__name__,
            )
            raise self.retry(exc=e, countdown=countdown)
        log_exception(
            logger,
            "celery.task.error",
            task_name="review_submission",
            celery_task_id=task_id,
            review_run_id=review_run_id,
            attempt=attempt,
            duration_ms=monotonic_ms(start),
        )
        dead_letter_review(review_run_id, exc=e, attempts=attempt, task_id=task_id)
        raise
    finally:
        observe_job(
            queue_name=REVIEW_QUEUE,
            worker_name=REVIEW_WORKER_NAME,
            job_type="review_submission",
            duration_s=time.monotonic() - start,
            succeeded=succeeded,
        )
        reset_task_context(token)


@celery_app.task(
    name="process_dead_letter",
    bind=True,
    max_retries=settings.dlq_max_retries,
    default_retry_delay=settings.dlq_retry_delay_seconds,
)
def process_dead_letter_task(self, payload: dict) -> dict:
    from review_pipeline.modules.deadletter.service import get_dead_letter_processor

    task_id = getattr(self.request, "id", None)
    token = set_task_context(task_id)
    succeeded = False
    start = time.monotonic()
    log_event(
        logger,
        "celery.task.start",
        task_name="process_dead_letter",
        celery_task_id=task_id,
        submission_id=payload.get("submissionId"),
    )
    try:
        job = DeadLetterJob.model_validate(payload)
        try:
            result = get_dead_letter_processor().process(job, job_id=task_id)
        except Exception as e:
            # The one path where a failure is allowed to loop: the dead-letter queue's own retry.
            log_exception(
                logger,
                "celery.task.error",
                task_name="process_dead_letter",
                celery_task_id=task_id,
                submission_id=job.submission_id,
                attempts_made=self.request.retries,
                duration_ms=monotonic_ms(start),
            )
            raise self.retry(exc=e)
        succeeded = True
        log_event(
            logger,
            "celery.task.finish",
            task_name="process_dead_letter",
            celery_task_id=task_id,
            submission_id=job.submission_id,
            duration_ms=monotonic_ms(start),
        )
        return result.model_dump()
    finally:
        observe_job(
            queue_name=DEAD_LETTER_QUEUE,
            worker_name=DEAD_LETTER_WORKER_NAME,
            job_type="process_dead_letter",
            duration_s=time.monotonic() - start,
            succeeded=succeeded,
        )
        reset_task_context(token)
