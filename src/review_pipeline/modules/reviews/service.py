from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from review_pipeline.core.config import settings
from review_pipeline.core.logging import get_logger, log_event
from review_pipeline.modules.reviews.models import ReviewRun, ReviewStatus
from review_pipeline.modules.reviews.schemas import ReviewStatusOut

logger = get_logger(__name__)

_ALLOWED_TRANSITIONS: dict[ReviewStatus, set[ReviewStatus]] = {
    ReviewStatus.PENDING: {ReviewStatus.REVIEWING, ReviewStatus.ERROR},
    ReviewStatus.REVIEWING: {ReviewStatus.REVIEWED, ReviewStatus.ERROR},
    ReviewStatus.REVIEWED: set(),
    ReviewStatus.ERROR: set(),
}


class InvalidReviewTransition(RuntimeError):
    def __init__(self, from_status: ReviewStatus, to_status: ReviewStatus):
        super().__init__(f"Cannot move review from {from_status.value} to {to_status.value}")
        self.from_status = from_status
        self.to_status = to_status


def create_review_run(
    session: Session, *, submission_id: str, prompt: str, model: str | None = None
) -> ReviewRun:
    run = ReviewRun(
        submission_id=submission_id,
        status=ReviewStatus.PENDING,
        progress=0,
        model=model or settings.reviewer_model,
        prompt=prompt,
        result_json=None,
        from_cache=False,
        cost_usd=None,
        attempts=0,
        error_message=None,
        completed_at=None,
    )
    session.add(run)
    session.commit()
    session.refresh(run)
    log_event(
        logger,
        "review.run.created",
        review_run_id=str(run.id),
        submission_id=submission_id,
        model=run.model,
    )
    return run


def find_review_run(session: Session, *, review_run_id: uuid.UUID | str) -> ReviewRun | None:
    if isinstance(review_run_id, str):
        try:
            review_run_id = uuid.UUID(review_run_id)
        except ValueError:
            return None
    return session.scalar(select(ReviewRun).where(ReviewRun.id == review_run_id))


def get_review_run(session: Session, *, review_run_id: uuid.UUID) -> ReviewRun:
    run = find_review_run(session, review_run_id=review_run_id)
    if not run:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Review not found")
    return run


def _transition(session: Session, run: ReviewRun, to_status: ReviewStatus) -> None:
    from_status = run.status
    if to_status not in _ALLOWED_TRANSITIONS[from_status]:
        raise InvalidReviewTransition(from_status, to_status)
    run.status = to_status
    log_event(
        logger,
        "review.status.changed",
        review_run_id=str(run.id),
        submission_id=run.submission_id,
        from_status=from_status.value,
        to_status=to_status.value,
    )


def mark_reviewing(session: Session, run: ReviewRun, *, attempt: int) -> ReviewRun:
    # Redelivered or retried jobs find the run already REVIEWING; only the attempt moves.
    if run.status != ReviewStatus.REVIEWING:
        _transition(session, run, ReviewStatus.REVIEWING)
        run.progress = max(run.progress, 10)
    run.attempts = max(run.attempts, attempt)
    session.add(run)
    session.commit()
    return run


def set_progress(session: Session, run: ReviewRun, progress: int) -> ReviewRun:
    if run.status != ReviewStatus.REVIEWING:
        return run
    run.progress = max(run.progress, min(max(progress, 0), 99))
    session.add(run)
    session.commit()
    return run


def mark_reviewed(
    session: Session,
    run: ReviewRun,
    *,
    result: dict[str, Any],
    from_cache: bool,
    cost_usd: float | None = None,
) -> ReviewRun:
    _transition(session, run, ReviewStatus.REVIEWED)
    run.progress = 100
    run.result_json = result
    run.from_cache = from_cache
    run.cost_usd = cost_usd
    run.error_message = None
    run.completed_at = datetime.now(UTC)
    session.add(run)
    session.commit()
    return run


def mark_error(session: Session, run: ReviewRun, *, error_message: str) -> ReviewRun:
    _transition(session, run, ReviewStatus.ERROR)
    run.error_message = error_message
    run.completed_at = datetime.now(UTC)
    session.add(run)
    session.commit()
    return run


def status_view(run: ReviewRun) -> ReviewStatusOut:
    progress = 100 if run.status == ReviewStatus.REVIEWED else min(max(run.progress, 0), 100)
    return ReviewStatusOut(status=run.status, progress=progress)
