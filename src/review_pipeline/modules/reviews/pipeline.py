"""
Review job orchestration: cache lookup, reviewer call on miss, cost accounting,
cache population and status transitions for one `ReviewRun`.

Reviewer failures propagate unchanged so the queue's retry policy applies; nothing
is charged or cached for a failed call. Between attempts the run stays REVIEWING.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from review_pipeline.core.db import SessionLocal
from review_pipeline.core.logging import get_logger, log_event, log_exception, monotonic_ms
from review_pipeline.modules.cache.service import ReviewCache, get_review_cache
from review_pipeline.modules.costs.service import CostTracker, get_cost_tracker
from review_pipeline.modules.reviews.models import ReviewRun, ReviewStatus
from review_pipeline.modules.reviews.reviewer import Reviewer, get_reviewer
from review_pipeline.modules.reviews.service import (
    find_review_run,
    mark_error,
    mark_reviewed,
    mark_reviewing,
    set_progress,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReviewOutcome:
    review_run_id: str
    submission_id: str
    status: ReviewStatus
    from_cache: bool
    cost_usd: float

    def as_dict(self) -> dict:
        return {
            "review_run_id": self.review_run_id,
            "submission_id": self.submission_id,
            "status": self.status.value,
            "from_cache": self.from_cache,
            "cost_usd": self.cost_usd,
        }


class ReviewPipeline:
    def __init__(
        self,
        *,
        cache: ReviewCache,
        cost_tracker: CostTracker,
        reviewer: Reviewer,
        session_factory: Callable[[], Session] = SessionLocal,
    ):
        self._cache = cache
        self._costs = cost_tracker
        self._reviewer = reviewer
        self._session_factory = session_factory

    def run(self, review_run_id: str, *, attempt: int = 1) -> ReviewOutcome | None:
        with self._session_factory() as session:
            run = find_review_run(session, review_run_id=review_run_id)
            if not run:
                log_event(
                    logger,
                    "review.run.missing",
                    level=logging.WARNING,
                    review_run_id=review_run_id,
                )
                return None

            if run.status.is_terminal:
                # At-least-once delivery: a finished run is never reprocessed.
                log_event(
                    logger,
                    "review.run.skipped",
                    review_run_id=review_run_id,
                    status=run.status.value,
                )
                return self._outcome(run)

            start = time.monotonic()
            mark_reviewing(session, run, attempt=attempt)
            log_event(
                logger,
                "review.run.start",
                review_run_id=review_run_id,
                submission_id=run.submission_id,
                model=run.model,
                attempt=attempt,
            )

            cached = self._cache.get(run.prompt, run.model)
            if cached is not None:
                mark_reviewed(session, run, result=cached, from_cache=True, cost_usd=0.0)
                log_event(
                    logger,
                    "review.run.finish",
                    review_run_id=review_run_id,
                    submission_id=run.submission_id,
                    from_cache=True,
                    duration_ms=monotonic_ms(start),
                )
                return self._outcome(run)

            set_progress(session, run, 30)
            response = self._reviewer.review(prompt=run.prompt, model=run.model)
            set_progress(session, run, 80)

            cost = self._costs.track_usage(
                model=response.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                submission_id=run.submission_id,
            )
            self._cache.set(run.prompt, response.result, run.model)
            self._warn_if_over_budget()

            mark_reviewed(session, run, result=response.result, from_cache=False, cost_usd=cost)
            log_event(
                logger,
                "review.run.finish",
                review_run_id=review_run_id,
                submission_id=run.submission_id,
                from_cache=False,
                cost=f"{cost:.6f}",
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                duration_ms=monotonic_ms(start),
            )
            return self._outcome(run)

    def fail(self, review_run_id: str, *, error_message: str) -> ReviewRun | None:
        """Mark a run terminally failed once the queue has given up on it."""
        with self._session_factory() as session:
            run = find_review_run(session, review_run_id=review_run_id)
            if not run or run.status.is_terminal:
                return run
            mark_error(session, run, error_message=error_message)
            session.refresh(run)
            session.expunge(run)
            return run

    def _warn_if_over_budget(self) -> None:
        try:
            self._costs.check_budget_status()
        except Exception:  # noqa: BLE001
            log_exception(logger, "cost.budget.check_failure")

    @staticmethod
    def _outcome(run: ReviewRun) -> ReviewOutcome:
        return ReviewOutcome(
            review_run_id=str(run.id),
            submission_id=run.submission_id,
            status=run.status,
            from_cache=run.from_cache,
            cost_usd=run.cost_usd or 0.0,
        )


def get_review_pipeline() -> ReviewPipeline:
    return ReviewPipeline(
        cache=get_review_cache(),
        cost_tracker=get_cost_tracker(),
        reviewer=get_reviewer(),
    )
