from __future__ import annotations

import review_pipeline.worker.tasks  # noqa: F401
from review_pipeline.core.config import settings
from review_pipeline.worker.celery_app import DEAD_LETTER_QUEUE, REVIEW_QUEUE, celery_app

# Metric increments and failure-log trims for a day must not interleave.
DEAD_LETTER_CONCURRENCY = 1


def build_worker_argv(*, queue: str, concurrency: int, loglevel: str = "INFO") -> list[str]:
    return [
        "worker",
        "--queues",
        queue,
        "--concurrency",
        str(concurrency),
        "--prefetch-multiplier",
        "1",
        "--loglevel",
        loglevel,
        "--hostname",
        f"{queue}@%h",
    ]


def run_review_worker() -> None:
    celery_app.worker_main(
        build_worker_argv(queue=REVIEW_QUEUE, concurrency=settings.effective_review_concurrency())
    )


def run_dead_letter_worker() -> None:
    celery_app.worker_main(
        build_worker_argv(queue=DEAD_LETTER_QUEUE, concurrency=DEAD_LETTER_CONCURRENCY)
    )
