from __future__ import annotations

from celery import Celery

from review_pipeline.core.config import settings

REVIEW_QUEUE = "reviews"
DEAD_LETTER_QUEUE = "dead-letter"


def make_celery() -> Celery:
    app = Celery("review_pipeline", broker=settings.redis_url, backend=settings.redis_url)
    app.conf.update(
        task_always_eager=settings.environment in {"dev", "test"},
        # Propagating would raise celery.exceptions.Retry out of an eager apply().
        task_eager_propagates=False,
        task_track_started=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        task_default_queue=REVIEW_QUEUE,
        task_routes={
            "review_submission": {"queue": REVIEW_QUEUE},
            "process_dead_letter": {"queue": DEAD_LETTER_QUEUE},
        },
    )
    app.autodiscover_tasks(["review_pipeline.worker.tasks"])
    return app


celery_app = make_celery()
