"""
Prometheus metrics for the queue workers and the reviewer, scraped from `GET /metrics`.

Metrics live on the default registry, so each worker process exposes its own
series; multi-process aggregation is left to the scraper.
"""

from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, Counter, Histogram, generate_latest

JOB_BUCKETS = (1, 5, 10, 30, 60, 120, 300)

QUEUE_JOBS_COMPLETED = Counter(
    "queue_jobs_completed_total",
    "Total number of completed jobs",
    ["queue_name"],
)

QUEUE_JOBS_FAILED = Counter(
    "queue_jobs_failed_total",
    "Total number of failed job attempts",
    ["queue_name"],
)

QUEUE_JOB_DURATION = Histogram(
    "queue_job_duration_seconds",
    "Duration of queue job processing in seconds",
    ["queue_name", "job_type"],
    buckets=JOB_BUCKETS,
)

WORKER_JOB_PROCESSING_TIME = Histogram(
    "worker_job_processing_time_seconds",
    "Time taken to process a worker job",
    ["worker_name", "job_type"],
    buckets=JOB_BUCKETS,
)

LLM_LATENCY = Histogram(
    "llm_latency_seconds",
    "Reviewer API call latency in seconds",
    ["model"],
    buckets=(1, 5, 10, 30, 60),
)


def observe_job(
    *, queue_name: str, worker_name: str, job_type: str, duration_s: float, succeeded: bool
) -> None:
    if succeeded:
        QUEUE_JOBS_COMPLETED.labels(queue_name=queue_name).inc()
    else:
        QUEUE_JOBS_FAILED.labels(queue_name=queue_name).inc()
    QUEUE_JOB_DURATION.labels(queue_name=queue_name, job_type=job_type).observe(duration_s)
    WORKER_JOB_PROCESSING_TIME.labels(worker_name=worker_name, job_type=job_type).observe(
        duration_s
    )


def observe_llm_latency(*, model: str, duration_s: float) -> None:
    LLM_LATENCY.labels(model=model).observe(duration_s)


def prometheus_metrics_response() -> tuple[bytes, str]:
    """Return (body_bytes, content_type) for a Prometheus scrape."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
