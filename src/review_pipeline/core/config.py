from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    environment: str = "dev"
    base_url: str = "http://localhost:8000"

    database_url: str = "sqlite:///./review_pipeline.db"
    redis_url: str = "redis://localhost:6379/0"
    kv_backend: Literal["redis", "memory"] = "redis"

    cache_ttl_seconds: int = 3600
    cache_metrics_retention_days: int = 30

    monthly_budget_usd: float = 100.0
    budget_warning_ratio: float = 0.8

    reviewer_base_url: str = "https://api.groq.com/openai/v1"
    reviewer_api_key: str | None = None
    reviewer_model: str = "mixtral-8x7b-32768"
    reviewer_timeout_seconds: float = 60.0
    reviewer_max_tokens: int = 2000

    review_max_attempts: int = 3
    review_backoff_base_seconds: float = 2.0
    review_worker_concurrency: int | None = None

    dlq_alert_threshold: int = 3
    dlq_log_max_entries: int = 10_000
    dlq_retention_days: int = 30
    dlq_retry_delay_seconds: int = 60
    dlq_max_retries: int = 5

    alert_webhook_url: str | None = None
    alert_timeout_seconds: float = 10.0

    poll_interval_seconds: float = 2.0
    poll_max_consecutive_errors: int = 3

    def effective_review_concurrency(self) -> int:
        if self.review_worker_concurrency:
            return self.review_worker_concurrency
        return 3 if self.environment == "production" else 1


settings = Settings()
