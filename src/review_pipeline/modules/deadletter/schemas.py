from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from review_pipeline.core.periods import parse_timestamp, utc_now


class FailureCategory(str, enum.Enum):
    REVIEWER_ERROR = "reviewer_error"
    REVIEWER_TIMEOUT = "reviewer_timeout"
    RATE_LIMITED = "rate_limited"
    INVALID_RESPONSE = "invalid_response"
    STORE_ERROR = "store_error"
    UNKNOWN = "unknown"


class FailureReason(BaseModel):
    category: FailureCategory
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> FailureReason:
        raw = getattr(exc, "failure_category", None)
        try:
            category = FailureCategory(raw) if raw else FailureCategory.UNKNOWN
        except ValueError:
            category = FailureCategory.UNKNOWN
        return cls(category=category, message=str(exc) or type(exc).__name__)

    @classmethod
    def from_text(cls, text: str) -> FailureReason:
        """Categorise a legacy `"<type>: detail"` reason once, at the queue edge."""
        prefix, sep, detail = text.partition(":")
        try:
            category = FailureCategory(prefix.strip().lower())
        except ValueError:
            return cls(category=FailureCategory.UNKNOWN, message=text)
        return cls(category=category, message=detail.strip() if sep else text)

    def __str__(self) -> str:
        return f"{self.category.value}: {self.message}"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeadLetterJob(_CamelModel):
    original_job_id: str | None = None
    submission_id: str
    failure_reason: FailureReason
    failure_count: int = Field(ge=0)
    original_queue_name: str
    failed_at: datetime = Field(default_factory=utc_now)

    @field_validator("failure_reason", mode="before")
    @classmethod
    def _coerce_reason(cls, value: Any) -> Any:
        if isinstance(value, str):
            return FailureReason.from_text(value)
        return value

    @field_validator("failed_at", mode="before")
    @classmethod
    def _coerce_failed_at(cls, value: Any) -> Any:
        return parse_timestamp(value, default=utc_now())


class CriticalAlert(_CamelModel):
    submission_id: str
    failure_count: int
    failure_reason: str
    original_queue_name: str


class DeadLetterResult(BaseModel):
    processed: bool
    submission_id: str
    failure_count: int
    alerted: bool
