from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from review_pipeline.modules.reviews.models import ReviewStatus


class ReviewCreate(BaseModel):
    prompt: str = Field(min_length=1)
    model: str | None = None


class ReviewStatusOut(BaseModel):
    status: ReviewStatus
    progress: int = Field(ge=0, le=100)


class ReviewRunOut(BaseModel):
    id: uuid.UUID
    submission_id: str
    status: ReviewStatus
    progress: int
    model: str
    from_cache: bool
    cost_usd: float | None
    attempts: int
    error_message: str | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class ReviewOut(BaseModel):
    id: uuid.UUID
    submission_id: str
    model: str
    from_cache: bool
    review: dict[str, Any]
    completed_at: datetime | None
