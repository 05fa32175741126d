from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from review_pipeline.core.models import Base, Timestamped, UUIDPrimaryKey


class ReviewStatus(str, enum.Enum):
    PENDING = "PENDING"
    REVIEWING = "REVIEWING"
    REVIEWED = "REVIEWED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self in {ReviewStatus.REVIEWED, ReviewStatus.ERROR}


class ReviewRun(UUIDPrimaryKey, Timestamped, Base):
    __tablename__ = "reviews_review_run"

    submission_id: Mapped[str] = mapped_column(String(64), index=True)
    status: Mapped[ReviewStatus] = mapped_column(Enum(ReviewStatus, native_enum=False), index=True)
    progress: Mapped[int] = mapped_column(Integer, default=0)

    model: Mapped[str] = mapped_column(String(100))
    prompt: Mapped[str] = mapped_column(Text)

    result_json: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    from_cache: Mapped[bool] = mapped_column(Boolean, default=False)
    cost_usd: Mapped[float | None] = mapped_column(Float, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
