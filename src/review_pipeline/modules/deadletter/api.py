from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Path, Query

from review_pipeline.modules.deadletter.service import (
    DeadLetterProcessor,
    get_dead_letter_processor,
)

router = APIRouter(tags=["dead-letter"])

_DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"


@router.get("/dead-letter/{date}/counts")
def failure_counts(
    date: str = Path(pattern=_DATE_PATTERN),
    processor: DeadLetterProcessor = Depends(get_dead_letter_processor),
) -> dict[str, int]:
    return processor.get_failure_counts(date)


@router.get("/dead-letter/{date}/log")
def failure_log(
    date: str = Path(pattern=_DATE_PATTERN),
    limit: int = Query(default=100, ge=1, le=1000),
    processor: DeadLetterProcessor = Depends(get_dead_letter_processor),
) -> list[dict[str, Any]]:
    return processor.get_failure_log(date, limit=limit)
