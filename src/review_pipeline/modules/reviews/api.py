from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from review_pipeline.core.db import db_session
from review_pipeline.core.logging import get_logger, log_event
from review_pipeline.modules.reviews.models import ReviewStatus
from review_pipeline.modules.reviews.schemas import (
    ReviewCreate,
    ReviewOut,
    ReviewRunOut,
    ReviewStatusOut,
)
from review_pipeline.modules.reviews.service import create_review_run, get_review_run, status_view
from review_pipeline.worker.tasks import review_submission_task

router = APIRouter(tags=["reviews"])
logger = get_logger(__name__)


@router.post(
    "/submissions/{submission_id}/reviews",
    response_model=ReviewRunOut,
    status_code=status.HTTP_202_ACCEPTED,
)
def request_review(
    submission_id: str,
    payload: ReviewCreate,
    session: Session = Depends(db_session),
) -> ReviewRunOut:
    run = create_review_run(
        session, submission_id=submission_id, prompt=payload.prompt, model=payload.model
    )
    async_result = review_submission_task.delay(str(run.id))
    log_event(
        logger,
        "celery.task.enqueued",
        task_name="review_submission",
        celery_task_id=async_result.id,
        submission_id=submission_id,
        review_run_id=str(run.id),
    )
    # Eager workers finish inline; report whatever state the run reached.
    session.refresh(run)
    return ReviewRunOut.model_validate(run, from_attributes=True)


@router.get("/reviews/{review_run_id}/status", response_model=ReviewStatusOut)
def get_review_status(
    review_run_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> ReviewStatusOut:
    run = get_review_run(session, review_run_id=review_run_id)
    return status_view(run)


@router.get("/reviews/{review_run_id}/run", response_model=ReviewRunOut)
def get_review_run_details(
    review_run_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> ReviewRunOut:
    run = get_review_run(session, review_run_id=review_run_id)
    return ReviewRunOut.model_validate(run, from_attributes=True)


@router.get("/reviews/{review_run_id}", response_model=ReviewOut)
def get_review(
    review_run_id: uuid.UUID,
    session: Session = Depends(db_session),
) -> ReviewOut:
    run = get_review_run(session, review_run_id=review_run_id)
    if run.status != ReviewStatus.REVIEWED or run.result_json is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Review is {run.status.value}",
        )
    return ReviewOut(
        id=run.id,
        submission_id=run.submission_id,
        model=run.model,
        from_cache=run.from_cache,
        review=run.result_json,
        completed_at=run.completed_at,
    )
