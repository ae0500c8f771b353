"""Submission intake and status endpoints."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from classjudge.common.deps import CurrentUser, get_current_user
from classjudge.db.session import get_db
from classjudge.features.statuses.dictionary import lookup
from classjudge.jobs.queue import JobQueue, get_job_queue
from .schemas import (
    SubmissionCreate,
    SubmissionCreated,
    SubmissionPage,
    SubmissionRef,
    SubmissionStatusResponse,
    SubmissionSummary,
)
from .service import (
    ActivityNotFound,
    EligibilityError,
    SubmissionNotFound,
    SubmissionNotQueued,
    submissions_service,
)


router = APIRouter(prefix="/submissions", tags=["submissions"])


@router.post("", response_model=SubmissionCreated, status_code=status.HTTP_201_CREATED)
async def create_submission(
    payload: SubmissionCreate,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    queue: JobQueue = Depends(get_job_queue),
) -> SubmissionCreated:
    try:
        submission = await submissions_service.create_submission(
            db, current_user.id, payload.activity_id, payload.code, queue=queue
        )
    except ActivityNotFound as exc:
        raise HTTPException(status_code=404, detail="activity_not_found") from exc
    except EligibilityError as exc:
        raise HTTPException(status_code=422, detail="activity_past_due") from exc
    except SubmissionNotQueued as exc:
        raise HTTPException(status_code=503, detail="grading_queue_unavailable") from exc
    return SubmissionCreated(message="Submission created", submission=SubmissionRef(id=submission.id))


@router.get("", response_model=List[SubmissionSummary])
async def list_my_submissions(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[SubmissionSummary]:
    return await submissions_service.list_for_user(db, current_user.id)


@router.get("/activities/{activity_id}", response_model=SubmissionPage)
async def list_my_submissions_for_activity(
    activity_id: int,
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SubmissionPage:
    return await submissions_service.list_for_user_activity(db, current_user.id, activity_id, page, per_page)


@router.get("/{submission_id}", response_model=SubmissionStatusResponse)
async def get_submission_status(
    submission_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> SubmissionStatusResponse:
    try:
        submission = submissions_service.get_for_viewer(db, submission_id, current_user)
    except SubmissionNotFound as exc:
        raise HTTPException(status_code=404, detail="submission_not_found") from exc
    report = await submissions_service.status_with_fallback(submission)
    info = lookup(report.status)
    return SubmissionStatusResponse(
        status=info.name,
        description=info.description,
        erroneous_test_case_id=report.erroneous_test_case_id,
        compile_error=report.compile_error,
    )


