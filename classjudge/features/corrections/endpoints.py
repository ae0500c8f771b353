from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from classjudge.common.deps import CurrentUser, get_current_user
from classjudge.db.session import get_db
from classjudge.features.submissions.service import SubmissionNotFound, submissions_service
from .schemas import CorrectionView
from .service import corrections_service


router = APIRouter(prefix="/corrections", tags=["corrections"])


@router.get("/submissions/{submission_id}", response_model=List[CorrectionView])
async def list_submission_corrections(
    submission_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> List[CorrectionView]:
    try:
        submission = submissions_service.get_for_viewer(db, submission_id, current_user)
    except SubmissionNotFound as exc:
        raise HTTPException(status_code=404, detail="submission_not_found") from exc
    return await corrections_service.list_for_submission(db, submission, current_user)
