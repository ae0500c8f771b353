from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from classjudge.common.deps import CurrentUser, require_staff
from classjudge.db.session import get_db
from classjudge.features.submissions.schemas import ActivitySubmissions
from classjudge.features.submissions.service import ActivityNotFound, submissions_service


router = APIRouter(prefix="/activities", tags=["activities"])


@router.get("/{activity_id}/submissions", response_model=ActivitySubmissions)
def list_activity_submissions(
    activity_id: int,
    current_user: CurrentUser = Depends(require_staff()),
    db: Session = Depends(get_db),
) -> ActivitySubmissions:
    """Every submission for the activity, graded from stored corrections only."""
    try:
        return submissions_service.list_for_activity(db, activity_id)
    except ActivityNotFound as exc:
        raise HTTPException(status_code=404, detail="activity_not_found") from exc
