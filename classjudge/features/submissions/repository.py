from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session, selectinload

from classjudge.features.activities.models import Activity, Problem
from classjudge.features.judge0.schemas import TokenAssignment
from classjudge.features.statuses.dictionary import JudgeStatus
from .models import Correction, Submission

logger = logging.getLogger(__name__)


class TokenMismatch(LookupError):
    """The judge returned a token with no local correction."""

    def __init__(self, submission_id: int, token: str):
        super().__init__(f"no correction with token {token} for submission {submission_id}")
        self.submission_id = submission_id
        self.token = token


def _with_graph(query):
    return query.options(
        selectinload(Submission.corrections),
        selectinload(Submission.activity).selectinload(Activity.problem).selectinload(Problem.test_cases),
    )


class SubmissionsRepository:
    """Data access helpers for submissions and their corrections."""

    @staticmethod
    def get(db: Session, submission_id: int) -> Optional[Submission]:
        return _with_graph(db.query(Submission)).filter(Submission.id == submission_id).first()

    @staticmethod
    def add(db: Session, submission: Submission) -> Submission:
        db.add(submission)
        db.commit()
        db.refresh(submission)
        return submission

    @staticmethod
    def delete(db: Session, submission: Submission) -> None:
        db.delete(submission)
        db.commit()

    @staticmethod
    def list_for_user(db: Session, user_id: int) -> List[Submission]:
        return (
            _with_graph(db.query(Submission))
            .filter(Submission.user_id == user_id)
            .order_by(Submission.submitted_at.desc(), Submission.id.desc())
            .all()
        )

    @staticmethod
    def page_for_user_activity(
        db: Session, user_id: int, activity_id: int, page: int, per_page: int
    ) -> Tuple[List[Submission], int]:
        base = db.query(Submission).filter(
            Submission.user_id == user_id,
            Submission.activity_id == activity_id,
        )
        total = base.count()
        items = (
            _with_graph(base)
            .order_by(Submission.submitted_at.desc(), Submission.id.desc())
            .offset((page - 1) * per_page)
            .limit(per_page)
            .all()
        )
        return items, total

    @staticmethod
    def list_for_activity(db: Session, activity_id: int) -> List[Submission]:
        return (
            _with_graph(db.query(Submission))
            .filter(Submission.activity_id == activity_id)
            .order_by(Submission.submitted_at.desc(), Submission.id.desc())
            .all()
        )

    @staticmethod
    def set_status(db: Session, submission: Submission, status: JudgeStatus) -> None:
        submission.status_id = int(status)
        db.commit()

    @staticmethod
    def set_correction_status(db: Session, correction: Correction, status: JudgeStatus) -> None:
        correction.status_id = int(status)
        db.commit()

    @staticmethod
    def record_dispatch(db: Session, submission: Submission, assignments: Iterable[TokenAssignment]) -> List[Correction]:
        """Mark the submission processing and create one queued correction per token.

        Single transaction: on any failure nothing is kept and the error propagates.
        """
        try:
            submission.status_id = int(JudgeStatus.PROCESSING)
            created = [
                Correction(
                    token=a.token,
                    test_case_id=a.test_case_id,
                    submission_id=submission.id,
                    status_id=int(JudgeStatus.QUEUED),
                )
                for a in assignments
            ]
            db.add_all(created)
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(submission)
        return created

    @staticmethod
    def corrections_by_token(submission: Submission) -> Dict[str, Correction]:
        return {c.token: c for c in submission.corrections}

    @staticmethod
    def find_correction(index: Dict[str, Correction], submission_id: int, token: str) -> Correction:
        try:
            return index[token]
        except KeyError:
            raise TokenMismatch(submission_id, token) from None


submissions_repository = SubmissionsRepository()

__all__ = ["submissions_repository", "SubmissionsRepository", "TokenMismatch"]
