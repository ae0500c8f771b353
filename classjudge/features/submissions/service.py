from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.orm import Session

from classjudge.core.config import get_settings
from classjudge.features.activities.repository import activity_repository
from classjudge.features.corrections.aggregator import aggregate
from classjudge.features.judge0.service import JudgeUnavailable, judge0_service
from classjudge.features.statuses.dictionary import JudgeStatus, lookup
from classjudge.jobs.queue import DispatchJob, JobQueue
from .models import Submission
from .repository import submissions_repository
from .schemas import (
    ActivitySubmissions,
    Pagination,
    StatusReport,
    SubmissionPage,
    SubmissionSummary,
)

logger = logging.getLogger(__name__)


class EligibilityError(ValueError):
    """Submission attempted at or after the activity's due date."""

    def __init__(self, activity_id: int, due_at: datetime, submitted_at: datetime):
        super().__init__(f"activity {activity_id} was due at {due_at.isoformat()}")
        self.activity_id = activity_id
        self.due_at = due_at
        self.submitted_at = submitted_at


class ActivityNotFound(LookupError):
    pass


class SubmissionNotFound(LookupError):
    pass


class SubmissionNotQueued(RuntimeError):
    """The dispatch job could not be enqueued; nothing was kept."""


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_before_due(due_at: datetime, submitted_at: datetime) -> bool:
    """Strict: a submission at the exact due instant is late."""
    return _as_utc(submitted_at) < _as_utc(due_at)


class SubmissionsService:
    def __init__(self, judge=None):
        self.judge = judge or judge0_service
        self.settings = get_settings()

    # -------- Intake --------
    async def create_submission(
        self,
        db: Session,
        user_id: int,
        activity_id: int,
        code: str,
        *,
        queue: JobQueue,
        submitted_at: Optional[datetime] = None,
    ) -> Submission:
        """Persist a queued submission and enqueue its dispatch job.

        Returns as soon as the job is enqueued; judging happens on a worker.
        If the enqueue fails the row is removed again and ``SubmissionNotQueued``
        is raised.
        """
        activity = activity_repository.get_activity(db, activity_id)
        if activity is None:
            raise ActivityNotFound(f"activity {activity_id} not found")

        submitted_at = _as_utc(submitted_at or datetime.now(timezone.utc))
        if not is_before_due(activity.due_at, submitted_at):
            logger.info(
                "submission.rejected_past_due user_id=%s activity_id=%s due_at=%s",
                user_id,
                activity_id,
                activity.due_at,
            )
            raise EligibilityError(activity_id, _as_utc(activity.due_at), submitted_at)

        submission = submissions_repository.add(db, Submission(
            user_id=user_id,
            activity_id=activity_id,
            source_code=code,
            language_id=self.settings.judge0_language_id,
            submitted_at=submitted_at,
            status_id=int(JudgeStatus.QUEUED),
        ))
        try:
            await queue.enqueue(DispatchJob(submission_id=submission.id))
        except Exception as exc:
            # A queued row without a dispatch job would never be graded
            logger.error("submission.enqueue_failed id=%s error=%s", submission.id, exc)
            submissions_repository.delete(db, submission)
            raise SubmissionNotQueued(f"submission could not be queued: {exc}") from exc
        logger.info("submission.created id=%s user_id=%s activity_id=%s", submission.id, user_id, activity_id)
        return submission

    # -------- Status --------
    @staticmethod
    def persisted_status(submission: Submission) -> StatusReport:
        return StatusReport(status=JudgeStatus(submission.status_id), live=False)

    async def compute_status(self, submission: Submission) -> StatusReport:
        """Live verdict straight from the judge, first non-accepted result wins.

        Raises ``JudgeUnavailable``; use ``status_with_fallback`` for user-facing reads.
        """
        if not submission.corrections:
            return self.persisted_status(submission)
        results = await self.judge.fetch_batch_results(submission)
        index = submissions_repository.corrections_by_token(submission)
        known = [r for r in results if r.token in index]
        for result in sorted(known, key=lambda r: index[r.token].test_case_id):
            if result.status == JudgeStatus.ACCEPTED:
                continue
            report = StatusReport(status=result.status)
            if result.status == JudgeStatus.WRONG_ANSWER:
                report.erroneous_test_case_id = index[result.token].test_case_id
            elif result.status == JudgeStatus.COMPILE_ERROR:
                report.compile_error = result.compile_output
            return report
        return StatusReport(status=JudgeStatus.ACCEPTED)

    async def status_with_fallback(self, submission: Submission) -> StatusReport:
        try:
            return await self.compute_status(submission)
        except JudgeUnavailable as exc:
            logger.error("submission.status_fallback id=%s error=%s", submission.id, exc)
            return self.persisted_status(submission)

    # -------- Reads --------
    @staticmethod
    def get_for_viewer(db: Session, submission_id: int, viewer) -> Submission:
        submission = submissions_repository.get(db, submission_id)
        if submission is None or not (viewer.is_staff or submission.user_id == viewer.id):
            raise SubmissionNotFound(f"submission {submission_id} not found")
        return submission

    @staticmethod
    def _summary(submission: Submission, status: JudgeStatus) -> SubmissionSummary:
        info = lookup(status)
        problem = submission.activity.problem if submission.activity else None
        return SubmissionSummary(
            id=submission.id,
            user_id=submission.user_id,
            activity_id=submission.activity_id,
            language_id=submission.language_id,
            submitted_at=_as_utc(submission.submitted_at),
            status=info.name,
            status_description=info.description,
            problem_title=problem.title if problem else None,
        )

    async def list_for_user(self, db: Session, user_id: int) -> List[SubmissionSummary]:
        summaries: List[SubmissionSummary] = []
        for submission in submissions_repository.list_for_user(db, user_id):
            report = await self.status_with_fallback(submission)
            summaries.append(self._summary(submission, report.status))
        return summaries

    async def list_for_user_activity(
        self, db: Session, user_id: int, activity_id: int, page: int = 1, per_page: int = 10
    ) -> SubmissionPage:
        items, total = submissions_repository.page_for_user_activity(db, user_id, activity_id, page, per_page)
        summaries: List[SubmissionSummary] = []
        for submission in items:
            report = await self.status_with_fallback(submission)
            summaries.append(self._summary(submission, report.status))
        return SubmissionPage(
            activity_id=activity_id,
            user_id=user_id,
            submissions=summaries,
            pagination=Pagination(
                page=page,
                per_page=per_page,
                total=total,
                last_page=max(1, math.ceil(total / per_page)),
            ),
        )

    def list_for_activity(self, db: Session, activity_id: int) -> ActivitySubmissions:
        """Staff view: every submission with its status aggregated from stored corrections."""
        if activity_repository.get_activity(db, activity_id) is None:
            raise ActivityNotFound(f"activity {activity_id} not found")
        summaries = [
            self._summary(s, aggregate(s, s.corrections))
            for s in submissions_repository.list_for_activity(db, activity_id)
        ]
        return ActivitySubmissions(activity_id=activity_id, total=len(summaries), submissions=summaries)


submissions_service = SubmissionsService()

__all__ = [
    "submissions_service",
    "SubmissionsService",
    "EligibilityError",
    "ActivityNotFound",
    "SubmissionNotFound",
    "SubmissionNotQueued",
    "is_before_due",
]
