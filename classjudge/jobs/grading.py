"""Grading pipeline jobs.

Dispatch
    Sends one judge run per test case, then marks the submission processing
    and creates its corrections in a single transaction.

Poll
    One bounded round against the judge. A round either settles the
    submission or re-enqueues itself with ``remaining_attempts - 1``; it never
    waits in-process. The first failing test case (in test case id order)
    decides the verdict and ends polling.

Both jobs are safe to redeliver. Database work runs on the threadpool so an
embedded worker does not stall the API event loop.
"""

from __future__ import annotations

import enum
import logging
import math
from typing import Callable, Optional, Union

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from classjudge.core.config import Settings, get_settings
from classjudge.features.judge0.service import JudgeUnavailable, judge0_service
from classjudge.features.statuses.dictionary import JudgeStatus, is_pending, is_terminal
from classjudge.features.submissions.repository import TokenMismatch, submissions_repository
from .queue import DispatchJob, JobQueue, PollJob

logger = logging.getLogger(__name__)


class JobOutcome(str, enum.Enum):
    DISPATCHED = "dispatched"
    ALREADY_DISPATCHED = "already_dispatched"
    NO_TEST_CASES = "no_test_cases"
    RESCHEDULED = "rescheduled"
    ACCEPTED = "accepted"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


class GradingPipeline:
    def __init__(
        self,
        queue: JobQueue,
        judge=None,
        session_factory: Optional[Callable[[], Session]] = None,
        settings: Optional[Settings] = None,
    ):
        self.queue = queue
        self.judge = judge or judge0_service
        if session_factory is None:
            from classjudge.db.session import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    async def handle(self, job: Union[DispatchJob, PollJob]) -> JobOutcome:
        if isinstance(job, PollJob):
            return await self.poll(job)
        return await self.dispatch(job)

    async def _schedule_poll(self, submission_id: int, remaining_attempts: int) -> None:
        await self.queue.enqueue(
            PollJob(submission_id=submission_id, remaining_attempts=remaining_attempts),
            delay_seconds=self.settings.grading_poll_delay_s,
        )

    # -------- Dispatch --------
    async def dispatch(self, job: DispatchJob) -> JobOutcome:
        with self.session_factory() as db:
            submission = await run_in_threadpool(submissions_repository.get, db, job.submission_id)
            if submission is None:
                logger.warning("grading.dispatch.missing submission_id=%s", job.submission_id)
                return JobOutcome.SKIPPED

            if is_terminal(submission.status):
                logger.info(
                    "grading.dispatch.terminal submission_id=%s status=%s", submission.id, submission.status.name
                )
                return JobOutcome.SKIPPED
            if submission.corrections:
                # Redelivered after a successful dispatch: only the poll chain is missing
                logger.info("grading.dispatch.already_done submission_id=%s", submission.id)
                await self._schedule_poll(submission.id, self.settings.grading_poll_max_attempts)
                return JobOutcome.ALREADY_DISPATCHED

            if not submission.activity.problem.test_cases:
                logger.warning(
                    "grading.dispatch.no_test_cases submission_id=%s problem_id=%s",
                    submission.id,
                    submission.activity.problem_id,
                )
                await run_in_threadpool(submissions_repository.set_status, db, submission, JudgeStatus.INTERNAL_ERROR)
                return JobOutcome.NO_TEST_CASES

            try:
                assignments = await self.judge.submit_batch(submission)
            except JudgeUnavailable as exc:
                logger.error("grading.dispatch.judge_failed submission_id=%s error=%s", submission.id, exc)
                raise

            try:
                await run_in_threadpool(submissions_repository.record_dispatch, db, submission, assignments)
            except SQLAlchemyError as exc:
                logger.error("grading.dispatch.persist_failed submission_id=%s error=%s", job.submission_id, exc)
                raise

            logger.info(
                "grading.dispatched submission_id=%s corrections=%d", job.submission_id, len(assignments)
            )
            await self._schedule_poll(job.submission_id, self.settings.grading_poll_max_attempts)
            return JobOutcome.DISPATCHED

    # -------- Poll --------
    async def poll(self, job: PollJob) -> JobOutcome:
        with self.session_factory() as db:
            submission = await run_in_threadpool(submissions_repository.get, db, job.submission_id)
            if submission is None:
                logger.warning("grading.poll.missing submission_id=%s", job.submission_id)
                return JobOutcome.SKIPPED
            if is_terminal(submission.status):
                return JobOutcome.SKIPPED
            if not submission.corrections:
                logger.warning("grading.poll.no_corrections submission_id=%s", submission.id)
                return JobOutcome.SKIPPED

            try:
                results = await self.judge.fetch_batch_results(submission)
            except JudgeUnavailable as exc:
                logger.error(
                    "grading.poll.judge_failed submission_id=%s remaining=%d error=%s",
                    submission.id,
                    job.remaining_attempts,
                    exc,
                )
                raise

            verdict = await run_in_threadpool(self._apply_round, db, submission, results)
            if verdict is not None:
                return verdict

            remaining = job.remaining_attempts - 1
            if remaining <= 0:
                logger.warning("grading.poll.budget_exhausted submission_id=%s", job.submission_id)
                await run_in_threadpool(
                    submissions_repository.set_status, db, submission, JudgeStatus.TIME_LIMIT_EXCEEDED
                )
                return JobOutcome.TIMED_OUT
            await self._schedule_poll(job.submission_id, remaining)
            return JobOutcome.RESCHEDULED

    @staticmethod
    def _apply_round(db: Session, submission, results) -> Optional[JobOutcome]:
        """Persist one round of judge results. Returns None while verdicts are still pending."""
        submission_id = submission.id
        index = submissions_repository.corrections_by_token(submission)

        def _order(result):
            correction = index.get(result.token)
            return correction.test_case_id if correction is not None else math.inf

        has_pending = False
        seen = set()
        for result in sorted(results, key=_order):
            try:
                correction = submissions_repository.find_correction(index, submission_id, result.token)
            except TokenMismatch as exc:
                logger.warning("grading.poll.token_mismatch submission_id=%s token=%s", exc.submission_id, exc.token)
                continue
            seen.add(result.token)

            if is_pending(result.status):
                has_pending = True
                continue
            if result.status != JudgeStatus.ACCEPTED:
                submissions_repository.set_correction_status(db, correction, result.status)
                submissions_repository.set_status(db, submission, result.status)
                logger.info(
                    "grading.poll.failed submission_id=%s test_case_id=%s status=%s",
                    submission_id,
                    correction.test_case_id,
                    result.status.name,
                )
                return JobOutcome.FAILED
            if correction.status_id != int(JudgeStatus.ACCEPTED):
                submissions_repository.set_correction_status(db, correction, result.status)

        # A correction the judge left out of this round has no verdict yet
        if any(token not in seen and not is_terminal(c.status) for token, c in index.items()):
            has_pending = True
        if has_pending:
            return None

        submissions_repository.set_status(db, submission, JudgeStatus.ACCEPTED)
        logger.info("grading.poll.accepted submission_id=%s", submission_id)
        return JobOutcome.ACCEPTED

    # -------- Abandoned jobs --------
    async def give_up(self, job: Union[DispatchJob, PollJob]) -> None:
        """Settle the submission of a job the queue will not retry again.

        A poll that kept failing ends as time-limit-exceeded, a dispatch as
        internal-error. Submissions that already settled are left alone.
        """
        status = JudgeStatus.TIME_LIMIT_EXCEEDED if isinstance(job, PollJob) else JudgeStatus.INTERNAL_ERROR
        with self.session_factory() as db:
            settled = await run_in_threadpool(self._settle_abandoned, db, job.submission_id, status)
        if settled:
            logger.warning(
                "grading.gave_up kind=%s submission_id=%s status=%s", job.kind, job.submission_id, status.name
            )

    @staticmethod
    def _settle_abandoned(db: Session, submission_id: int, status: JudgeStatus) -> bool:
        submission = submissions_repository.get(db, submission_id)
        if submission is None or is_terminal(submission.status):
            return False
        submissions_repository.set_status(db, submission, status)
        return True


__all__ = ["GradingPipeline", "JobOutcome"]
