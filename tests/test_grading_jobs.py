import asyncio

import pytest
from sqlalchemy.exc import IntegrityError

from classjudge.core.config import get_settings
from classjudge.features.judge0.schemas import BatchResult, TokenAssignment
from classjudge.features.judge0.service import JudgeUnavailable
from classjudge.features.statuses.dictionary import JudgeStatus
from classjudge.features.submissions.models import Correction, Submission
from classjudge.jobs.grading import GradingPipeline, JobOutcome
from classjudge.jobs.queue import DispatchJob, MemoryJobQueue, PollJob

P = JudgeStatus.PROCESSING
AC = JudgeStatus.ACCEPTED
WA = JudgeStatus.WRONG_ANSWER


class FakeJudge:
    """Issues fixed tokens and replays one status map per poll round."""

    def __init__(self, tokens=("A", "B", "C"), rounds=()):
        self.tokens = list(tokens)
        self.rounds = list(rounds)
        self.submit_calls = 0
        self.fetch_calls = 0

    async def submit_batch(self, submission):
        self.submit_calls += 1
        case_ids = sorted(c.id for c in submission.activity.problem.test_cases)
        if not case_ids:
            return []
        return [TokenAssignment(token=t, test_case_id=i) for t, i in zip(self.tokens, case_ids)]

    async def fetch_batch_results(self, submission):
        self.fetch_calls += 1
        if not self.rounds:
            raise JudgeUnavailable("no scripted round")
        statuses = self.rounds[min(self.fetch_calls, len(self.rounds)) - 1]
        return [BatchResult(token=t, status=s) for t, s in statuses.items()]


def _pipeline(queue, judge, session_factory):
    return GradingPipeline(queue, judge=judge, session_factory=session_factory, settings=get_settings())


def _drain(pipeline, queue, clock):
    """Run every job to completion, jumping the clock to each job's ready time."""
    outcomes = []

    async def _run():
        while len(queue):
            clock.now = max(clock.now, queue.snapshot()[0][0])
            job = await queue.dequeue()
            outcomes.append(await pipeline.handle(job))
            await queue.ack(job)

    asyncio.run(_run())
    return outcomes


def _reload(session_factory, submission_id):
    with session_factory() as db:
        submission = db.get(Submission, submission_id)
        corrections = {
            c.token: JudgeStatus(c.status_id)
            for c in db.query(Correction).filter(Correction.submission_id == submission_id)
        }
        return JudgeStatus(submission.status_id), corrections


def test_dispatch_creates_queued_corrections_and_schedules_poll(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=3))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge()
    pipeline = _pipeline(queue, judge, session_factory)

    outcome = asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    assert outcome is JobOutcome.DISPATCHED
    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.PROCESSING
    assert corrections == {"A": JudgeStatus.QUEUED, "B": JudgeStatus.QUEUED, "C": JudgeStatus.QUEUED}
    [(ready_at, job)] = queue.snapshot()
    assert isinstance(job, PollJob)
    assert job.remaining_attempts == get_settings().grading_poll_max_attempts
    assert ready_at == clock.now + get_settings().grading_poll_delay_s


def test_dispatch_is_all_or_nothing_on_duplicate_tokens(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=2))
    queue = MemoryJobQueue(clock=clock)
    pipeline = _pipeline(queue, FakeJudge(tokens=("DUP", "DUP")), session_factory)

    with pytest.raises(IntegrityError):
        asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.QUEUED
    assert corrections == {}
    assert len(queue) == 0


def test_dispatch_judge_failure_propagates_and_keeps_submission_queued(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=2))

    class DownJudge(FakeJudge):
        async def submit_batch(self, submission):
            raise JudgeUnavailable("connection refused")

    pipeline = _pipeline(MemoryJobQueue(clock=clock), DownJudge(), session_factory)

    with pytest.raises(JudgeUnavailable):
        asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.QUEUED
    assert corrections == {}


def test_first_failure_short_circuits_polling(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=3))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(rounds=[{"A": AC, "B": WA, "C": P}])
    pipeline = _pipeline(queue, judge, session_factory)
    asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    outcomes = _drain(pipeline, queue, clock)

    assert outcomes == [JobOutcome.FAILED]
    assert judge.fetch_calls == 1
    assert len(queue) == 0
    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.WRONG_ANSWER
    assert corrections["A"] is JudgeStatus.ACCEPTED
    assert corrections["B"] is JudgeStatus.WRONG_ANSWER
    assert corrections["C"] is JudgeStatus.QUEUED


def test_lowest_test_case_failure_wins_regardless_of_judge_order(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=3))
    queue = MemoryJobQueue(clock=clock)
    # judge lists C before B; B has the lower test case id
    judge = FakeJudge(rounds=[{"C": JudgeStatus.COMPILE_ERROR, "A": AC, "B": JudgeStatus.RUNTIME_ERROR_NZEC}])
    pipeline = _pipeline(queue, judge, session_factory)
    asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    _drain(pipeline, queue, clock)

    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.RUNTIME_ERROR_NZEC
    assert corrections["C"] is JudgeStatus.QUEUED


def test_all_accepted_after_a_pending_round(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=3))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(rounds=[{"A": AC, "B": P, "C": P}, {"A": AC, "B": AC, "C": AC}])
    pipeline = _pipeline(queue, judge, session_factory)
    asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    outcomes = _drain(pipeline, queue, clock)

    assert outcomes == [JobOutcome.RESCHEDULED, JobOutcome.ACCEPTED]
    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.ACCEPTED
    assert set(corrections.values()) == {JudgeStatus.ACCEPTED}


def test_poll_budget_exhaustion_times_out(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=3))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(rounds=[{"A": P, "B": P, "C": P}])
    pipeline = _pipeline(queue, judge, session_factory)
    asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    outcomes = _drain(pipeline, queue, clock)

    max_attempts = get_settings().grading_poll_max_attempts
    assert judge.fetch_calls == max_attempts
    assert outcomes[-1] is JobOutcome.TIMED_OUT
    assert outcomes[:-1] == [JobOutcome.RESCHEDULED] * (max_attempts - 1)
    status, _ = _reload(session_factory, submission.id)
    assert status is JudgeStatus.TIME_LIMIT_EXCEEDED


def test_missing_token_in_round_counts_as_pending(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=2))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(tokens=("A", "B"), rounds=[{"A": AC}, {"A": AC, "B": AC}])
    pipeline = _pipeline(queue, judge, session_factory)
    asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    outcomes = _drain(pipeline, queue, clock)

    assert outcomes == [JobOutcome.RESCHEDULED, JobOutcome.ACCEPTED]


def test_unknown_token_is_skipped(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=2))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(tokens=("A", "B"), rounds=[{"ZZZ": WA, "A": AC, "B": AC}])
    pipeline = _pipeline(queue, judge, session_factory)
    asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    outcomes = _drain(pipeline, queue, clock)

    assert outcomes == [JobOutcome.ACCEPTED]
    status, corrections = _reload(session_factory, submission.id)
    assert status is JudgeStatus.ACCEPTED
    assert "ZZZ" not in corrections


def test_redelivered_dispatch_does_not_resubmit(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=3))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge()
    pipeline = _pipeline(queue, judge, session_factory)
    job = DispatchJob(submission_id=submission.id)

    first = asyncio.run(pipeline.handle(job))
    second = asyncio.run(pipeline.handle(job))

    assert (first, second) == (JobOutcome.DISPATCHED, JobOutcome.ALREADY_DISPATCHED)
    assert judge.submit_calls == 1
    _, corrections = _reload(session_factory, submission.id)
    assert len(corrections) == 3


def test_jobs_for_settled_submissions_are_skipped(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=1), status=JudgeStatus.ACCEPTED, tokens=(("A", AC),))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(rounds=[{"A": WA}])
    pipeline = _pipeline(queue, judge, session_factory)

    assert asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id))) is JobOutcome.SKIPPED
    assert asyncio.run(pipeline.handle(PollJob(submission_id=submission.id, remaining_attempts=3))) is JobOutcome.SKIPPED
    assert judge.submit_calls == 0
    assert judge.fetch_calls == 0
    assert len(queue) == 0


def test_dispatch_without_test_cases_is_internal_error(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=0))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge()
    pipeline = _pipeline(queue, judge, session_factory)

    outcome = asyncio.run(pipeline.handle(DispatchJob(submission_id=submission.id)))

    assert outcome is JobOutcome.NO_TEST_CASES
    assert judge.submit_calls == 0
    status, _ = _reload(session_factory, submission.id)
    assert status is JudgeStatus.INTERNAL_ERROR


def test_job_for_missing_submission_is_skipped(session_factory, clock):
    pipeline = _pipeline(MemoryJobQueue(clock=clock), FakeJudge(), session_factory)

    assert asyncio.run(pipeline.handle(DispatchJob(submission_id=404))) is JobOutcome.SKIPPED
    assert asyncio.run(pipeline.handle(PollJob(submission_id=404, remaining_attempts=1))) is JobOutcome.SKIPPED


def test_replaying_a_pending_round_is_idempotent(make_activity, make_submission, session_factory, clock):
    submission = make_submission(make_activity(n_cases=2), status=JudgeStatus.PROCESSING, tokens=("A", "B"))
    queue = MemoryJobQueue(clock=clock)
    judge = FakeJudge(tokens=("A", "B"), rounds=[{"A": AC, "B": P}])
    pipeline = _pipeline(queue, judge, session_factory)
    job = PollJob(submission_id=submission.id, remaining_attempts=5)

    first = asyncio.run(pipeline.handle(job))
    after_first = _reload(session_factory, submission.id)
    second = asyncio.run(pipeline.handle(job))
    after_second = _reload(session_factory, submission.id)

    assert first is second is JobOutcome.RESCHEDULED
    assert after_first == after_second == (JudgeStatus.PROCESSING, {"A": AC, "B": JudgeStatus.QUEUED})
    scheduled = [j for _, j in queue.snapshot()]
    assert [(type(j), j.submission_id, j.remaining_attempts) for j in scheduled] == [
        (PollJob, submission.id, 4),
        (PollJob, submission.id, 4),
    ]
