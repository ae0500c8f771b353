import sys
import os
from datetime import datetime, timezone

import pytest

# Ensure repo root on sys.path for imports like `classjudge...`
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

# Settings are read once at import time; pin a throwaway environment first
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RUN_EMBEDDED_WORKER", "false")
os.environ.setdefault("USE_REDIS_QUEUE", "false")

from classjudge.db.base import Base  # noqa: E402
import classjudge.db.models  # noqa: E402,F401
from classjudge.db.session import SessionLocal, engine  # noqa: E402
from classjudge.features.activities.models import Activity, Problem, TestCase  # noqa: E402
from classjudge.features.statuses.dictionary import JudgeStatus  # noqa: E402
from classjudge.features.statuses.repository import status_repository  # noqa: E402
from classjudge.features.submissions.models import Correction, Submission  # noqa: E402


FAR_FUTURE = datetime(2099, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def db():
    Base.metadata.create_all(engine)
    session = SessionLocal()
    status_repository.ensure_seeded(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture()
def session_factory(db):
    return SessionLocal


@pytest.fixture()
def make_activity(db):
    def _make(n_cases: int = 3, due_at: datetime = FAR_FUTURE, private=(), time_limit_ms: int = 2000):
        problem = Problem(title="Sum of two", time_limit_ms=time_limit_ms, memory_limit_kb=128000)
        db.add(problem)
        db.flush()
        for i in range(n_cases):
            db.add(TestCase(
                problem_id=problem.id,
                input=f"{i} {i}",
                expected_output=str(2 * i),
                is_private=i in private,
            ))
        activity = Activity(problem_id=problem.id, class_id=1, due_at=due_at)
        db.add(activity)
        db.commit()
        db.refresh(activity)
        return activity

    return _make


@pytest.fixture()
def make_submission(db):
    def _make(activity, user_id: int = 7, status: JudgeStatus = JudgeStatus.QUEUED, submitted_at=None, tokens=()):
        submission = Submission(
            user_id=user_id,
            activity_id=activity.id,
            source_code="int main(void){return 0;}",
            language_id=50,
            submitted_at=submitted_at or datetime(2024, 4, 30, 12, 0, tzinfo=timezone.utc),
            status_id=int(status),
        )
        db.add(submission)
        db.flush()
        cases = sorted(activity.problem.test_cases, key=lambda c: c.id)
        for token, case in zip(tokens, cases):
            token, case_status = token if isinstance(token, tuple) else (token, JudgeStatus.QUEUED)
            db.add(Correction(
                token=token,
                test_case_id=case.id,
                submission_id=submission.id,
                status_id=int(case_status),
            ))
        db.commit()
        db.refresh(submission)
        return submission

    return _make


@pytest.fixture()
def clock():
    return FakeClock()
