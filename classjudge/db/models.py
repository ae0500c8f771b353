# Import all models here so Alembic and create_all can discover them
from classjudge.db.base import Base

# Status table first (referenced by submissions)
from classjudge.features.statuses.models import CorrectionStatus
from classjudge.features.activities.models import Problem, TestCase, Activity
from classjudge.features.submissions.models import Submission, Correction

__all__ = [
    "Base",
    "CorrectionStatus",
    "Problem",
    "TestCase",
    "Activity",
    "Submission",
    "Correction",
]
