from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session, selectinload

from .models import Activity, Problem


class ActivityRepository:
    """Read-only access to activities and their problems."""

    @staticmethod
    def get_activity(db: Session, activity_id: int) -> Optional[Activity]:
        return (
            db.query(Activity)
            .options(selectinload(Activity.problem).selectinload(Problem.test_cases))
            .filter(Activity.id == activity_id)
            .first()
        )


activity_repository = ActivityRepository()

__all__ = ["activity_repository", "ActivityRepository"]
