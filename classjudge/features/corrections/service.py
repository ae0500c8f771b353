from __future__ import annotations

import logging
from typing import List

from sqlalchemy.orm import Session

from classjudge.features.judge0.service import JudgeUnavailable, judge0_service
from classjudge.features.statuses.dictionary import lookup
from classjudge.features.submissions.models import Submission
from classjudge.features.submissions.repository import submissions_repository
from .schemas import CorrectionView

logger = logging.getLogger(__name__)


class CorrectionsService:
    def __init__(self, judge=None):
        self.judge = judge or judge0_service

    async def list_for_submission(self, db: Session, submission: Submission, viewer) -> List[CorrectionView]:
        """Per-test-case verdicts with decoded output, refreshed from the judge.

        Stored statuses are updated with what the judge reports. Output of
        private test cases is only shown to staff. Tokens never leave the service.
        """
        views: List[CorrectionView] = []
        for correction in submission.corrections:
            hide_output = bool(correction.test_case and correction.test_case.is_private) and not viewer.is_staff
            try:
                detail = await self.judge.fetch_single(correction.token)
            except JudgeUnavailable as exc:
                logger.error("correction.detail_fallback id=%s error=%s", correction.id, exc)
                info = lookup(correction.status_id)
                views.append(CorrectionView(
                    id=correction.id,
                    test_case_id=correction.test_case_id,
                    submission_id=correction.submission_id,
                    status=info.name,
                    status_description=info.description,
                    live=False,
                ))
                continue

            if correction.status_id != int(detail.status):
                submissions_repository.set_correction_status(db, correction, detail.status)
            info = lookup(detail.status)
            views.append(CorrectionView(
                id=correction.id,
                test_case_id=correction.test_case_id,
                submission_id=correction.submission_id,
                status=info.name,
                status_description=info.description,
                stdout=None if hide_output else detail.stdout,
                stderr=None if hide_output else detail.stderr,
            ))
        return views


corrections_service = CorrectionsService()

__all__ = ["corrections_service", "CorrectionsService"]
