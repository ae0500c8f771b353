from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from classjudge.core.config import get_settings
from classjudge.features.statuses.dictionary import JudgeStatus


class SubmissionCreate(BaseModel):
    code: str
    activity_id: int

    @field_validator("code")
    @classmethod
    def _code_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("code must not be blank")
        limit = get_settings().max_code_length
        if len(value) > limit:
            raise ValueError(f"code must be at most {limit} characters")
        return value


class SubmissionRef(BaseModel):
    id: int


class SubmissionCreated(BaseModel):
    message: str
    submission: SubmissionRef


class StatusReport(BaseModel):
    """Verdict as seen by a status query."""
    status: JudgeStatus
    erroneous_test_case_id: Optional[int] = None
    compile_error: Optional[str] = None
    live: bool = True


class SubmissionStatusResponse(BaseModel):
    status: str
    description: str
    erroneous_test_case_id: Optional[int] = None
    compile_error: Optional[str] = None


class SubmissionSummary(BaseModel):
    id: int
    user_id: int
    activity_id: int
    language_id: int
    submitted_at: datetime
    status: str
    status_description: str
    problem_title: Optional[str] = None


class Pagination(BaseModel):
    page: int
    per_page: int
    total: int
    last_page: int


class SubmissionPage(BaseModel):
    activity_id: int
    user_id: int
    submissions: List[SubmissionSummary]
    pagination: Pagination


class ActivitySubmissions(BaseModel):
    activity_id: int
    total: int
    submissions: List[SubmissionSummary]
