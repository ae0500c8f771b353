from pydantic import BaseModel
from typing import Optional

from classjudge.features.statuses.dictionary import JudgeStatus


class Judge0SubmissionRequest(BaseModel):
    source_code: str
    language_id: int
    stdin: Optional[str] = None
    expected_output: Optional[str] = None
    cpu_time_limit: Optional[float] = None
    memory_limit: Optional[int] = None


class TokenAssignment(BaseModel):
    """Judge token issued for one test case run."""
    token: str
    test_case_id: int


class BatchResult(BaseModel):
    token: str
    status: JudgeStatus
    compile_output: Optional[str] = None


class RunDetail(BaseModel):
    token: str
    status: JudgeStatus
    status_description: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    compile_output: Optional[str] = None
    message: Optional[str] = None
