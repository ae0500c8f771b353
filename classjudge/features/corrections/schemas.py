from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class CorrectionView(BaseModel):
    id: int
    test_case_id: int
    submission_id: int
    status: str
    status_description: str
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    live: bool = True
