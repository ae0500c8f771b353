from __future__ import annotations

from typing import List

from fastapi import APIRouter
from pydantic import BaseModel

from .dictionary import all_statuses


router = APIRouter(prefix="/statuses", tags=["statuses"])


class StatusInfoSchema(BaseModel):
    id: int
    name: str
    description: str


@router.get("", response_model=List[StatusInfoSchema])
async def list_statuses() -> List[StatusInfoSchema]:
    return [StatusInfoSchema(id=s.code, name=s.name, description=s.description) for s in all_statuses()]
