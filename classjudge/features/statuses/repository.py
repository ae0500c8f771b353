from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from .dictionary import all_statuses
from .models import CorrectionStatus

logger = logging.getLogger(__name__)


class StatusRepository:

    @staticmethod
    def ensure_seeded(db: Session) -> int:
        """Insert or refresh one row per dictionary entry. Returns rows written."""
        written = 0
        for info in all_statuses():
            row = db.get(CorrectionStatus, info.code)
            if row is None:
                db.add(CorrectionStatus(id=info.code, name=info.name, description=info.description))
                written += 1
            elif row.name != info.name or row.description != info.description:
                row.name = info.name
                row.description = info.description
                written += 1
        db.commit()
        if written:
            logger.info("status_table_seeded rows=%d", written)
        return written


status_repository = StatusRepository()

__all__ = ["status_repository", "StatusRepository"]
