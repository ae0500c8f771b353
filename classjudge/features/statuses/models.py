from sqlalchemy import Column, Integer, String
from classjudge.db.base import Base


class CorrectionStatus(Base):
    """Backing table for the status dictionary (FK target of submissions)."""
    __tablename__ = "correction_statuses"

    id = Column(Integer, primary_key=True, autoincrement=False)
    name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=False)

    def __repr__(self):
        return f"<CorrectionStatus(id={self.id}, name={self.name})>"
