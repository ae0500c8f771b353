from sqlalchemy import Column, String, Text, Integer, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from classjudge.db.base import Base
from classjudge.features.statuses.dictionary import JudgeStatus


class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    activity_id = Column(Integer, ForeignKey("activities.id"), nullable=False, index=True)
    source_code = Column(Text, nullable=False)
    language_id = Column(Integer, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=False)
    status_id = Column(
        Integer,
        ForeignKey("correction_statuses.id"),
        nullable=False,
        default=int(JudgeStatus.QUEUED),
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    activity = relationship("Activity")
    corrections = relationship(
        "Correction",
        back_populates="submission",
        order_by="Correction.test_case_id",
    )

    @property
    def status(self) -> JudgeStatus:
        return JudgeStatus(self.status_id)

    def __repr__(self):
        return f"<Submission(id={self.id}, status_id={self.status_id})>"


class Correction(Base):
    """Judged outcome of one test case for one submission."""
    __tablename__ = "corrections"

    id = Column(Integer, primary_key=True, index=True)
    token = Column(String(255), unique=True, nullable=False, index=True)
    test_case_id = Column(Integer, ForeignKey("test_cases.id"), nullable=False)
    submission_id = Column(Integer, ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True)
    status_id = Column(Integer, nullable=False, default=int(JudgeStatus.QUEUED))

    submission = relationship("Submission", back_populates="corrections")
    test_case = relationship("TestCase")

    @property
    def status(self) -> JudgeStatus:
        return JudgeStatus(self.status_id)

    def __repr__(self):
        return f"<Correction(id={self.id}, token={self.token}, status_id={self.status_id})>"
