"""Problems, test cases and activities.

Owned by the course-management side of the platform; the grading pipeline
only reads them.
"""

from sqlalchemy import Column, String, Text, Integer, DateTime, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from classjudge.db.base import Base


class Problem(Base):
    __tablename__ = "problems"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    time_limit_ms = Column(Integer, nullable=False, default=1000)
    memory_limit_kb = Column(Integer, nullable=False, default=128000)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    test_cases = relationship("TestCase", back_populates="problem", order_by="TestCase.id")

    def __repr__(self):
        return f"<Problem(id={self.id}, title={self.title})>"


class TestCase(Base):
    __tablename__ = "test_cases"
    __test__ = False  # keep pytest from collecting this class

    id = Column(Integer, primary_key=True)
    problem_id = Column(Integer, ForeignKey("problems.id", ondelete="CASCADE"), nullable=False, index=True)
    input = Column(Text, nullable=False, default="")
    expected_output = Column(Text, nullable=False, default="")
    is_private = Column(Boolean, nullable=False, default=False)

    problem = relationship("Problem", back_populates="test_cases")

    def __repr__(self):
        return f"<TestCase(id={self.id}, problem_id={self.problem_id})>"


class Activity(Base):
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True)
    problem_id = Column(Integer, ForeignKey("problems.id"), nullable=False, index=True)
    class_id = Column(Integer, nullable=True, index=True)
    due_at = Column(DateTime(timezone=True), nullable=False)

    problem = relationship("Problem")

    def __repr__(self):
        return f"<Activity(id={self.id}, due_at={self.due_at})>"
