"""create grading tables and seed correction statuses

Revision ID: c0a1b2d3e4f5
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "c0a1b2d3e4f5"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Frozen copy of the status dictionary at the time of this revision
_STATUSES = [
    (1, "In Queue", "The submission is waiting for a judge worker."),
    (2, "Processing", "The submission is being compiled and executed."),
    (3, "Accepted", "The program produced the expected output."),
    (4, "Wrong Answer", "The program output differs from the expected output."),
    (5, "Time Limit Exceeded", "The program did not finish within the allowed time."),
    (6, "Compilation Error", "The source code failed to compile."),
    (7, "Runtime Error (SIGSEGV)", "Segmentation fault: the program accessed invalid memory."),
    (8, "Runtime Error (SIGXFSZ)", "The program exceeded the output size limit."),
    (9, "Runtime Error (SIGFPE)", "Floating point exception, such as a division by zero."),
    (10, "Runtime Error (SIGABRT)", "The program aborted."),
    (11, "Runtime Error (NZEC)", "The program exited with a non-zero exit code."),
    (12, "Runtime Error (Other)", "The program failed at runtime."),
    (13, "Internal Error", "The judge failed to evaluate the submission."),
    (14, "Exec Format Error", "The compiled program could not be executed."),
]


def upgrade() -> None:
    statuses = op.create_table(
        "correction_statuses",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
    )
    op.bulk_insert(statuses, [{"id": i, "name": n, "description": d} for i, n, d in _STATUSES])

    op.create_table(
        "problems",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("time_limit_ms", sa.Integer(), nullable=False, server_default="1000"),
        sa.Column("memory_limit_kb", sa.Integer(), nullable=False, server_default="128000"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_table(
        "test_cases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("problem_id", sa.Integer(), sa.ForeignKey("problems.id", ondelete="CASCADE"), nullable=False),
        sa.Column("input", sa.Text(), nullable=False, server_default=""),
        sa.Column("expected_output", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_private", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_test_cases_problem_id", "test_cases", ["problem_id"])

    op.create_table(
        "activities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("problem_id", sa.Integer(), sa.ForeignKey("problems.id"), nullable=False),
        sa.Column("class_id", sa.Integer(), nullable=True),
        sa.Column("due_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_activities_problem_id", "activities", ["problem_id"])
    op.create_index("ix_activities_class_id", "activities", ["class_id"])

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("activity_id", sa.Integer(), sa.ForeignKey("activities.id"), nullable=False),
        sa.Column("source_code", sa.Text(), nullable=False),
        sa.Column("language_id", sa.Integer(), nullable=False),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status_id", sa.Integer(), sa.ForeignKey("correction_statuses.id"), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_submissions_id", "submissions", ["id"])
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"])
    op.create_index("ix_submissions_activity_id", "submissions", ["activity_id"])

    op.create_table(
        "corrections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("token", sa.String(length=255), nullable=False),
        sa.Column("test_case_id", sa.Integer(), sa.ForeignKey("test_cases.id"), nullable=False),
        sa.Column(
            "submission_id",
            sa.Integer(),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status_id", sa.Integer(), nullable=False, server_default="1"),
    )
    op.create_index("ix_corrections_id", "corrections", ["id"])
    op.create_index("ix_corrections_token", "corrections", ["token"], unique=True)
    op.create_index("ix_corrections_submission_id", "corrections", ["submission_id"])


def downgrade() -> None:
    op.drop_table("corrections")
    op.drop_table("submissions")
    op.drop_table("activities")
    op.drop_table("test_cases")
    op.drop_table("problems")
    op.drop_table("correction_statuses")
