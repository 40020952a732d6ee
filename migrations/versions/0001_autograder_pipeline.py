"""create autograder intake and feedback tables

Revision ID: 0001_autograder_pipeline
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_autograder_pipeline"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

VISIBILITY_CHECK = "visibility IN ('hidden','visible','after_due_date','after_published')"


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    op.create_table(
        "assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("class_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("submission_files", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_assignments_class_id", "assignments", ["class_id"], unique=False)

    op.create_table(
        "grader_configs",
        sa.Column(
            "assignment_id",
            sa.Integer(),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("expected_workflow_digest", sa.String(length=64), nullable=False),
        sa.Column("grader_repository", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "repositories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "assignment_id",
            sa.Integer(),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("repository", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("assignment_id", "user_id", name="uq_repositories_assignment_user"),
    )
    op.create_index("ix_repositories_repository", "repositories", ["repository"], unique=True)
    op.create_index("ix_repositories_assignment_id", "repositories", ["assignment_id"], unique=False)
    op.create_index("ix_repositories_user_id", "repositories", ["user_id"], unique=False)

    op.create_table(
        "submissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "assignment_id",
            sa.Integer(),
            sa.ForeignKey("assignments.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("class_id", sa.Integer(), nullable=False),
        sa.Column("repository", sa.String(length=255), nullable=False),
        sa.Column("sha", sa.String(length=64), nullable=False),
        sa.Column("run_number", sa.BigInteger(), nullable=False),
        sa.Column("run_attempt", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint(
            "repository", "sha", "run_number", "run_attempt", name="uq_submissions_repository_sha_run"
        ),
    )
    op.create_index("ix_submissions_user_id", "submissions", ["user_id"], unique=False)
    op.create_index("ix_submissions_assignment_id", "submissions", ["assignment_id"], unique=False)
    op.create_index("ix_submissions_class_id", "submissions", ["class_id"], unique=False)

    op.create_table(
        "submission_files",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "submission_id",
            sa.Integer(),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=1024), nullable=False),
        sa.Column("contents", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("class_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("submission_id", "name", name="uq_submission_files_submission_name"),
    )
    op.create_index("ix_submission_files_submission_id", "submission_files", ["submission_id"], unique=False)

    op.create_table(
        "grader_results",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "submission_id",
            sa.Integer(),
            sa.ForeignKey("submissions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("ret_code", sa.Integer(), nullable=False),
        sa.Column("grader_sha", sa.String(length=64), nullable=False),
        sa.Column("grader_action_sha", sa.String(length=64), nullable=True),
        sa.Column("score", sa.Float(), nullable=False),
        sa.Column("max_score", sa.Float(), nullable=False),
        sa.Column("lint_passed", sa.Boolean(), nullable=False),
        sa.Column("lint_output", sa.Text(), nullable=False, server_default=""),
        sa.Column("lint_output_format", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("execution_time", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_grader_results_submission_id", "grader_results", ["submission_id"], unique=True)

    op.create_table(
        "grader_result_outputs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "grader_result_id",
            sa.Integer(),
            sa.ForeignKey("grader_results.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("visibility", sa.String(length=20), nullable=False),
        sa.Column("format", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("output", sa.Text(), nullable=False),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("class_id", sa.Integer(), nullable=False),
        sa.UniqueConstraint("grader_result_id", "visibility", name="uq_grader_result_outputs_result_visibility"),
        sa.CheckConstraint(VISIBILITY_CHECK, name="ck_grader_result_outputs_visibility"),
    )
    op.create_index(
        "ix_grader_result_outputs_grader_result_id", "grader_result_outputs", ["grader_result_id"], unique=False
    )
    op.create_index("ix_grader_result_outputs_student_id", "grader_result_outputs", ["student_id"], unique=False)

    op.create_table(
        "grader_result_tests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "grader_result_id",
            sa.Integer(),
            sa.ForeignKey("grader_results.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("name_format", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("output", sa.Text(), nullable=False, server_default=""),
        sa.Column("output_format", sa.String(length=20), nullable=False, server_default="text"),
        sa.Column("score", sa.Float(), nullable=True),
        sa.Column("max_score", sa.Float(), nullable=True),
        sa.Column("part", sa.String(length=255), nullable=True),
        sa.Column("extra_data", sa.JSON(), nullable=True),
        sa.Column("is_released", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("student_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("class_id", sa.Integer(), nullable=False),
    )
    op.create_index(
        "ix_grader_result_tests_grader_result_id", "grader_result_tests", ["grader_result_id"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_grader_result_tests_grader_result_id", table_name="grader_result_tests")
    op.drop_table("grader_result_tests")

    op.drop_index("ix_grader_result_outputs_student_id", table_name="grader_result_outputs")
    op.drop_index("ix_grader_result_outputs_grader_result_id", table_name="grader_result_outputs")
    op.drop_table("grader_result_outputs")

    op.drop_index("ix_grader_results_submission_id", table_name="grader_results")
    op.drop_table("grader_results")

    op.drop_index("ix_submission_files_submission_id", table_name="submission_files")
    op.drop_table("submission_files")

    op.drop_index("ix_submissions_class_id", table_name="submissions")
    op.drop_index("ix_submissions_assignment_id", table_name="submissions")
    op.drop_index("ix_submissions_user_id", table_name="submissions")
    op.drop_table("submissions")

    op.drop_index("ix_repositories_user_id", table_name="repositories")
    op.drop_index("ix_repositories_assignment_id", table_name="repositories")
    op.drop_index("ix_repositories_repository", table_name="repositories")
    op.drop_table("repositories")

    op.drop_table("grader_configs")

    op.drop_index("ix_assignments_class_id", table_name="assignments")
    op.drop_table("assignments")

    op.drop_index("ix_users_username", table_name="users")
    op.drop_table("users")
