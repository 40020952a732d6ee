from __future__ import annotations

from enum import StrEnum

from sqlalchemy import JSON, BigInteger, Boolean, CheckConstraint, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from autograder_api.db import Base


class OutputVisibility(StrEnum):
    HIDDEN = "hidden"
    VISIBLE = "visible"
    AFTER_DUE_DATE = "after_due_date"
    AFTER_PUBLISHED = "after_published"


class OutputFormat(StrEnum):
    TEXT = "text"
    MARKDOWN = "markdown"
    ANSI = "ansi"
    HTML = "html"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    username: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    repositories: Mapped[list["Repository"]] = relationship(back_populates="user", cascade="all, delete-orphan")


class Assignment(Base):
    __tablename__ = "assignments"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    class_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    submission_files: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    grader_config: Mapped["AssignmentGraderConfig | None"] = relationship(
        back_populates="assignment", cascade="all, delete-orphan", uselist=False
    )


class AssignmentGraderConfig(Base):
    __tablename__ = "grader_configs"

    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("assignments.id", ondelete="CASCADE"), primary_key=True
    )
    expected_workflow_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    grader_repository: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[DateTime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    assignment: Mapped["Assignment"] = relationship(back_populates="grader_config")


class Repository(Base):
    __tablename__ = "repositories"
    __table_args__ = (UniqueConstraint("assignment_id", "user_id", name="uq_repositories_assignment_user"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    repository: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user: Mapped["User"] = relationship(back_populates="repositories")
    assignment: Mapped["Assignment"] = relationship()


class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (
        UniqueConstraint(
            "repository", "sha", "run_number", "run_attempt", name="uq_submissions_repository_sha_run"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    assignment_id: Mapped[int] = mapped_column(
        ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    class_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    repository: Mapped[str] = mapped_column(String(255), nullable=False)
    sha: Mapped[str] = mapped_column(String(64), nullable=False)
    run_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    run_attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    files: Mapped[list["SubmissionFile"]] = relationship(back_populates="submission", cascade="all, delete-orphan")
    grader_result: Mapped["GraderResult | None"] = relationship(
        back_populates="submission", cascade="all, delete-orphan", uselist=False
    )


class SubmissionFile(Base):
    __tablename__ = "submission_files"
    __table_args__ = (UniqueConstraint("submission_id", "name", name="uq_submission_files_submission_name"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(1024), nullable=False)
    contents: Mapped[str] = mapped_column(Text, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    class_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    submission: Mapped["Submission"] = relationship(back_populates="files")


class GraderResult(Base):
    __tablename__ = "grader_results"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    submission_id: Mapped[int] = mapped_column(
        ForeignKey("submissions.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    ret_code: Mapped[int] = mapped_column(Integer, nullable=False)
    grader_sha: Mapped[str] = mapped_column(String(64), nullable=False)
    grader_action_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)
    score: Mapped[float] = mapped_column(Float, nullable=False)
    max_score: Mapped[float] = mapped_column(Float, nullable=False)
    lint_passed: Mapped[bool] = mapped_column(Boolean, nullable=False)
    lint_output: Mapped[str] = mapped_column(Text, nullable=False, default="")
    lint_output_format: Mapped[str] = mapped_column(String(20), nullable=False, default=OutputFormat.TEXT.value)
    execution_time: Mapped[float] = mapped_column(Float, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    submission: Mapped["Submission"] = relationship(back_populates="grader_result")
    outputs: Mapped[list["GraderResultOutput"]] = relationship(
        back_populates="grader_result", cascade="all, delete-orphan"
    )
    tests: Mapped[list["GraderResultTest"]] = relationship(
        back_populates="grader_result",
        cascade="all, delete-orphan",
        order_by="GraderResultTest.position",
    )


class GraderResultOutput(Base):
    __tablename__ = "grader_result_outputs"
    __table_args__ = (
        UniqueConstraint("grader_result_id", "visibility", name="uq_grader_result_outputs_result_visibility"),
        CheckConstraint(
            "visibility IN ('hidden','visible','after_due_date','after_published')",
            name="ck_grader_result_outputs_visibility",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    grader_result_id: Mapped[int] = mapped_column(
        ForeignKey("grader_results.id", ondelete="CASCADE"), nullable=False, index=True
    )
    visibility: Mapped[str] = mapped_column(String(20), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False, default=OutputFormat.TEXT.value)
    output: Mapped[str] = mapped_column(Text, nullable=False)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id: Mapped[int] = mapped_column(Integer, nullable=False)

    grader_result: Mapped["GraderResult"] = relationship(back_populates="outputs")


class GraderResultTest(Base):
    __tablename__ = "grader_result_tests"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    grader_result_id: Mapped[int] = mapped_column(
        ForeignKey("grader_results.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    name_format: Mapped[str] = mapped_column(String(20), nullable=False, default=OutputFormat.TEXT.value)
    output: Mapped[str] = mapped_column(Text, nullable=False, default="")
    output_format: Mapped[str] = mapped_column(String(20), nullable=False, default=OutputFormat.TEXT.value)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    part: Mapped[str | None] = mapped_column(String(255), nullable=True)
    extra_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    is_released: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    class_id: Mapped[int] = mapped_column(Integer, nullable=False)

    grader_result: Mapped["GraderResult"] = relationship(back_populates="tests")
