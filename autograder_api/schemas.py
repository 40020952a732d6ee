from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

from autograder_api.models import OutputFormat, OutputVisibility


class SubmissionResponse(BaseModel):
    grader_url: str
    grader_sha: str


class OutputBlock(BaseModel):
    output: str
    output_format: OutputFormat = OutputFormat.TEXT


class LintResult(BaseModel):
    status: Literal["pass", "fail"]
    output: str = ""
    output_format: OutputFormat = OutputFormat.TEXT


class GradedTestResult(BaseModel):
    name: str
    name_format: OutputFormat = OutputFormat.TEXT
    output: str = ""
    output_format: OutputFormat = OutputFormat.TEXT
    score: float | None = None
    max_score: float | None = None
    part: str | None = None
    hide_until_released: bool = False
    extra_data: dict[str, Any] | None = None


class AutograderFeedback(BaseModel):
    score: float | None = None
    max_score: float | None = None
    output: dict[OutputVisibility, OutputBlock] = Field(default_factory=dict)
    lint: LintResult
    tests: list[GradedTestResult] = Field(default_factory=list)


class GradingScriptResult(BaseModel):
    ret_code: int
    output: str = ""
    execution_time: float
    grader_sha: str
    action_repository: str | None = None
    action_ref: str | None = None
    feedback: AutograderFeedback


class FeedbackResponse(BaseModel):
    is_ok: bool
    message: str
    details_url: str
