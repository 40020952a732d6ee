from __future__ import annotations

import math

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autograder_api.config import MAX_OUTPUT_BYTES, SNAPSHOT_TIMEOUT_SECONDS, WEBAPP_URL, workflow_ref_suffix
from autograder_api.errors import ConflictError, SecurityError, UserVisibleError
from autograder_api.integrity import require_grading_workflow
from autograder_api.models import (
    GraderResult,
    GraderResultOutput,
    GraderResultTest,
    OutputVisibility,
    Submission,
)
from autograder_api.observability import get_logger, log_event
from autograder_api.oidc import CIIdentity
from autograder_api.recorder import find_submission
from autograder_api.schemas import AutograderFeedback, FeedbackResponse, GradingScriptResult
from autograder_api.snapshots import RepositorySnapshotProvider, bounded

logger = get_logger("autograder.feedback")


def _truncate_output(text: str, limit: int = MAX_OUTPUT_BYTES) -> str:
    encoded = text.encode("utf-8", errors="replace")
    if len(encoded) <= limit:
        return text
    clipped = encoded[:limit].decode("utf-8", errors="ignore")
    return f"{clipped}\n...<truncated>"


def aggregate_scores(feedback: AutograderFeedback) -> tuple[float, float]:
    """Explicit totals win; otherwise sum the per-test values, missing counted as 0."""
    if feedback.score is not None:
        score = float(feedback.score)
    else:
        score = math.fsum(test.score or 0.0 for test in feedback.tests)

    if feedback.max_score is not None:
        max_score = float(feedback.max_score)
    else:
        max_score = math.fsum(test.max_score or 0.0 for test in feedback.tests)
    return score, max_score


def details_url(submission: Submission) -> str:
    return (
        f"{WEBAPP_URL}/course/{submission.class_id}/assignments/"
        f"{submission.assignment_id}/submissions/{submission.id}"
    )


def _build_rows(submission: Submission, result: GraderResult, feedback: AutograderFeedback) -> list[object]:
    rows: list[object] = []
    for visibility in OutputVisibility:
        block = feedback.output.get(visibility)
        if block is None:
            continue
        rows.append(
            GraderResultOutput(
                grader_result_id=result.id,
                visibility=visibility.value,
                format=block.output_format.value,
                output=_truncate_output(block.output),
                student_id=submission.user_id,
                class_id=submission.class_id,
            )
        )

    for position, test in enumerate(feedback.tests):
        rows.append(
            GraderResultTest(
                grader_result_id=result.id,
                position=position,
                name=test.name,
                name_format=test.name_format.value,
                output=_truncate_output(test.output),
                output_format=test.output_format.value,
                score=test.score,
                max_score=test.max_score,
                part=test.part,
                extra_data=test.extra_data,
                is_released=not test.hide_until_released,
                student_id=submission.user_id,
                class_id=submission.class_id,
            )
        )
    return rows


async def _resolve_action_sha(
    payload: GradingScriptResult,
    snapshots: RepositorySnapshotProvider,
    timeout_seconds: float,
) -> str | None:
    if payload.action_repository is None and payload.action_ref is None:
        return None
    if not payload.action_repository or not payload.action_ref:
        raise UserVisibleError("action_repository and action_ref must be sent together")
    return await bounded(
        snapshots.resolve_ref(payload.action_repository, payload.action_ref),
        timeout_seconds,
        "resolving the grading action",
    )


async def ingest_feedback(
    identity: CIIdentity,
    payload: GradingScriptResult,
    session: AsyncSession,
    snapshots: RepositorySnapshotProvider,
    timeout_seconds: float = SNAPSHOT_TIMEOUT_SECONDS,
) -> FeedbackResponse:
    require_grading_workflow(identity.workflow_ref, workflow_ref_suffix())

    submission = await find_submission(session, identity)
    if submission is None:
        raise SecurityError(
            "Feedback received for an unknown submission",
            repository=identity.repository,
            sha=identity.sha,
            run_number=identity.run_number,
            run_attempt=identity.attempt,
        )

    submission_id = submission.id
    existing = await session.scalar(select(GraderResult.id).where(GraderResult.submission_id == submission_id))
    if existing is not None:
        raise ConflictError(f"Submission {submission_id} already has a grader result")
    # No transaction stays open across the git host call below.
    await session.commit()

    action_sha = await _resolve_action_sha(payload, snapshots, timeout_seconds)

    feedback = payload.feedback
    score, max_score = aggregate_scores(feedback)
    result = GraderResult(
        submission_id=submission_id,
        ret_code=payload.ret_code,
        grader_sha=payload.grader_sha,
        grader_action_sha=action_sha,
        score=score,
        max_score=max_score,
        lint_passed=feedback.lint.status == "pass",
        lint_output=_truncate_output(feedback.lint.output),
        lint_output_format=feedback.lint.output_format.value,
        execution_time=payload.execution_time,
    )
    try:
        session.add(result)
        await session.flush()
        session.add_all(_build_rows(submission, result, feedback))
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise ConflictError(f"Submission {submission_id} already has a grader result") from exc
    except Exception:
        await session.rollback()
        raise

    log_event(
        logger,
        "feedback.recorded",
        submission_id=submission_id,
        grader_result_id=result.id,
        score=score,
        max_score=max_score,
        ret_code=payload.ret_code,
        grader_action_sha=action_sha,
        tests=len(feedback.tests),
        outputs=[visibility.value for visibility in OutputVisibility if visibility in feedback.output],
    )
    return FeedbackResponse(
        is_ok=True,
        message=f"Submission {submission_id} registered",
        details_url=details_url(submission),
    )
