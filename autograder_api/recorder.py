from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from autograder_api.errors import SecurityError, UserVisibleError
from autograder_api.extraction import ExtractedFile
from autograder_api.models import Assignment, AssignmentGraderConfig, Repository, Submission, SubmissionFile
from autograder_api.oidc import CIIdentity


@dataclass(frozen=True)
class RepositoryOwner:
    user_id: int
    assignment_id: int
    class_id: int
    submission_files: list[str]


async def resolve_repository(session: AsyncSession, repository: str) -> RepositoryOwner:
    row = await session.execute(
        select(Repository, Assignment)
        .join(Assignment, Assignment.id == Repository.assignment_id)
        .where(Repository.repository == repository)
    )
    result = row.first()
    if result is None:
        raise SecurityError("Repository is not registered for any assignment", repository=repository)

    repo, assignment = result
    return RepositoryOwner(
        user_id=repo.user_id,
        assignment_id=repo.assignment_id,
        class_id=assignment.class_id,
        submission_files=list(assignment.submission_files or []),
    )


async def load_grader_config(session: AsyncSession, assignment_id: int) -> AssignmentGraderConfig:
    config = await session.scalar(
        select(AssignmentGraderConfig).where(AssignmentGraderConfig.assignment_id == assignment_id)
    )
    if config is None:
        raise UserVisibleError("Grader config not found for this assignment")
    if not config.grader_repository:
        raise UserVisibleError(
            "This assignment is not configured to use an autograder. "
            "Please let your instructor know that there is no grader repository configured."
        )
    return config


async def find_submission(session: AsyncSession, identity: CIIdentity) -> Submission | None:
    return await session.scalar(
        select(Submission).where(
            Submission.repository == identity.repository,
            Submission.sha == identity.sha,
            Submission.run_number == identity.run_number,
            Submission.run_attempt == identity.attempt,
        )
    )


def ensure_same_owner(existing: Submission, owner: RepositoryOwner) -> None:
    """A replayed CI run is only accepted when it maps to the same student and assignment."""
    if existing.user_id != owner.user_id or existing.assignment_id != owner.assignment_id:
        raise SecurityError(
            "CI run identity already recorded for a different owner",
            submission_id=existing.id,
            repository=existing.repository,
            sha=existing.sha,
        )


async def record_submission(
    session: AsyncSession,
    identity: CIIdentity,
    owner: RepositoryOwner,
    files: list[ExtractedFile],
) -> tuple[Submission, bool]:
    """Insert the Submission and its files in one transaction.

    Returns ``(submission, created)``. When a concurrent request recorded the
    same CI identity first, the unique constraint fires, nothing of ours is
    kept and the winner's row is returned with ``created=False``.
    """
    submission = Submission(
        user_id=owner.user_id,
        assignment_id=owner.assignment_id,
        class_id=owner.class_id,
        repository=identity.repository,
        sha=identity.sha,
        run_number=identity.run_number,
        run_attempt=identity.attempt,
    )
    try:
        session.add(submission)
        await session.flush()
        session.add_all(
            [
                SubmissionFile(
                    submission_id=submission.id,
                    name=file.name,
                    contents=file.contents,
                    user_id=owner.user_id,
                    class_id=owner.class_id,
                )
                for file in files
            ]
        )
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await find_submission(session, identity)
        if existing is None:
            raise
        ensure_same_owner(existing, owner)
        return existing, False
    except Exception:
        await session.rollback()
        raise

    await session.refresh(submission)
    return submission, True
