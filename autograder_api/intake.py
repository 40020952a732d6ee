"""Submission intake: from a verified CI identity to a recorded Submission."""

from __future__ import annotations

import asyncio

from sqlalchemy.ext.asyncio import AsyncSession

from autograder_api.archive import SnapshotArchive
from autograder_api.config import SNAPSHOT_TIMEOUT_SECONDS, WORKFLOW_PATH, workflow_ref_suffix
from autograder_api.extraction import ExtractedFile, extract_submission_files
from autograder_api.integrity import require_grading_workflow, verify_workflow
from autograder_api.observability import get_logger, log_event
from autograder_api.oidc import CIIdentity
from autograder_api.recorder import (
    ensure_same_owner,
    find_submission,
    load_grader_config,
    record_submission,
    resolve_repository,
)
from autograder_api.schemas import SubmissionResponse
from autograder_api.snapshots import RepositorySnapshotProvider, bounded

logger = get_logger("autograder.intake")


def inspect_snapshot(
    raw: bytes,
    expected_workflow_digest: str,
    declared_files: list[str],
    workflow_path: str = WORKFLOW_PATH,
) -> tuple[str, list[ExtractedFile]]:
    with SnapshotArchive.from_bytes(raw) as archive:
        digest = verify_workflow(archive, expected_workflow_digest, workflow_path)
        files = extract_submission_files(archive, declared_files)
    return digest, files


async def intake_submission(
    identity: CIIdentity,
    session: AsyncSession,
    snapshots: RepositorySnapshotProvider,
    timeout_seconds: float = SNAPSHOT_TIMEOUT_SECONDS,
) -> SubmissionResponse:
    require_grading_workflow(identity.workflow_ref, workflow_ref_suffix())

    owner = await resolve_repository(session, identity.repository)
    config = await load_grader_config(session, owner.assignment_id)
    expected_digest = config.expected_workflow_digest
    grader_repository = str(config.grader_repository)

    existing = await find_submission(session, identity)
    existing_id = None
    if existing is not None:
        ensure_same_owner(existing, owner)
        existing_id = existing.id
    # No transaction stays open across the git host calls below.
    await session.commit()

    if existing_id is not None:
        grader = await bounded(snapshots.grader_download(grader_repository), timeout_seconds, "resolving grader")
        log_event(
            logger,
            "submission.replayed",
            submission_id=existing_id,
            repository=identity.repository,
            sha=identity.sha,
            run_number=identity.run_number,
            run_attempt=identity.attempt,
        )
        return SubmissionResponse(grader_url=grader.url, grader_sha=grader.sha)

    raw = await bounded(
        snapshots.fetch_archive(identity.repository, identity.sha),
        timeout_seconds,
        "downloading the repository snapshot",
    )
    digest, files = await asyncio.to_thread(inspect_snapshot, raw, expected_digest, owner.submission_files)
    grader = await bounded(snapshots.grader_download(grader_repository), timeout_seconds, "resolving grader")

    submission, created = await record_submission(session, identity, owner, files)
    log_event(
        logger,
        "submission.recorded" if created else "submission.replayed",
        submission_id=submission.id,
        user_id=owner.user_id,
        assignment_id=owner.assignment_id,
        repository=identity.repository,
        sha=identity.sha,
        run_number=identity.run_number,
        run_attempt=identity.attempt,
        workflow_digest=digest,
        files=len(files),
    )
    return SubmissionResponse(grader_url=grader.url, grader_sha=grader.sha)
