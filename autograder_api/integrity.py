from __future__ import annotations

import hashlib
import hmac

from autograder_api.archive import SnapshotArchive
from autograder_api.config import WORKFLOW_PATH
from autograder_api.errors import SecurityError, UserVisibleError


def sha256_hex(contents: bytes) -> str:
    return hashlib.sha256(contents).hexdigest()


def workflow_digest(archive: SnapshotArchive, workflow_path: str = WORKFLOW_PATH) -> str:
    """SHA-256 of the workflow file exactly as stored in the snapshot."""
    matches = archive.find(workflow_path)
    if not matches:
        raise UserVisibleError(f"workflow file missing: {workflow_path}")
    if len(matches) > 1:
        raise SecurityError(
            "Repository archive contains more than one workflow file",
            workflow_path=workflow_path,
            entries=len(matches),
        )
    return sha256_hex(matches[0].read())


def verify_workflow(archive: SnapshotArchive, expected_digest: str, workflow_path: str = WORKFLOW_PATH) -> str:
    actual = workflow_digest(archive, workflow_path)
    expected = (expected_digest or "").strip().lower()
    if not hmac.compare_digest(actual, expected):
        raise SecurityError(
            "Workflow file digest does not match the approved workflow",
            workflow_path=workflow_path,
            actual_digest=actual,
            expected_digest=expected,
        )
    return actual


def require_grading_workflow(workflow_ref: str, expected_suffix: str) -> None:
    """The token must come from the approved workflow file on the approved ref."""
    if not workflow_ref.endswith(expected_suffix):
        raise SecurityError(
            "Token was not issued to the grading workflow",
            workflow_ref=workflow_ref,
            expected_suffix=expected_suffix,
        )
