from __future__ import annotations

from autograder_api.snapshots.base import GraderDownload, RepositorySnapshotProvider, bounded
from autograder_api.snapshots.github import GitHubSnapshotProvider

__all__ = ["GitHubSnapshotProvider", "GraderDownload", "RepositorySnapshotProvider", "bounded"]
