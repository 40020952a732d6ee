from __future__ import annotations

import re

import httpx

from autograder_api.errors import SnapshotUnavailableError, UserVisibleError
from autograder_api.snapshots.base import GraderDownload, RepositorySnapshotProvider

_REPOSITORY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
_SHA_PATTERN = re.compile(r"^[0-9a-fA-F]{7,64}$")


def _split_repository(repository: str) -> tuple[str, str]:
    if not _REPOSITORY_PATTERN.match(repository):
        raise SnapshotUnavailableError(f"Invalid repository name: {repository}")
    owner, name = repository.split("/", 1)
    return owner, name


class GitHubSnapshotProvider(RepositorySnapshotProvider):
    def __init__(self, client: httpx.AsyncClient, api_url: str, token: str = "", branch: str = "main") -> None:
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.branch = branch
        self.headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

    async def _get(self, path: str, missing_ok: bool = False) -> httpx.Response | None:
        try:
            response = await self.client.get(
                f"{self.api_url}{path}",
                headers=self.headers,
                follow_redirects=True,
            )
        except httpx.HTTPError as exc:
            raise SnapshotUnavailableError(f"Git host request failed: {exc.__class__.__name__}") from exc

        if response.status_code in (403, 429):
            raise SnapshotUnavailableError("Git host rate limit reached, retry later")
        if response.status_code in (404, 410):
            if missing_ok:
                return None
            raise SnapshotUnavailableError(f"Not found on git host: {path}")
        if response.status_code >= 400:
            raise SnapshotUnavailableError(f"Git host returned HTTP {response.status_code}")
        return response

    async def _ref_sha(self, owner: str, name: str, ref: str) -> str | None:
        response = await self._get(f"/repos/{owner}/{name}/git/ref/{ref}", missing_ok=True)
        if response is None:
            return None
        try:
            return str(response.json()["object"]["sha"])
        except (ValueError, KeyError, TypeError) as exc:
            raise SnapshotUnavailableError(f"Unable to read {ref} of {owner}/{name}") from exc

    async def fetch_archive(self, repository: str, sha: str) -> bytes:
        owner, name = _split_repository(repository)
        if not _SHA_PATTERN.match(sha):
            raise SnapshotUnavailableError(f"Invalid commit sha: {sha}")
        response = await self._get(f"/repos/{owner}/{name}/zipball/{sha}")
        if not response.content:
            raise SnapshotUnavailableError(f"Empty archive for {repository}@{sha}")
        return response.content

    async def grader_download(self, repository: str) -> GraderDownload:
        owner, name = _split_repository(repository)
        sha = await self._ref_sha(owner, name, f"heads/{self.branch}")
        if sha is None:
            raise SnapshotUnavailableError(f"Unable to resolve {self.branch} of {repository}")
        return GraderDownload(url=f"{self.api_url}/repos/{owner}/{name}/tarball/{sha}", sha=sha)

    async def resolve_ref(self, repository: str, ref: str) -> str:
        """Commit sha of a branch or tag; a bare name is tried as a tag first."""
        owner, name = _split_repository(repository)
        ref = ref.removeprefix("refs/")
        if ref.startswith(("heads/", "tags/")):
            candidates = [ref]
        elif ref == self.branch:
            candidates = [f"heads/{ref}"]
        else:
            candidates = [f"tags/{ref}", f"heads/{ref}"]

        for candidate in candidates:
            sha = await self._ref_sha(owner, name, candidate)
            if sha is not None:
                return sha
        raise UserVisibleError(f"Ref not found: {ref} in {repository}")
