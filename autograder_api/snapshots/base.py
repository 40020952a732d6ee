from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Protocol, TypeVar

from autograder_api.errors import SnapshotUnavailableError

T = TypeVar("T")


@dataclass(frozen=True)
class GraderDownload:
    url: str
    sha: str


class RepositorySnapshotProvider(Protocol):
    async def fetch_archive(self, repository: str, sha: str) -> bytes:
        ...

    async def grader_download(self, repository: str) -> GraderDownload:
        ...

    async def resolve_ref(self, repository: str, ref: str) -> str:
        ...


async def bounded(call: Awaitable[T], timeout_seconds: float, what: str) -> T:
    try:
        return await asyncio.wait_for(call, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise SnapshotUnavailableError(f"Timed out after {timeout_seconds:g}s while {what}, retry later") from exc
