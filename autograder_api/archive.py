"""Read-only view over a repository snapshot zip.

Snapshot exports wrap every entry in one synthetic top directory
(``owner-repo-<sha>/...``). Paths are exposed with that first segment
removed, whatever it is called.
"""

from __future__ import annotations

import io
import stat
import zipfile
import zlib
from dataclasses import dataclass, field
from zipfile import ZipFile, ZipInfo

from autograder_api.config import ARCHIVE_MAX_ENTRIES, ARCHIVE_MAX_UNCOMPRESSED_BYTES
from autograder_api.errors import MalformedArchiveError


def strip_top_directory(name: str) -> str:
    return "/".join(name.replace("\\", "/").split("/")[1:])


@dataclass(frozen=True)
class ArchiveEntry:
    path: str
    info: ZipInfo = field(repr=False, compare=False)
    archive: "SnapshotArchive" = field(repr=False, compare=False)

    def read(self) -> bytes:
        return self.archive.read(self)


class SnapshotArchive:
    def __init__(self, zf: ZipFile) -> None:
        self._zf = zf
        self.entries: list[ArchiveEntry] = []

    @classmethod
    def from_bytes(
        cls,
        raw: bytes,
        max_entries: int = ARCHIVE_MAX_ENTRIES,
        max_uncompressed_bytes: int = ARCHIVE_MAX_UNCOMPRESSED_BYTES,
    ) -> "SnapshotArchive":
        try:
            zf = ZipFile(io.BytesIO(raw))
        except (zipfile.BadZipFile, ValueError) as exc:
            raise MalformedArchiveError("Repository archive is not a valid zip file") from exc

        archive = cls(zf)
        try:
            archive._load_entries(max_entries, max_uncompressed_bytes)
        except MalformedArchiveError:
            zf.close()
            raise
        return archive

    def _load_entries(self, max_entries: int, max_uncompressed_bytes: int) -> None:
        members = self._zf.infolist()
        if len(members) > max_entries:
            raise MalformedArchiveError("Repository archive has too many entries")

        total_uncompressed = 0
        for member in members:
            total_uncompressed += int(member.file_size)
            if total_uncompressed > max_uncompressed_bytes:
                raise MalformedArchiveError("Repository archive uncompressed size is too large")

            name = member.filename.replace("\\", "/")
            if "\x00" in name or name.startswith("/") or ".." in name.split("/"):
                raise MalformedArchiveError(f"Repository archive has an unsafe path: {member.filename!r}")

            mode = (member.external_attr >> 16) & 0o777777
            if stat.S_ISLNK(mode) or member.is_dir():
                continue

            path = strip_top_directory(name)
            if not path:
                continue
            self.entries.append(ArchiveEntry(path=path, info=member, archive=self))

    def read(self, entry: ArchiveEntry) -> bytes:
        try:
            return self._zf.read(entry.info)
        except (zipfile.BadZipFile, zipfile.LargeZipFile, zlib.error, OSError, EOFError) as exc:
            raise MalformedArchiveError(f"Unable to read {entry.path} from repository archive") from exc

    def find(self, path: str) -> list[ArchiveEntry]:
        return [entry for entry in self.entries if entry.path == path]

    def paths(self) -> list[str]:
        return [entry.path for entry in self.entries]

    def close(self) -> None:
        self._zf.close()

    def __enter__(self) -> "SnapshotArchive":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()
