from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from autograder_api.archive import ArchiveEntry, SnapshotArchive
from autograder_api.errors import UserVisibleError


@dataclass(frozen=True)
class ExtractedFile:
    name: str
    contents: str


def _validate_declared(declared: list[str]) -> None:
    if not declared:
        raise UserVisibleError("Incorrect instructor setup for assignment: no submission files set")
    repeated = sorted(name for name, count in Counter(declared).items() if count > 1)
    if repeated:
        raise UserVisibleError(
            f"Incorrect instructor setup for assignment: submission files listed twice: {', '.join(repeated)}"
        )


def extract_submission_files(archive: SnapshotArchive, declared: list[str]) -> list[ExtractedFile]:
    """Pick exactly the declared paths out of the snapshot, in declared order.

    Matching is by exact string equality on the normalized path. A declared
    path that is missing, or present more than once, rejects the whole
    submission.
    """
    _validate_declared(declared)
    wanted = set(declared)
    selected = [entry for entry in archive.entries if entry.path in wanted]

    by_path: dict[str, list[ArchiveEntry]] = {}
    for entry in selected:
        by_path.setdefault(entry.path, []).append(entry)

    missing = [name for name in declared if name not in by_path]
    if missing:
        raise UserVisibleError(f"Missing submission files: {', '.join(missing)}")
    duplicated = [name for name in declared if len(by_path[name]) > 1]
    if duplicated:
        raise UserVisibleError(f"Ambiguous submission files, found more than once: {', '.join(duplicated)}")
    if len(selected) != len(declared):
        raise UserVisibleError(f"Incorrect number of files submitted: {len(selected)} !== {len(declared)}")

    files: list[ExtractedFile] = []
    for name in declared:
        raw = by_path[name][0].read()
        try:
            contents = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise UserVisibleError(f"Submission file {name} must be utf-8 text") from exc
        files.append(ExtractedFile(name=name, contents=contents))
    return files
