from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autograder_api.integrity import sha256_hex
from autograder_api.models import Assignment, AssignmentGraderConfig


def digest_file(path: Path) -> str:
    return sha256_hex(path.read_bytes())


async def set_grader_config(
    session_factory: async_sessionmaker[AsyncSession],
    assignment_id: int,
    workflow_digest: str,
    grader_repository: str,
) -> dict[str, object]:
    async with session_factory() as session:
        assignment = await session.scalar(select(Assignment).where(Assignment.id == assignment_id))
        if assignment is None:
            raise ValueError(f"assignment not found: {assignment_id}")

        config = await session.scalar(
            select(AssignmentGraderConfig).where(AssignmentGraderConfig.assignment_id == assignment_id)
        )
        if config is None:
            config = AssignmentGraderConfig(
                assignment_id=assignment_id,
                expected_workflow_digest=workflow_digest,
                grader_repository=grader_repository,
            )
            session.add(config)
        else:
            config.expected_workflow_digest = workflow_digest
            config.grader_repository = grader_repository
        await session.commit()

    return {
        "assignment_id": assignment_id,
        "expected_workflow_digest": workflow_digest,
        "grader_repository": grader_repository,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Autograder instructor setup")
    commands = parser.add_subparsers(dest="command", required=True)

    digest = commands.add_parser("digest", help="print the SHA-256 of an approved workflow file")
    digest.add_argument("workflow_file", type=Path)

    configure = commands.add_parser("set-grader-config", help="approve a workflow for an assignment")
    configure.add_argument("--assignment-id", type=int, required=True)
    configure.add_argument("--workflow-file", type=Path, required=True)
    configure.add_argument("--grader-repository", required=True, help="owner/name of the grader repository")

    args = parser.parse_args(argv)

    if args.command == "digest":
        print(digest_file(args.workflow_file))
        return 0

    from autograder_api.db import AsyncSessionLocal

    try:
        result = asyncio.run(
            set_grader_config(
                AsyncSessionLocal,
                args.assignment_id,
                digest_file(args.workflow_file),
                args.grader_repository,
            )
        )
    except ValueError as exc:
        print(f"[manage] {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
