from __future__ import annotations

import hashlib
import io
import os
import stat
import sys
import tempfile
import time
import warnings
import zipfile
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest

API_DIR = Path(__file__).resolve().parents[1]
if str(API_DIR) not in sys.path:
    sys.path.insert(0, str(API_DIR))

_DB_DIR = tempfile.mkdtemp(prefix="autograder-tests-")
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/bootstrap.db"
os.environ["WEBAPP_URL"] = "https://grading.example.edu"

from cryptography.hazmat.primitives import serialization  # noqa: E402
from cryptography.hazmat.primitives.asymmetric import rsa  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from jose import jwk, jwt  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

import main  # noqa: E402
from autograder_api.config import OIDC_AUDIENCE, OIDC_ISSUER, WORKFLOW_PATH  # noqa: E402
from autograder_api.db import Base, get_async_session  # noqa: E402
from autograder_api.errors import UserVisibleError  # noqa: E402
from autograder_api.deps import get_snapshot_provider, get_token_validator  # noqa: E402
from autograder_api.models import Assignment, AssignmentGraderConfig, Repository, User  # noqa: E402
from autograder_api.oidc import OIDCTokenValidator  # noqa: E402
from autograder_api.snapshots import GraderDownload  # noqa: E402

KEY_ID = "test-signing-key"
STUDENT_REPOSITORY = "intro-cs/hw1-alice"
GRADER_REPOSITORY = "intro-cs/hw1-grader"
GRADER_SHA = "9f2c1e0d4b5a69788796a5b4c3d2e1f0a1b2c3d4"
COMMIT_SHA = "0123456789abcdef0123456789abcdef01234567"
DECLARED_FILES = ["src/main.py", "src/util.py"]
WORKFLOW_BODY = b"name: Grade\non: push\njobs:\n  grade:\n    runs-on: ubuntu-latest\n"
WORKFLOW_DIGEST = hashlib.sha256(WORKFLOW_BODY).hexdigest()
GRADING_WORKFLOW_REF = f"{STUDENT_REPOSITORY}/{WORKFLOW_PATH}@refs/heads/main"


def _generate_signing_key() -> tuple[bytes, dict[str, Any]]:
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    public_jwk = jwk.construct(public_pem, "RS256").to_dict()
    public_jwk.update({"kid": KEY_ID, "use": "sig", "alg": "RS256"})
    return private_pem, public_jwk


PRIVATE_PEM, PUBLIC_JWK = _generate_signing_key()


def make_token(kid: str = KEY_ID, private_pem: bytes = PRIVATE_PEM, **overrides: Any) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": OIDC_ISSUER,
        "aud": OIDC_AUDIENCE,
        "iat": now,
        "exp": now + 300,
        "repository": STUDENT_REPOSITORY,
        "sha": COMMIT_SHA,
        "workflow_ref": GRADING_WORKFLOW_REF,
        "run_id": "3",
        "run_attempt": "1",
    }
    for name, value in overrides.items():
        if value is None:
            claims.pop(name, None)
        else:
            claims[name] = value
    return jwt.encode(claims, private_pem.decode("ascii"), algorithm="RS256", headers={"kid": kid})


def build_zip(entries: list[tuple[str, bytes]], symlinks: dict[str, str] | None = None) -> bytes:
    """Zip ``entries`` in order. Repeated names are kept, as some exporters produce them."""
    buffer = io.BytesIO()
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", UserWarning)
        with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
            for name, content in entries:
                zf.writestr(name, content)
            for name, target in (symlinks or {}).items():
                info = zipfile.ZipInfo(name)
                info.external_attr = (stat.S_IFLNK | 0o777) << 16
                zf.writestr(info, target)
    return buffer.getvalue()


def snapshot_zip(
    files: dict[str, bytes] | None = None,
    workflow: bytes = WORKFLOW_BODY,
    top: str = "intro-cs-hw1-alice-0123456",
) -> bytes:
    if files is None:
        files = {"src/main.py": b"print('hello')\n", "src/util.py": b"def add(a, b):\n    return a + b\n"}
    entries = [(f"{top}/README.md", b"# hw1\n"), (f"{top}/{WORKFLOW_PATH}", workflow)]
    entries.extend((f"{top}/{path}", content) for path, content in files.items())
    return build_zip(entries)


class StaticJWKS:
    def __init__(self, key_set: dict[str, Any]) -> None:
        self.key_set = key_set
        self.refreshes = 0

    async def get_key_set(self, *, refresh: bool = False) -> dict[str, Any]:
        if refresh:
            self.refreshes += 1
        return self.key_set


class FakeSnapshots:
    def __init__(self, archive: bytes | None = None) -> None:
        self.archive = archive if archive is not None else snapshot_zip()
        self.archive_error: Exception | None = None
        self.grader_error: Exception | None = None
        self.archive_calls: list[tuple[str, str]] = []
        self.grader_calls: list[str] = []
        self.refs: dict[tuple[str, str], str] = {}
        self.ref_calls: list[tuple[str, str]] = []

    async def fetch_archive(self, repository: str, sha: str) -> bytes:
        self.archive_calls.append((repository, sha))
        if self.archive_error is not None:
            raise self.archive_error
        return self.archive

    async def grader_download(self, repository: str) -> GraderDownload:
        self.grader_calls.append(repository)
        if self.grader_error is not None:
            raise self.grader_error
        return GraderDownload(
            url=f"https://api.github.com/repos/{repository}/tarball/{GRADER_SHA}",
            sha=GRADER_SHA,
        )

    async def resolve_ref(self, repository: str, ref: str) -> str:
        self.ref_calls.append((repository, ref))
        if (repository, ref) not in self.refs:
            raise UserVisibleError(f"Ref not found: {ref} in {repository}")
        return self.refs[(repository, ref)]


@pytest.fixture()
def validator() -> OIDCTokenValidator:
    return OIDCTokenValidator(StaticJWKS({"keys": [PUBLIC_JWK]}), issuer=OIDC_ISSUER, audience=OIDC_AUDIENCE)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "autograder.db"


@pytest.fixture()
def db(db_path: Path):
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def seeded(db) -> dict[str, int]:
    with db() as session:
        alice = User(username="alice", display_name="Alice")
        bob = User(username="bob", display_name="Bob")
        assignment = Assignment(class_id=7, title="Homework 1", submission_files=list(DECLARED_FILES))
        session.add_all([alice, bob, assignment])
        session.flush()
        session.add_all(
            [
                AssignmentGraderConfig(
                    assignment_id=assignment.id,
                    expected_workflow_digest=WORKFLOW_DIGEST,
                    grader_repository=GRADER_REPOSITORY,
                ),
                Repository(assignment_id=assignment.id, user_id=alice.id, repository=STUDENT_REPOSITORY),
            ]
        )
        session.commit()
        return {"alice": alice.id, "bob": bob.id, "assignment": assignment.id, "class": assignment.class_id}


@pytest.fixture()
def async_session_factory(db, db_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
def snapshots() -> FakeSnapshots:
    return FakeSnapshots()


@pytest.fixture()
def client(async_session_factory, validator: OIDCTokenValidator, snapshots: FakeSnapshots) -> TestClient:
    async def _override_session() -> AsyncGenerator[AsyncSession, None]:
        async with async_session_factory() as session:
            yield session

    main.app.dependency_overrides[get_async_session] = _override_session
    main.app.dependency_overrides[get_token_validator] = lambda: validator
    main.app.dependency_overrides[get_snapshot_provider] = lambda: snapshots
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()
