from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from autograder_api.errors import AuthenticationError
from autograder_api.oidc import CIIdentity, OIDCTokenValidator
from autograder_api.snapshots import RepositorySnapshotProvider

bearer_scheme = HTTPBearer(auto_error=False)


def get_token_validator(request: Request) -> OIDCTokenValidator:
    return request.app.state.token_validator


def get_snapshot_provider(request: Request) -> RepositorySnapshotProvider:
    return request.app.state.snapshot_provider


async def get_ci_identity(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    validator: Annotated[OIDCTokenValidator, Depends(get_token_validator)],
) -> CIIdentity:
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return await validator.validate(credentials.credentials)
