from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Annotated
from uuid import uuid4

import httpx
from fastapi import Depends, FastAPI, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from autograder_api.config import (
    GITHUB_API_URL,
    GITHUB_TOKEN,
    GRADER_BRANCH,
    OIDC_AUDIENCE,
    OIDC_HTTP_TIMEOUT_SECONDS,
    OIDC_ISSUER,
    OIDC_JWKS_CACHE_SECONDS,
    SNAPSHOT_TIMEOUT_SECONDS,
)
from autograder_api.db import check_db_connection, get_async_session
from autograder_api.deps import get_ci_identity, get_snapshot_provider
from autograder_api.errors import PipelineError, SecurityError
from autograder_api.feedback import ingest_feedback
from autograder_api.intake import intake_submission
from autograder_api.observability import get_logger, log_event
from autograder_api.oidc import CIIdentity, HttpJWKSProvider, OIDCTokenValidator
from autograder_api.schemas import FeedbackResponse, GradingScriptResult, SubmissionResponse
from autograder_api.snapshots import GitHubSnapshotProvider, RepositorySnapshotProvider

logger = get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with httpx.AsyncClient(timeout=OIDC_HTTP_TIMEOUT_SECONDS) as oidc_client, httpx.AsyncClient(
        timeout=SNAPSHOT_TIMEOUT_SECONDS
    ) as github_client:
        app.state.token_validator = OIDCTokenValidator(
            HttpJWKSProvider(oidc_client, OIDC_ISSUER, OIDC_JWKS_CACHE_SECONDS),
            issuer=OIDC_ISSUER,
            audience=OIDC_AUDIENCE,
        )
        app.state.snapshot_provider = GitHubSnapshotProvider(
            github_client, GITHUB_API_URL, GITHUB_TOKEN, branch=GRADER_BRANCH
        )
        yield


app = FastAPI(title="Autograder API", lifespan=lifespan)


def _request_context(request: Request) -> dict[str, str | None]:
    return {
        "method": request.method,
        "path": request.url.path,
        "request_id": getattr(request.state, "request_id", None),
        "client_ip": request.headers.get("x-forwarded-for") or (request.client.host if request.client else None),
    }


@app.exception_handler(PipelineError)
async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
    level = logging.WARNING if isinstance(exc, SecurityError) else logging.INFO
    log_event(
        logger,
        "request.rejected",
        level=level,
        error=exc.__class__.__name__,
        detail=exc.detail,
        retryable=exc.retryable,
        **exc.audit,
        **_request_context(request),
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.public_detail, "retryable": exc.retryable},
        headers=headers,
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "request.failed",
        exc_info=exc,
        extra={"extra_data": {"error": exc.__class__.__name__, **_request_context(request)}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "An unknown error occurred", "retryable": True},
    )


@app.middleware("http")
async def add_request_id_and_logging(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    request.state.request_id = request_id
    started_at = time.monotonic()
    response = None

    try:
        response = await call_next(request)
        return response
    finally:
        duration_ms = int((time.monotonic() - started_at) * 1000)
        if response is not None:
            response.headers["X-Request-ID"] = request_id
            status_code = response.status_code
        else:
            status_code = 500
        log_event(
            logger,
            "request.completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            duration_ms=duration_ms,
            client=(request.client.host if request.client else "unknown"),
        )


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/health/db")
async def health_db() -> JSONResponse:
    ok = await check_db_connection()
    if ok:
        return JSONResponse(content={"db": "ok"}, status_code=status.HTTP_200_OK)
    return JSONResponse(content={"db": "error"}, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


@app.post("/submission", response_model=SubmissionResponse)
async def create_submission(
    identity: Annotated[CIIdentity, Depends(get_ci_identity)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    snapshots: Annotated[RepositorySnapshotProvider, Depends(get_snapshot_provider)],
) -> SubmissionResponse:
    return await intake_submission(identity, session, snapshots)


@app.post("/submission/feedback", response_model=FeedbackResponse)
async def submit_feedback(
    payload: GradingScriptResult,
    identity: Annotated[CIIdentity, Depends(get_ci_identity)],
    session: Annotated[AsyncSession, Depends(get_async_session)],
    snapshots: Annotated[RepositorySnapshotProvider, Depends(get_snapshot_provider)],
) -> FeedbackResponse:
    return await ingest_feedback(identity, payload, session, snapshots)
