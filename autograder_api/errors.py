"""Pipeline error types.

Every error raised by the intake and feedback pipeline derives from
``PipelineError`` and carries the HTTP status it maps to. ``detail`` is what
the caller sees; ``audit`` holds fields that are only ever logged.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, detail: str, **audit: Any) -> None:
        super().__init__(detail)
        self.detail = detail
        self.audit = audit

    @property
    def public_detail(self) -> str:
        return self.detail


class AuthenticationError(PipelineError):
    status_code = 401


class SecurityError(PipelineError):
    """Claims that do not match a trust boundary. Never retried, never detailed."""

    status_code = 403

    @property
    def public_detail(self) -> str:
        return "This request has been reported to the staff"


class UserVisibleError(PipelineError):
    status_code = 400


class ConflictError(UserVisibleError):
    status_code = 409


class SnapshotUnavailableError(UserVisibleError):
    status_code = 503
    retryable = True


class MalformedArchiveError(PipelineError):
    status_code = 502
    retryable = True


class IdentityProviderUnavailableError(PipelineError):
    """Signing keys could not be loaded; the token itself was never judged."""

    status_code = 503
    retryable = True
