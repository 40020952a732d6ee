"""Verification of CI-issued OIDC bearer tokens.

The grading workflow requests an ID token from the CI provider and presents
it on both callbacks. Signatures are checked against the provider's
published JWKS; claims are only read after that check succeeds.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from jose import jwt
from jose.exceptions import ExpiredSignatureError, JOSEError, JWTClaimsError

from autograder_api.errors import AuthenticationError, IdentityProviderUnavailableError

REQUIRED_CLAIMS = ("repository", "sha", "workflow_ref", "run_id", "run_attempt")
ALLOWED_ALGORITHMS = ["RS256"]


@dataclass(frozen=True)
class CIIdentity:
    repository: str
    sha: str
    workflow_ref: str
    run_id: str
    run_attempt: str

    @property
    def run_number(self) -> int:
        return int(self.run_id)

    @property
    def attempt(self) -> int:
        return int(self.run_attempt)


class JWKSProvider(Protocol):
    async def get_key_set(self, *, refresh: bool = False) -> dict[str, Any]:
        ...


class HttpJWKSProvider(JWKSProvider):
    """Fetches signing keys through OIDC discovery and caches them briefly."""

    def __init__(self, client: httpx.AsyncClient, issuer: str, cache_seconds: int = 300) -> None:
        self.client = client
        self.issuer = issuer.rstrip("/")
        self.cache_seconds = cache_seconds
        self._key_set: dict[str, Any] | None = None
        self._fetched_at = 0.0
        self._lock = asyncio.Lock()

    async def _discover_jwks_uri(self) -> str:
        response = await self.client.get(f"{self.issuer}/.well-known/openid-configuration")
        response.raise_for_status()
        jwks_uri = response.json().get("jwks_uri")
        if not jwks_uri:
            raise IdentityProviderUnavailableError("OIDC discovery document has no jwks_uri")
        return str(jwks_uri)

    async def get_key_set(self, *, refresh: bool = False) -> dict[str, Any]:
        async with self._lock:
            fresh = time.monotonic() - self._fetched_at < self.cache_seconds
            if self._key_set is not None and fresh and not refresh:
                return self._key_set
            try:
                jwks_uri = await self._discover_jwks_uri()
                response = await self.client.get(jwks_uri)
                response.raise_for_status()
                key_set = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                raise IdentityProviderUnavailableError("Unable to load OIDC signing keys, retry later") from exc
            if not isinstance(key_set, dict) or not isinstance(key_set.get("keys"), list):
                raise IdentityProviderUnavailableError("OIDC signing keys are malformed")
            self._key_set = key_set
            self._fetched_at = time.monotonic()
            return key_set


def _find_key(key_set: dict[str, Any], kid: str) -> dict[str, Any] | None:
    for key in key_set.get("keys", []):
        if isinstance(key, dict) and key.get("kid") == kid:
            return key
    return None


class OIDCTokenValidator:
    def __init__(self, jwks: JWKSProvider, issuer: str, audience: str) -> None:
        self.jwks = jwks
        self.issuer = issuer.rstrip("/")
        self.audience = audience

    async def _signing_key(self, kid: str) -> dict[str, Any]:
        key = _find_key(await self.jwks.get_key_set(), kid)
        if key is None:
            # Unknown kid usually means the provider rotated its keys.
            key = _find_key(await self.jwks.get_key_set(refresh=True), kid)
        if key is None:
            raise AuthenticationError("Token signed with unknown key")
        return key

    async def validate(self, token: str) -> CIIdentity:
        if not token:
            raise AuthenticationError("Not authenticated")
        if token.lower().startswith("bearer "):
            token = token[7:].strip()

        try:
            header = jwt.get_unverified_header(token)
        except JOSEError as exc:
            raise AuthenticationError("Invalid token") from exc

        kid = header.get("kid")
        if not kid or header.get("alg") not in ALLOWED_ALGORITHMS:
            raise AuthenticationError("Invalid token header")

        key = await self._signing_key(str(kid))
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=ALLOWED_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options={"require_exp": True, "require_aud": True, "require_iss": True},
            )
        except ExpiredSignatureError as exc:
            raise AuthenticationError("Token has expired") from exc
        except JWTClaimsError as exc:
            raise AuthenticationError("Invalid token claims") from exc
        except JOSEError as exc:
            raise AuthenticationError("Invalid token") from exc

        missing = [name for name in REQUIRED_CLAIMS if not isinstance(claims.get(name), str) or not claims[name]]
        if missing:
            raise AuthenticationError(f"Token is missing claims: {', '.join(missing)}")
        if not claims["run_id"].isdigit() or not claims["run_attempt"].isdigit():
            raise AuthenticationError("Token run identifiers must be numeric")

        return CIIdentity(**{name: claims[name] for name in REQUIRED_CLAIMS})
