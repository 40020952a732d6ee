from __future__ import annotations

import asyncio
import json
import time

import httpx
import pytest

from conftest import PUBLIC_JWK, StaticJWKS, _generate_signing_key, make_token
from autograder_api.config import OIDC_AUDIENCE, OIDC_ISSUER
from autograder_api.errors import AuthenticationError, IdentityProviderUnavailableError
from autograder_api.oidc import HttpJWKSProvider, OIDCTokenValidator


def test_valid_token_yields_ci_identity(validator: OIDCTokenValidator) -> None:
    identity = asyncio.run(validator.validate(make_token(run_id="12", run_attempt="2")))

    assert identity.repository == "intro-cs/hw1-alice"
    assert identity.run_number == 12
    assert identity.attempt == 2
    assert identity.workflow_ref.endswith(".github/workflows/grade.yml@refs/heads/main")


def test_bearer_prefix_is_accepted(validator: OIDCTokenValidator) -> None:
    identity = asyncio.run(validator.validate(f"Bearer {make_token()}"))
    assert identity.sha == "0123456789abcdef0123456789abcdef01234567"


def test_wrong_audience_is_rejected(validator: OIDCTokenValidator) -> None:
    with pytest.raises(AuthenticationError, match="claims"):
        asyncio.run(validator.validate(make_token(aud="someone-else")))


def test_wrong_issuer_is_rejected(validator: OIDCTokenValidator) -> None:
    with pytest.raises(AuthenticationError, match="claims"):
        asyncio.run(validator.validate(make_token(iss="https://evil.example.com")))


def test_expired_token_is_rejected(validator: OIDCTokenValidator) -> None:
    past = int(time.time()) - 3600
    with pytest.raises(AuthenticationError, match="expired"):
        asyncio.run(validator.validate(make_token(iat=past - 300, exp=past)))


def test_token_signed_by_another_key_is_rejected(validator: OIDCTokenValidator) -> None:
    other_private, _ = _generate_signing_key()
    with pytest.raises(AuthenticationError, match="Invalid token"):
        asyncio.run(validator.validate(make_token(private_pem=other_private)))


def test_unknown_kid_triggers_one_refresh() -> None:
    jwks = StaticJWKS({"keys": [PUBLIC_JWK]})
    validator = OIDCTokenValidator(jwks, issuer=OIDC_ISSUER, audience=OIDC_AUDIENCE)

    with pytest.raises(AuthenticationError, match="unknown key"):
        asyncio.run(validator.validate(make_token(kid="rotated-away")))
    assert jwks.refreshes == 1


def test_missing_claim_is_rejected(validator: OIDCTokenValidator) -> None:
    with pytest.raises(AuthenticationError, match="workflow_ref"):
        asyncio.run(validator.validate(make_token(workflow_ref=None)))


def test_non_numeric_run_id_is_rejected(validator: OIDCTokenValidator) -> None:
    with pytest.raises(AuthenticationError, match="numeric"):
        asyncio.run(validator.validate(make_token(run_id="abc")))


def test_garbage_token_is_rejected(validator: OIDCTokenValidator) -> None:
    with pytest.raises(AuthenticationError):
        asyncio.run(validator.validate("not-a-jwt"))
    with pytest.raises(AuthenticationError):
        asyncio.run(validator.validate(""))


def _discovery_transport(calls: list[str], status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        if request.url.path == "/.well-known/openid-configuration":
            return httpx.Response(200, json={"jwks_uri": "https://issuer.example.com/.well-known/jwks"})
        if request.url.path == "/.well-known/jwks":
            return httpx.Response(status_code, content=json.dumps({"keys": [PUBLIC_JWK]}).encode())
        return httpx.Response(404)

    return httpx.MockTransport(handler)


def test_http_jwks_provider_discovers_and_caches_keys() -> None:
    calls: list[str] = []

    async def scenario() -> tuple[dict, dict, dict]:
        async with httpx.AsyncClient(transport=_discovery_transport(calls)) as client:
            provider = HttpJWKSProvider(client, "https://issuer.example.com", cache_seconds=300)
            first = await provider.get_key_set()
            second = await provider.get_key_set()
            refreshed = await provider.get_key_set(refresh=True)
            return first, second, refreshed

    first, second, refreshed = asyncio.run(scenario())

    assert first["keys"][0]["kid"] == PUBLIC_JWK["kid"]
    assert second is first
    assert refreshed["keys"] == first["keys"]
    assert calls == [
        "/.well-known/openid-configuration",
        "/.well-known/jwks",
        "/.well-known/openid-configuration",
        "/.well-known/jwks",
    ]


@pytest.mark.parametrize("status_code", [500, 503])
def test_http_jwks_provider_outage_is_retryable(status_code: int) -> None:
    calls: list[str] = []

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=_discovery_transport(calls, status_code=status_code)) as client:
            await HttpJWKSProvider(client, "https://issuer.example.com").get_key_set()

    with pytest.raises(IdentityProviderUnavailableError, match="signing keys") as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable


def test_http_jwks_provider_transport_error_is_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await HttpJWKSProvider(client, "https://issuer.example.com").get_key_set()

    with pytest.raises(IdentityProviderUnavailableError):
        asyncio.run(scenario())


def test_http_jwks_provider_rejects_discovery_without_jwks_uri() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"issuer": "https://issuer.example.com"})

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await HttpJWKSProvider(client, "https://issuer.example.com").get_key_set()

    with pytest.raises(IdentityProviderUnavailableError, match="jwks_uri"):
        asyncio.run(scenario())
