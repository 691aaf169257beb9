from urllib.parse import parse_qs

import httpx
import pytest

from helpers import make_jwt
from jagex_oauth.constants import LAUNCHER_CLIENT_ID, LAUNCHER_REDIRECT_URI, TOKEN_URL
from jagex_oauth.errors import NetworkError, ProviderError
from jagex_oauth.token_exchange import exchange_code_for_tokens, parse_token_payload, refresh_access_token


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _form(request: httpx.Request) -> dict:
    return {key: values[0] for key, values in parse_qs(request.content.decode("utf-8")).items()}


def test_expiry_prefers_id_token_exp() -> None:
    tokens = parse_token_payload(
        {"access_token": "a", "expires_in": 60, "id_token": make_jwt({"exp": 1_700_000_999})},
        issued_at=1_700_000_000,
    )
    assert tokens.access_token_expiry == 1_700_000_999
    assert tokens.expires_in == 60


def test_expiry_falls_back_to_expires_in() -> None:
    tokens = parse_token_payload({"access_token": "a", "expires_in": 600}, issued_at=1_700_000_000)
    assert tokens.access_token_expiry == 1_700_000_600


def test_default_lifetime_when_expires_in_is_garbage() -> None:
    tokens = parse_token_payload({"access_token": "a", "expires_in": "later"}, issued_at=100)
    assert tokens.access_token_expiry == 3700


def test_payload_without_access_token_is_rejected() -> None:
    with pytest.raises(ProviderError) as exc_info:
        parse_token_payload({"refresh_token": "r"})
    assert exc_info.value.code == "invalid_token_response"


def test_tokens_hidden_from_repr() -> None:
    tokens = parse_token_payload({"access_token": "secret-access", "refresh_token": "secret-refresh"})
    assert "secret-access" not in repr(tokens)
    assert "secret-refresh" not in repr(tokens)


@pytest.mark.asyncio
async def test_exchange_code_sends_pkce_verifier_without_secret() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == TOKEN_URL
        seen.update(_form(request))
        return httpx.Response(200, json={"access_token": "acc", "refresh_token": "ref", "expires_in": 3600})

    async with _client(handler) as client:
        tokens = await exchange_code_for_tokens("the-code", "the-verifier", client=client)

    assert seen == {
        "grant_type": "authorization_code",
        "client_id": LAUNCHER_CLIENT_ID,
        "code": "the-code",
        "code_verifier": "the-verifier",
        "redirect_uri": LAUNCHER_REDIRECT_URI,
    }
    assert tokens.access_token == "acc"
    assert tokens.refresh_token == "ref"


@pytest.mark.asyncio
async def test_exchange_error_is_parsed_and_masked() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400,
            json={"error": "invalid_grant", "error_description": "code=abcdef is expired"},
        )

    async with _client(handler) as client:
        with pytest.raises(ProviderError) as exc_info:
            await exchange_code_for_tokens("abcdef", "verifier", client=client)

    error = exc_info.value
    assert error.code == "invalid_grant"
    assert error.status_code == 400
    assert "abcdef" not in str(error)
    assert "abcdef" not in error.body


@pytest.mark.asyncio
async def test_structured_error_fields_are_ignored() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": ["invalid_grant"], "error_description": {"reason": "revoked"}})

    async with _client(handler) as client:
        with pytest.raises(ProviderError) as exc_info:
            await exchange_code_for_tokens("code", "verifier", client=client)
    assert exc_info.value.code == "http_400"
    assert exc_info.value.description is None
    assert exc_info.value.status_code == 400


@pytest.mark.asyncio
async def test_non_json_error_uses_http_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    async with _client(handler) as client:
        with pytest.raises(ProviderError) as exc_info:
            await exchange_code_for_tokens("code", "verifier", client=client)
    assert exc_info.value.code == "http_502"


@pytest.mark.asyncio
async def test_transport_failure_becomes_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(NetworkError):
            await exchange_code_for_tokens("code", "verifier", client=client)


@pytest.mark.asyncio
async def test_timeout_becomes_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    async with _client(handler) as client:
        with pytest.raises(NetworkError):
            await refresh_access_token("refresh", client=client)


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_not_rotated() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(_form(request))
        return httpx.Response(200, json={"access_token": "new-access", "expires_in": 3600})

    async with _client(handler) as client:
        tokens = await refresh_access_token("old-refresh", client=client)

    assert seen == {"grant_type": "refresh_token", "client_id": LAUNCHER_CLIENT_ID, "refresh_token": "old-refresh"}
    assert tokens.access_token == "new-access"
    assert tokens.refresh_token == "old-refresh"


@pytest.mark.asyncio
async def test_refresh_uses_rotated_refresh_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "new-access", "refresh_token": "new-refresh"})

    async with _client(handler) as client:
        tokens = await refresh_access_token("old-refresh", client=client)
    assert tokens.refresh_token == "new-refresh"


@pytest.mark.asyncio
async def test_refresh_401_keeps_status_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_grant"})

    async with _client(handler) as client:
        with pytest.raises(ProviderError) as exc_info:
            await refresh_access_token("dead", client=client)
    assert exc_info.value.status_code == 401
