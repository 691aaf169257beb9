"""
Jagex token endpoint: authorization code exchange and refresh
"""
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from settings import CONNECT_TIMEOUT, REQUEST_TIMEOUT
from .constants import DEFAULT_EXPIRES_IN, LAUNCHER_CLIENT_ID, LAUNCHER_REDIRECT_URI, TOKEN_URL
from .errors import NetworkError, ProviderError
from .jwt_utils import parse_jwt_expiry
from .models import TokenResponse

logger = logging.getLogger(__name__)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


@asynccontextmanager
async def provider_client(client: Optional[httpx.AsyncClient] = None) -> AsyncIterator[httpx.AsyncClient]:
    """Yield the caller's client, or a short-lived one closed on exit"""
    if client is not None:
        yield client
        return
    timeout = httpx.Timeout(REQUEST_TIMEOUT, connect=CONNECT_TIMEOUT)
    async with httpx.AsyncClient(timeout=timeout) as owned:
        yield owned


def parse_token_payload(payload: Dict[str, Any], issued_at: Optional[float] = None) -> TokenResponse:
    """
    Build a TokenResponse from a token endpoint JSON body.

    The expiry comes from the id_token ``exp`` claim when there is one,
    otherwise from the time of issue plus ``expires_in``.

    Args:
        payload: Decoded JSON body
        issued_at: Unix time the response was received (defaults to now)

    Returns:
        TokenResponse

    Raises:
        ProviderError: If the body carries no access token
    """
    access_token = payload.get("access_token")
    if not access_token or not isinstance(access_token, str):
        raise ProviderError("invalid_token_response", "Token response missing access_token")

    try:
        expires_in = int(payload.get("expires_in", DEFAULT_EXPIRES_IN))
    except (TypeError, ValueError):
        expires_in = DEFAULT_EXPIRES_IN

    if issued_at is None:
        issued_at = time.time()

    id_token = payload.get("id_token")
    expiry = parse_jwt_expiry(id_token)
    if expiry is None:
        expiry = int(issued_at) + expires_in

    return TokenResponse(
        access_token=access_token,
        refresh_token=payload.get("refresh_token"),
        id_token=id_token,
        expires_in=expires_in,
        access_token_expiry=expiry,
    )


async def _post_token_request(data: Dict[str, str], client: Optional[httpx.AsyncClient]) -> Dict[str, Any]:
    grant = data.get("grant_type")
    try:
        async with provider_client(client) as http:
            response = await http.post(TOKEN_URL, data=data, headers=FORM_HEADERS)
    except httpx.TimeoutException as e:
        logger.error(f"Token request ({grant}) timed out")
        raise NetworkError(f"Token request timed out: {type(e).__name__}") from e
    except httpx.RequestError as e:
        logger.error(f"Token request ({grant}) failed: {type(e).__name__}")
        raise NetworkError(f"Token request failed: {type(e).__name__}") from e

    if not response.is_success:
        error = ProviderError.from_response(response)
        logger.error(f"Token request ({grant}) failed with status {response.status_code}: {error.body}")
        raise error

    try:
        payload = response.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise ProviderError(
            "invalid_token_response",
            "Token response is not JSON",
            status_code=response.status_code,
            body=response.text,
        ) from e
    if not isinstance(payload, dict):
        raise ProviderError("invalid_token_response", "Token response is not an object")
    return payload


async def exchange_code_for_tokens(
    code: str,
    code_verifier: str,
    client: Optional[httpx.AsyncClient] = None,
) -> TokenResponse:
    """
    Exchange a Step 1 authorization code for tokens.

    No client secret is sent; the PKCE verifier takes its place.

    Args:
        code: Authorization code from the launcher redirect
        code_verifier: PKCE verifier of the same attempt
        client: Optional shared HTTP client

    Returns:
        TokenResponse

    Raises:
        ProviderError: Non-2xx response or malformed body
        NetworkError: Transport failure or timeout
    """
    payload = await _post_token_request(
        {
            "grant_type": "authorization_code",
            "client_id": LAUNCHER_CLIENT_ID,
            "code": code,
            "code_verifier": code_verifier,
            "redirect_uri": LAUNCHER_REDIRECT_URI,
        },
        client,
    )
    logger.info("Exchanged authorization code for tokens")
    return parse_token_payload(payload)


async def refresh_access_token(
    refresh_token: str,
    client: Optional[httpx.AsyncClient] = None,
) -> TokenResponse:
    """
    Refresh the access token with the launcher client id.

    Args:
        refresh_token: Stored refresh token
        client: Optional shared HTTP client

    Returns:
        TokenResponse; keeps the old refresh token if the provider did not rotate it

    Raises:
        ProviderError: Non-2xx response (``status_code`` 401 means the token is dead)
        NetworkError: Transport failure or timeout
    """
    payload = await _post_token_request(
        {
            "grant_type": "refresh_token",
            "client_id": LAUNCHER_CLIENT_ID,
            "refresh_token": refresh_token,
        },
        client,
    )
    tokens = parse_token_payload(payload)
    if not tokens.refresh_token:
        tokens.refresh_token = refresh_token
    logger.info("Refreshed access token")
    return tokens
