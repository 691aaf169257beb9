"""Game session service: session creation and character listing"""

import json
import logging
from typing import List, Optional

import httpx

from .constants import ACCOUNTS_URL, SESSIONS_URL
from .errors import NetworkError, NoCharactersError, ProviderError
from .models import GameCharacter
from .token_exchange import provider_client

logger = logging.getLogger(__name__)


async def _send(method: str, url: str, client: Optional[httpx.AsyncClient], **kwargs) -> httpx.Response:
    path = httpx.URL(url).path
    try:
        async with provider_client(client) as http:
            response = await http.request(method, url, **kwargs)
    except httpx.RequestError as e:
        logger.error(f"Game session request to {path} failed: {type(e).__name__}")
        raise NetworkError(f"Game session request failed: {type(e).__name__}") from e

    if not response.is_success:
        error = ProviderError.from_response(response)
        logger.error(f"Game session request to {path} failed with status {response.status_code}: {error.body}")
        raise error
    return response


def _json_body(response: httpx.Response):
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError) as e:
        raise ProviderError(
            "invalid_session_response",
            "Game session response is not JSON",
            status_code=response.status_code,
            body=response.text,
        ) from e


async def create_game_session(id_token: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Create a game session from the consent id_token

    The id_token is the credential here, so no Authorization header is sent.

    Args:
        id_token: id_token delivered by the consent step
        client: Optional shared HTTP client

    Returns:
        The session id
    """
    response = await _send("POST", SESSIONS_URL, client, json={"idToken": id_token})

    payload = _json_body(response)
    session_id = payload.get("sessionId") if isinstance(payload, dict) else None
    if not session_id or not isinstance(session_id, str):
        raise ProviderError(
            "invalid_session_response",
            "Game session response missing sessionId",
            status_code=response.status_code,
        )

    logger.info("Created game session")
    return session_id


async def fetch_accounts(session_id: str, client: Optional[httpx.AsyncClient] = None) -> List[GameCharacter]:
    """List the characters available to a game session"""
    response = await _send(
        "GET",
        ACCOUNTS_URL,
        client,
        headers={"Authorization": f"Bearer {session_id}", "Accept": "application/json"},
    )

    payload = _json_body(response)
    if not isinstance(payload, list):
        raise ProviderError(
            "invalid_accounts_response",
            "Accounts response is not a list",
            status_code=response.status_code,
        )

    characters = []
    for entry in payload:
        if not isinstance(entry, dict) or entry.get("accountId") is None:
            logger.warning("Skipping malformed account entry")
            continue
        characters.append(GameCharacter.from_dict(entry))

    logger.info(f"Fetched {len(characters)} character(s)")
    return characters


def choose_character(characters: List[GameCharacter]) -> Optional[GameCharacter]:
    """
    Apply the character selection policy.

    Args:
        characters: Characters returned by fetch_accounts

    Returns:
        The only character, or None when the user has to choose

    Raises:
        NoCharactersError: If the account has no characters
    """
    if not characters:
        raise NoCharactersError("This account has no game characters")
    if len(characters) == 1:
        return characters[0]
    return None
