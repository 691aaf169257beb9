"""
Authorization URL builders for the launcher login and the game consent step
"""
import logging
import webbrowser
from typing import Optional
from urllib.parse import urlencode

from .constants import (
    AUTHORIZE_URL,
    CONSENT_CLIENT_ID,
    CONSENT_REDIRECT_TEMPLATE,
    CONSENT_RESPONSE_TYPE,
    CONSENT_SCOPE,
    LAUNCHER_CLIENT_ID,
    LAUNCHER_REDIRECT_URI,
    LAUNCHER_SCOPE,
)

logger = logging.getLogger(__name__)


def build_launcher_authorization_url(challenge: str, state: str) -> str:
    """
    Build the Step 1 authorization URL (authorization code + PKCE).

    Args:
        challenge: S256 PKCE challenge
        state: Attempt state value

    Returns:
        str: Full authorization URL
    """
    params = {
        "client_id": LAUNCHER_CLIENT_ID,
        "response_type": "code",
        "redirect_uri": LAUNCHER_REDIRECT_URI,
        "scope": LAUNCHER_SCOPE,
        "code_challenge": challenge,
        "code_challenge_method": "S256",
        "state": state,
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def consent_redirect_uri(port: int) -> str:
    return CONSENT_REDIRECT_TEMPLATE.format(port=port)


def build_consent_authorization_url(
    port: int,
    state: str,
    nonce: str,
    id_token_hint: Optional[str] = None,
) -> str:
    """
    Build the Step 2 authorization URL (hybrid ``id_token code``).

    This grant does not take PKCE; the nonce, state and the capture server's
    CSRF token cover it instead.

    Args:
        port: Loopback port of the capture server
        state: Step 2 state value
        nonce: Step 2 nonce, echoed back inside the id_token
        id_token_hint: Step 1 id_token, lets the provider skip a second login

    Returns:
        str: Full authorization URL
    """
    params = {
        "response_type": CONSENT_RESPONSE_TYPE,
        "client_id": CONSENT_CLIENT_ID,
        "redirect_uri": consent_redirect_uri(port),
        "scope": CONSENT_SCOPE,
        "nonce": nonce,
        "state": state,
        "prompt": "consent",
    }
    if id_token_hint:
        params["id_token_hint"] = id_token_hint
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def open_in_browser(url: str) -> None:
    """Open an authorization URL in the user's browser"""
    try:
        opened = webbrowser.open(url)
    except webbrowser.Error as e:
        logger.warning(f"Could not launch a browser: {e}")
        opened = False
    if not opened:
        logger.warning("No browser available; open the login URL manually")
