"""
JWT payload parsing and login provider detection

Tokens are decoded without signature verification. They are only ever read
after arriving over a channel whose state, nonce and CSRF values have already
been checked, and that check is what the flow relies on.
"""
import base64
import json
import logging
from typing import Any, Dict, Optional

from .constants import LOGIN_PROVIDER_CLAIM, LOGIN_PROVIDER_JAGEX, LOGIN_PROVIDER_LEGACY
from .models import LoginProvider, ProviderDecision

logger = logging.getLogger(__name__)


def decode_jwt(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Decode a JWT payload without verification.

    Args:
        token: JWT in compact serialization (header.payload.signature)

    Returns:
        Decoded payload as dictionary, or None if the token is malformed
    """
    if not token:
        return None

    parts = token.split(".")
    if len(parts) != 3:
        logger.debug(f"Invalid JWT format: expected 3 parts, got {len(parts)}")
        return None

    # JWT uses base64url without padding
    payload = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        decoded = base64.urlsafe_b64decode(payload.encode("ascii"))
        claims = json.loads(decoded.decode("utf-8"))
    except (ValueError, UnicodeError) as e:
        logger.debug(f"Error decoding JWT payload: {type(e).__name__}")
        return None

    if not isinstance(claims, dict):
        return None
    return claims


def parse_jwt_claim(token: Optional[str], name: str) -> Any:
    """Return the named claim from a JWT payload, or None"""
    claims = decode_jwt(token)
    if claims is None:
        return None
    return claims.get(name)


def parse_jwt_expiry(token: Optional[str]) -> Optional[int]:
    """Return the ``exp`` claim as unix seconds, or None"""
    exp = parse_jwt_claim(token, "exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return int(exp)


def parse_login_provider(id_token: Optional[str]) -> ProviderDecision:
    """
    Decide between the full and legacy login branches.

    ``runescape`` selects the legacy branch and ``jagex`` the full one. A
    missing or unrecognised claim falls back to the full branch but is marked
    low confidence so callers can tell it apart from a confirmed value.

    Args:
        id_token: Step 1 id_token

    Returns:
        ProviderDecision
    """
    value = parse_jwt_claim(id_token, LOGIN_PROVIDER_CLAIM)

    if value == LOGIN_PROVIDER_LEGACY:
        return ProviderDecision(provider=LoginProvider.LEGACY, claim_value=value)
    if value == LOGIN_PROVIDER_JAGEX:
        return ProviderDecision(provider=LoginProvider.FULL, claim_value=value)

    if value is None:
        logger.warning(f"id_token has no {LOGIN_PROVIDER_CLAIM} claim, assuming a Jagex account")
    else:
        logger.warning(f"Unrecognised {LOGIN_PROVIDER_CLAIM} claim {value!r}, assuming a Jagex account")
    return ProviderDecision(
        provider=LoginProvider.FULL,
        claim_value=value if isinstance(value, str) else None,
        low_confidence=True,
    )
