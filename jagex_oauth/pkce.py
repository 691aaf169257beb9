"""
Random secrets for one login attempt: PKCE pair, state, nonce and CSRF token
"""
import base64
import hashlib
import hmac
import secrets
import string
from typing import Optional

from .models import PkceParameters

ALPHANUMERIC = string.ascii_uppercase + string.ascii_lowercase + string.digits

VERIFIER_BYTES = 64
STATE_BYTES = 32
NONCE_LENGTH = 48
CSRF_TOKEN_LENGTH = 32


def _random_alphanumeric(length: int) -> str:
    return "".join(secrets.choice(ALPHANUMERIC) for _ in range(length))


def generate_verifier() -> str:
    """
    Generate a PKCE code verifier.

    64 random bytes, base64url encoded without padding (86 characters).

    Returns:
        str: Code verifier
    """
    return secrets.token_urlsafe(VERIFIER_BYTES)


def derive_challenge(verifier: str) -> str:
    """
    Derive the S256 code challenge for a verifier.

    Args:
        verifier: PKCE code verifier

    Returns:
        str: base64url(sha256(verifier)) without padding
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def generate_state() -> str:
    """32 random bytes, base64url encoded without padding"""
    return secrets.token_urlsafe(STATE_BYTES)


def generate_nonce() -> str:
    """48-character alphanumeric nonce for the consent request"""
    return _random_alphanumeric(NONCE_LENGTH)


def generate_csrf_token() -> str:
    """32-character alphanumeric token embedded in the forwarder page"""
    return _random_alphanumeric(CSRF_TOKEN_LENGTH)


def create_pkce_parameters() -> PkceParameters:
    verifier = generate_verifier()
    return PkceParameters(verifier=verifier, challenge=derive_challenge(verifier))


def values_match(received: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison of an echoed secret; empty values never match"""
    if not received or not expected:
        return False
    return hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8"))
