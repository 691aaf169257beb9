"""
Masking of token-shaped values before they reach logs, errors or the console.
"""
import logging
import re
from typing import Any, Optional

REDACTED = "[REDACTED]"
MAX_SANITIZED_BODY = 512

# "access_token": "...", refresh_token=..., idToken: ... in JSON, form or query text
_SECRET_FIELD = re.compile(
    r"""(?P<key>(?<![A-Za-z0-9_])["']?(?:access_token|refresh_token|id_token|idToken|sessionId|session_id|"""
    r"""code_verifier|code|_csrf|nonce|state)["']?\s*[:=]\s*["']?)(?P<value>[^"'&\s,;}]+)""",
)
_BEARER = re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+")
_JWT = re.compile(r"eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*")
# Long opaque base64url / hex runs
_OPAQUE = re.compile(r"[A-Za-z0-9_-]{32,}")


def mask_secrets(text: Any) -> str:
    """Replace token-shaped substrings with a fixed marker; non-strings are masked as their str()"""
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)
    if not text:
        return ""
    masked = _SECRET_FIELD.sub(lambda m: f"{m.group('key')}{REDACTED}", text)
    masked = _BEARER.sub(lambda m: f"{m.group(1)}{REDACTED}", masked)
    masked = _JWT.sub(REDACTED, masked)
    return _OPAQUE.sub(REDACTED, masked)


def sanitize_body(body: Optional[str], limit: int = MAX_SANITIZED_BODY) -> str:
    """
    Prepare a provider response body for logging or error reporting.

    Token-shaped substrings are masked first, then the result is capped at
    ``limit`` characters.

    Args:
        body: Raw response text (may be None)
        limit: Maximum length of the returned text

    Returns:
        Masked, length-capped text
    """
    masked = mask_secrets(body)
    if len(masked) > limit:
        return masked[:limit] + "...[truncated]"
    return masked


class RedactingFilter(logging.Filter):
    """Logging filter that masks secrets in the fully formatted message"""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        record.msg = mask_secrets(message)
        record.args = None
        return True
