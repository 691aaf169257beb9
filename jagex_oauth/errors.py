"""Exception taxonomy for the Jagex login flow"""

import json
from typing import Optional

import httpx

from utils.redaction import mask_secrets, sanitize_body
from utils.storage import StoreUnavailableError


class AuthError(Exception):
    """Base class for every login and credential failure"""


class SecurityError(AuthError):
    """A state, nonce or CSRF check failed

    Attributes:
        checkpoint: Which check failed (``step1_state``, ``step2_state``,
            ``step2_nonce``, ``step2_csrf`` or ``capture_request``)
    """

    def __init__(self, checkpoint: str, message: Optional[str] = None):
        self.checkpoint = checkpoint
        super().__init__(message or f"Security check failed: {checkpoint}")


class ProviderError(AuthError):
    """The provider returned an OAuth error or a non-2xx response

    Attributes:
        code: OAuth ``error`` value, or ``http_<status>`` when none was sent
        description: Masked ``error_description``
        status_code: HTTP status, if the error came from an HTTP response
        body: Masked, length-capped response body
    """

    def __init__(
        self,
        code: str,
        description: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        self.code = code
        self.description = mask_secrets(description) if description else None
        self.status_code = status_code
        self.body = sanitize_body(body) if body else ""
        message = f"Provider error: {self.code}"
        if self.description:
            message += f" ({self.description})"
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ProviderError":
        """Build from a failed HTTP response without keeping the raw body"""
        code = f"http_{response.status_code}"
        description = None
        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            payload = None
        if isinstance(payload, dict):
            error = payload.get("error")
            if isinstance(error, str) and error:
                code = error
            description = payload.get("error_description")
            if not isinstance(description, str):
                description = None
        return cls(
            code=code,
            description=description,
            status_code=response.status_code,
            body=response.text,
        )


class NetworkError(AuthError):
    """Transport failure or timeout; retrying the same step may succeed"""


class NeedsLoginError(AuthError):
    """The refresh token was revoked or expired; a full login is required"""


class NoCharactersError(AuthError):
    """The game session was created but the account has no characters"""


__all__ = [
    "AuthError",
    "SecurityError",
    "ProviderError",
    "NetworkError",
    "NeedsLoginError",
    "NoCharactersError",
    "StoreUnavailableError",
]
