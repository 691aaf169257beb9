"""Shared utilities package for jagex-launcher-auth"""

from .storage import EncryptedCredentialStore, StoreUnavailableError
from .redaction import RedactingFilter, mask_secrets, sanitize_body
from .debug_console import (
    DebugCapturingConsole,
    configure_logging,
    create_console,
)

__all__ = [
    "EncryptedCredentialStore",
    "StoreUnavailableError",
    "RedactingFilter",
    "mask_secrets",
    "sanitize_body",
    "DebugCapturingConsole",
    "configure_logging",
    "create_console",
]
