"""Data models for the Jagex launcher login flow"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass
class PkceParameters:
    """PKCE (Proof Key for Code Exchange) parameters for one login attempt

    Attributes:
        verifier: Random secret sent only with the token exchange
        challenge: S256 challenge sent with the authorization request
        method: Challenge method, always S256
    """
    verifier: str = field(repr=False)
    challenge: str
    method: str = "S256"


@dataclass
class TokenResponse:
    """Token endpoint response

    Attributes:
        access_token: Bearer token, held in memory only
        refresh_token: Long-lived refresh token, if issued
        id_token: OpenID Connect identity token, if issued
        expires_in: Lifetime of the access token in seconds
        access_token_expiry: Unix time the access token expires
    """
    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    id_token: Optional[str] = field(default=None, repr=False)
    expires_in: int = 3600
    access_token_expiry: int = 0


class LoginProvider(str, Enum):
    """Account kind selected by the id_token ``login_provider`` claim"""
    FULL = "full"
    LEGACY = "legacy"


@dataclass
class ProviderDecision:
    """Result of reading the ``login_provider`` claim

    Attributes:
        provider: Branch to take
        claim_value: Raw claim value, or None when the claim was absent
        low_confidence: True when the branch was defaulted rather than read
    """
    provider: LoginProvider
    claim_value: Optional[str] = None
    low_confidence: bool = False


@dataclass(frozen=True)
class GameCharacter:
    """A game character (account) returned by the accounts endpoint"""
    account_id: str
    display_name: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GameCharacter":
        return cls(
            account_id=str(data["accountId"]),
            display_name=data.get("displayName") or "",
        )


@dataclass
class StoredCredentials:
    """Decrypted contents of the persistent credential store

    The access token is never part of this record.
    """
    refresh_token: Optional[str] = field(default=None, repr=False)
    session_id: Optional[str] = field(default=None, repr=False)
    character_id: Optional[str] = None
    display_name: Optional[str] = None
    access_token_expiry: int = 0

    @property
    def is_legacy(self) -> bool:
        return self.session_id is None and self.refresh_token is not None


@dataclass
class AuthSession:
    """Secrets and bookkeeping for a single login attempt"""
    step1_state: Optional[str] = field(default=None, repr=False)
    step2_state: Optional[str] = field(default=None, repr=False)
    step2_nonce: Optional[str] = field(default=None, repr=False)
    step2_csrf_token: Optional[str] = field(default=None, repr=False)
    capture_port: Optional[int] = None
    pkce: Optional[PkceParameters] = field(default=None, repr=False)
    cancelled: bool = False

    def wipe(self) -> None:
        """Drop every secret held by this attempt"""
        self.step1_state = None
        self.step2_state = None
        self.step2_nonce = None
        self.step2_csrf_token = None
        self.pkce = None


@dataclass
class PendingSelection:
    """Tokens and session kept while the user picks a character"""
    tokens: TokenResponse = field(repr=False)
    session_id: str = field(repr=False)
    characters: List[GameCharacter] = field(default_factory=list)
