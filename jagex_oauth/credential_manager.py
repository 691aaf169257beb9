"""
Credential lifecycle: in-memory access token, encrypted persistent state, refresh
"""
import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional

import httpx

from utils.storage import SESSION_GROUP, EncryptedCredentialStore, StoreUnavailableError
from .constants import REFRESH_MARGIN_SECONDS
from .errors import NeedsLoginError, NetworkError, ProviderError
from .models import StoredCredentials, TokenResponse
from .token_exchange import refresh_access_token

logger = logging.getLogger(__name__)


class RefreshStatus(str, Enum):
    VALID = "valid"
    REFRESHED = "refreshed"
    NEEDS_LOGIN = "needs_login"
    NETWORK_ERROR = "network_error"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass
class RefreshResult:
    """Outcome of refresh_if_needed

    Attributes:
        status: What happened
        error: Underlying exception for NEEDS_LOGIN, NETWORK_ERROR and STORE_UNAVAILABLE
    """
    status: RefreshStatus
    error: Optional[Exception] = None


class CredentialManager:
    """Owns the access token in memory and the refresh/session state on disk"""

    def __init__(
        self,
        store: Optional[EncryptedCredentialStore] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store if store is not None else EncryptedCredentialStore()
        self._http_client = http_client
        self._clock = clock
        self._access_token: Optional[str] = None
        self._token_lock = threading.Lock()
        self._refresh_lock: Optional[asyncio.Lock] = None
        self._generation = 0

    def get_access_token(self) -> Optional[str]:
        with self._token_lock:
            return self._access_token

    def store_tokens(self, response: TokenResponse, replace_session: bool = False) -> None:
        """
        Keep the access token in memory and persist the refresh token and expiry.

        Args:
            response: Token endpoint response
            replace_session: Also drop any stored game session in the same write
                (used when a legacy account replaces a previous login)

        Raises:
            StoreUnavailableError: If the encrypted store cannot be written
        """
        values = {"access_token_expiry": int(response.access_token_expiry)}
        if response.refresh_token:
            values["refresh_token"] = response.refresh_token

        self.store.write_group(values, remove=SESSION_GROUP if replace_session else ())
        with self._token_lock:
            self._access_token = response.access_token
        logger.debug(f"Stored tokens expiring at {values['access_token_expiry']}")

    def store_game_session(self, session_id: str, character_id: str, display_name: str) -> None:
        """Persist the game session and selected character as one group"""
        self.store.write_group(
            {
                "session_id": session_id,
                "character_id": character_id,
                "display_name": display_name,
            }
        )
        logger.info(f"Stored game session for {display_name}")

    def _get_refresh_lock(self) -> asyncio.Lock:
        if self._refresh_lock is None:
            self._refresh_lock = asyncio.Lock()
        return self._refresh_lock

    async def refresh_if_needed(self, force: bool = False) -> RefreshResult:
        """
        Refresh the access token unless it is still comfortably valid.

        Args:
            force: Refresh even if the stored expiry is still in the future

        Returns:
            RefreshResult: VALID, REFRESHED, NEEDS_LOGIN (no refresh token, or the
            provider answered 401), NETWORK_ERROR (any other failure) or
            STORE_UNAVAILABLE
        """
        async with self._get_refresh_lock():
            try:
                stored = self.store.read()
            except StoreUnavailableError as e:
                return RefreshResult(RefreshStatus.STORE_UNAVAILABLE, e)

            expiry = int(stored.get("access_token_expiry") or 0)
            if not force and self._clock() < expiry - REFRESH_MARGIN_SECONDS:
                return RefreshResult(RefreshStatus.VALID)

            refresh_token = stored.get("refresh_token")
            if not refresh_token:
                return RefreshResult(RefreshStatus.NEEDS_LOGIN, NeedsLoginError("No refresh token stored"))

            generation = self._generation
            try:
                tokens = await refresh_access_token(refresh_token, client=self._http_client)
            except ProviderError as e:
                if e.status_code == 401:
                    logger.warning("Refresh token rejected, a new login is required")
                    return RefreshResult(RefreshStatus.NEEDS_LOGIN, NeedsLoginError(str(e)))
                return RefreshResult(RefreshStatus.NETWORK_ERROR, e)
            except NetworkError as e:
                return RefreshResult(RefreshStatus.NETWORK_ERROR, e)

            if generation != self._generation:
                logger.info("Discarding refreshed tokens: credentials were cleared meanwhile")
                return RefreshResult(RefreshStatus.NEEDS_LOGIN, NeedsLoginError("Credentials were cleared"))

            try:
                self.store_tokens(tokens)
            except StoreUnavailableError as e:
                return RefreshResult(RefreshStatus.STORE_UNAVAILABLE, e)
            return RefreshResult(RefreshStatus.REFRESHED)

    def clear_credentials(self) -> bool:
        """
        Forget everything, in memory and on disk; works without the encryption key.

        Returns:
            False if the file on disk could not be removed or emptied
        """
        with self._token_lock:
            self._generation += 1
            self._access_token = None
        if not self.store.clear():
            return False
        logger.info("Cleared stored credentials")
        return True

    def get_credentials(self) -> Optional[StoredCredentials]:
        """
        Stored credentials, or None when nothing is stored.

        Raises:
            StoreUnavailableError: If the store cannot be read right now
        """
        data = self.store.read()
        if not data:
            return None
        return StoredCredentials(
            refresh_token=data.get("refresh_token"),
            session_id=data.get("session_id"),
            character_id=data.get("character_id"),
            display_name=data.get("display_name"),
            access_token_expiry=int(data.get("access_token_expiry") or 0),
        )

    def has_credentials(self) -> bool:
        credentials = self.get_credentials()
        return credentials is not None and bool(credentials.refresh_token or credentials.session_id)

    def get_display_name(self) -> Optional[str]:
        credentials = self.get_credentials()
        return credentials.display_name if credentials else None

    def is_store_available(self) -> bool:
        return self.store.is_available()

    def launch_environment(self) -> Dict[str, str]:
        """
        Environment variables the game client reads at launch.

        Jagex accounts get the session and character; legacy accounts get the
        token pair, with the access token taken from memory.

        Raises:
            NeedsLoginError: If nothing usable is stored
            StoreUnavailableError: If the store cannot be read
        """
        credentials = self.get_credentials()
        if credentials is None:
            raise NeedsLoginError("No stored credentials")

        env = {}
        if credentials.session_id:
            env["JX_SESSION_ID"] = credentials.session_id
            if credentials.character_id:
                env["JX_CHARACTER_ID"] = credentials.character_id
        else:
            access_token = self.get_access_token()
            if not access_token or not credentials.refresh_token:
                raise NeedsLoginError("Legacy account has no usable access token")
            env["JX_ACCESS_TOKEN"] = access_token
            env["JX_REFRESH_TOKEN"] = credentials.refresh_token

        if credentials.display_name:
            env["JX_DISPLAY_NAME"] = credentials.display_name
        return env
