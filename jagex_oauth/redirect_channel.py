"""
Delivery of the Step 1 launcher redirect

The launcher redirect page hands the result to the host through a
platform-specific route (``jagex:`` URI-scheme dispatch, an embedded browser
navigation hook, a pasted URL). The flow only depends on RedirectChannel.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import parse_qs, urlparse

from .constants import LAUNCHER_URI_SCHEME

logger = logging.getLogger(__name__)


class RedirectStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class RedirectResult:
    """Outcome of waiting for the launcher redirect

    Attributes:
        status: SUCCESS, ERROR or CANCELLED
        code: Authorization code (SUCCESS)
        state: Echoed state value, when present
        error: OAuth error code (ERROR)
        description: OAuth error description (ERROR)
    """
    status: RedirectStatus
    code: Optional[str] = field(default=None, repr=False)
    state: Optional[str] = field(default=None, repr=False)
    error: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def cancelled(cls) -> "RedirectResult":
        return cls(status=RedirectStatus.CANCELLED)


def parse_redirect_uri(uri: str) -> RedirectResult:
    """
    Parse a launcher redirect into a RedirectResult.

    Accepts the launcher URI scheme (``jagex:code=...&state=...``) as well as
    ordinary URLs carrying the parameters in the query or the fragment.

    Args:
        uri: Redirect URI as delivered by the host

    Returns:
        RedirectResult with status SUCCESS or ERROR
    """
    uri = uri.strip()
    if uri.startswith(LAUNCHER_URI_SCHEME):
        raw = uri[len(LAUNCHER_URI_SCHEME):]
    else:
        parsed = urlparse(uri)
        raw = parsed.query or parsed.fragment

    params = {key: values[0] for key, values in parse_qs(raw, keep_blank_values=True).items()}
    state = params.get("state") or None

    if params.get("error"):
        return RedirectResult(
            status=RedirectStatus.ERROR,
            state=state,
            error=params["error"],
            description=params.get("error_description"),
        )

    code = params.get("code")
    if not code:
        return RedirectResult(
            status=RedirectStatus.ERROR,
            state=state,
            error="missing_code",
            description="Redirect did not contain an authorization code",
        )

    return RedirectResult(status=RedirectStatus.SUCCESS, code=code, state=state)


class RedirectChannel(ABC):
    """Source of the Step 1 redirect result"""

    def prepare(self) -> None:
        """Arm the channel for a new attempt, dropping anything pending"""

    @abstractmethod
    async def wait_for_redirect(self, timeout: float) -> RedirectResult:
        """Wait for the redirect; CANCELLED on timeout or cancel()"""

    def cancel(self) -> None:
        """Resolve any pending wait as CANCELLED"""


class PendingRedirectChannel(RedirectChannel):
    """
    In-process channel fed by ``deliver()``.

    ``deliver`` may be called from any thread, for example a URI-scheme
    handler. Deliveries that arrive while no attempt is armed are ignored.
    """

    def __init__(self):
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._future: Optional[asyncio.Future] = None

    def prepare(self) -> None:
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._loop = asyncio.get_running_loop()
        self._future = self._loop.create_future()

    async def wait_for_redirect(self, timeout: float) -> RedirectResult:
        if self._future is None:
            self.prepare()
        future = self._future
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info(f"Login redirect not received within {timeout:.0f} seconds")
            return RedirectResult.cancelled()
        finally:
            if not future.done():
                future.cancel()
            if self._future is future:
                self._future = None

    def deliver(self, uri: str) -> bool:
        """
        Hand a redirect URI to the waiting attempt.

        Returns:
            True if an attempt was armed to receive it
        """
        loop, future = self._loop, self._future
        if loop is None or future is None or loop.is_closed():
            logger.warning("Ignoring login redirect: no login in progress")
            return False
        loop.call_soon_threadsafe(self._resolve, future, parse_redirect_uri(uri))
        return True

    def cancel(self) -> None:
        loop, future = self._loop, self._future
        if loop is None or future is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._resolve, future, RedirectResult.cancelled())

    @staticmethod
    def _resolve(future: asyncio.Future, result: RedirectResult) -> None:
        # Bound to the attempt armed at delivery time, never a later one
        if not future.done():
            future.set_result(result)
