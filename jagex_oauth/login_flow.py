"""
Login flow controller

Runs one login attempt at a time through launcher login (Step 1), game
consent (Step 2, Jagex accounts only) and game session creation (Step 3),
then commits the result to the CredentialManager.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

import httpx

from utils.storage import StoreUnavailableError
from .authorization import build_consent_authorization_url, build_launcher_authorization_url, open_in_browser
from .capture_server import ConsentCaptureServer, ConsentStatus
from .constants import DEFAULT_LOGIN_TIMEOUT
from .credential_manager import CredentialManager
from .errors import AuthError, ProviderError, SecurityError
from .game_session import choose_character, create_game_session, fetch_accounts
from .jwt_utils import parse_login_provider
from .models import AuthSession, GameCharacter, LoginProvider, PendingSelection, ProviderDecision, TokenResponse
from .pkce import create_pkce_parameters, generate_csrf_token, generate_nonce, generate_state, values_match
from .redirect_channel import RedirectChannel, RedirectStatus
from .token_exchange import exchange_code_for_tokens

logger = logging.getLogger(__name__)

BrowserLauncher = Callable[[str], None]


class FlowState(str, Enum):
    IDLE = "idle"
    STEP1_PENDING = "step1_pending"
    STEP1_EXCHANGING = "step1_exchanging"
    BRANCH_DECISION = "branch_decision"
    STEP2_PENDING = "step2_pending"
    STEP2_EXCHANGING = "step2_exchanging"
    STEP3 = "step3"
    CHARACTER_SELECT = "character_select"
    COMPLETE = "complete"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({FlowState.COMPLETE, FlowState.FAILED, FlowState.CANCELLED})


@dataclass
class LoginOutcome:
    """Where a login attempt ended up

    Attributes:
        state: COMPLETE, FAILED, CANCELLED or CHARACTER_SELECT
        display_name: Selected character (COMPLETE, Jagex accounts)
        characters: Characters to choose from (CHARACTER_SELECT)
        error: Failure reason (FAILED)
        provider: Account kind, once known
        low_confidence: The account kind was assumed, not read from the token
    """
    state: FlowState
    display_name: Optional[str] = None
    characters: List[GameCharacter] = field(default_factory=list)
    error: Optional[Exception] = None
    provider: Optional[LoginProvider] = None
    low_confidence: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == FlowState.COMPLETE


class LoginFlow:
    """State machine for the Jagex launcher login"""

    def __init__(
        self,
        credentials: CredentialManager,
        redirect_channel: RedirectChannel,
        launch_browser: BrowserLauncher = open_in_browser,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_LOGIN_TIMEOUT,
        on_state_change: Optional[Callable[[FlowState], None]] = None,
    ):
        self._credentials = credentials
        self._redirect_channel = redirect_channel
        self._launch_browser = launch_browser
        self._http_client = http_client
        self.timeout = timeout
        self._on_state_change = on_state_change

        self._state = FlowState.IDLE
        self._session: Optional[AuthSession] = None
        self._task: Optional[asyncio.Task] = None
        self._capture_server: Optional[ConsentCaptureServer] = None
        self._pending: Optional[PendingSelection] = None
        self._decision: Optional[ProviderDecision] = None

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def pending_characters(self) -> List[GameCharacter]:
        return list(self._pending.characters) if self._pending else []

    def _set_state(self, state: FlowState) -> None:
        self._state = state
        logger.debug(f"Login flow state: {state.value}")
        if self._on_state_change:
            self._on_state_change(state)

    def _outcome(self, state: FlowState, **kwargs) -> LoginOutcome:
        decision = self._decision
        return LoginOutcome(
            state=state,
            provider=decision.provider if decision else None,
            low_confidence=decision.low_confidence if decision else False,
            **kwargs,
        )

    async def start_login(self) -> LoginOutcome:
        """
        Run a fresh login attempt, cancelling any attempt still in progress.

        Returns:
            LoginOutcome; CHARACTER_SELECT means select_character() must follow
        """
        await self.cancel()

        session = AuthSession()
        self._session = session
        self._decision = None
        task = asyncio.ensure_future(self._run_attempt(session))
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if session.cancelled:
                return LoginOutcome(state=FlowState.CANCELLED)
            raise

    def select_character(self, character: GameCharacter) -> LoginOutcome:
        """
        Finish an attempt paused in CHARACTER_SELECT.

        Args:
            character: One of the characters offered in the outcome

        Raises:
            RuntimeError: If no selection is pending
            ValueError: If the character was not offered
        """
        pending = self._pending
        if self._state != FlowState.CHARACTER_SELECT or pending is None:
            raise RuntimeError("No character selection is pending")

        chosen = next((c for c in pending.characters if c.account_id == character.account_id), None)
        if chosen is None:
            raise ValueError(f"Character {character.account_id} was not offered")

        self._pending = None
        try:
            return self._commit_session(pending.tokens, pending.session_id, chosen)
        except StoreUnavailableError as e:
            logger.error(f"Could not save credentials: {e}")
            self._set_state(FlowState.FAILED)
            return self._outcome(FlowState.FAILED, error=e)

    async def cancel(self) -> None:
        """Abandon the current attempt: close the server, abort calls, drop secrets"""
        session, task, server = self._session, self._task, self._capture_server
        if session is not None:
            session.cancelled = True
        if server is not None:
            await server.stop()
        self._redirect_channel.cancel()

        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])

        if self._pending is not None:
            self._pending = None
            self._set_state(FlowState.CANCELLED)

        if session is not None:
            session.wipe()
        self._session = None
        self._task = None
        self._capture_server = None

    async def _run_attempt(self, session: AuthSession) -> LoginOutcome:
        try:
            return await self._authenticate(session)
        except (AuthError, StoreUnavailableError) as e:
            logger.error(f"Login failed: {e}")
            self._set_state(FlowState.FAILED)
            return self._outcome(FlowState.FAILED, error=e)
        except asyncio.CancelledError:
            logger.info("Login attempt cancelled")
            self._set_state(FlowState.CANCELLED)
            raise
        except Exception:
            self._set_state(FlowState.FAILED)
            raise
        finally:
            await self._close_capture_server()
            session.wipe()

    async def _authenticate(self, session: AuthSession) -> LoginOutcome:
        tokens = await self._launcher_login(session)
        if tokens is None:
            self._set_state(FlowState.CANCELLED)
            return self._outcome(FlowState.CANCELLED)

        self._set_state(FlowState.BRANCH_DECISION)
        self._decision = parse_login_provider(tokens.id_token)
        logger.info(f"Account kind: {self._decision.provider.value}")

        if self._decision.provider == LoginProvider.LEGACY:
            self._set_state(FlowState.STEP3)
            self._ensure_current(session)
            self._credentials.store_tokens(tokens, replace_session=True)
            self._set_state(FlowState.COMPLETE)
            return self._outcome(FlowState.COMPLETE)

        id_token = await self._game_consent(session, tokens)
        if id_token is None:
            self._set_state(FlowState.CANCELLED)
            return self._outcome(FlowState.CANCELLED)

        return await self._game_session(session, tokens, id_token)

    async def _launcher_login(self, session: AuthSession) -> Optional[TokenResponse]:
        """Step 1: returns the launcher tokens, or None if the user gave up"""
        self._set_state(FlowState.STEP1_PENDING)
        session.pkce = create_pkce_parameters()
        session.step1_state = generate_state()

        self._redirect_channel.prepare()
        self._launch_browser(build_launcher_authorization_url(session.pkce.challenge, session.step1_state))
        redirect = await self._redirect_channel.wait_for_redirect(self.timeout)

        if redirect.status == RedirectStatus.CANCELLED:
            return None
        if redirect.status == RedirectStatus.SUCCESS or redirect.state is not None:
            if not values_match(redirect.state, session.step1_state):
                raise SecurityError("step1_state")
        if redirect.status == RedirectStatus.ERROR:
            raise ProviderError(redirect.error or "unknown_error", redirect.description)

        self._set_state(FlowState.STEP1_EXCHANGING)
        tokens = await exchange_code_for_tokens(redirect.code, session.pkce.verifier, client=self._http_client)
        session.pkce = None
        session.step1_state = None
        return tokens

    async def _game_consent(self, session: AuthSession, tokens: TokenResponse) -> Optional[str]:
        """Step 2: returns the consent id_token, or None if the user gave up"""
        self._set_state(FlowState.STEP2_PENDING)
        session.step2_state = generate_state()
        session.step2_nonce = generate_nonce()
        session.step2_csrf_token = generate_csrf_token()

        server = ConsentCaptureServer(
            session.step2_state,
            session.step2_nonce,
            session.step2_csrf_token,
            timeout=self.timeout,
        )
        self._capture_server = server
        session.capture_port = await server.start()

        self._launch_browser(
            build_consent_authorization_url(
                session.capture_port,
                session.step2_state,
                session.step2_nonce,
                id_token_hint=tokens.id_token,
            )
        )
        result = await server.wait_for_consent()
        session.step2_csrf_token = None

        if result.status == ConsentStatus.CANCELLED:
            return None
        if result.status == ConsentStatus.ERROR:
            raise result.error

        self._set_state(FlowState.STEP2_EXCHANGING)
        return result.id_token

    async def _game_session(self, session: AuthSession, tokens: TokenResponse, id_token: str) -> LoginOutcome:
        """Step 3: create the game session and pick a character"""
        self._set_state(FlowState.STEP3)
        session_id = await create_game_session(id_token, client=self._http_client)
        characters = await fetch_accounts(session_id, client=self._http_client)
        character = choose_character(characters)

        self._ensure_current(session)
        if character is None:
            self._pending = PendingSelection(tokens=tokens, session_id=session_id, characters=characters)
            self._set_state(FlowState.CHARACTER_SELECT)
            return self._outcome(FlowState.CHARACTER_SELECT, characters=list(characters))

        return self._commit_session(tokens, session_id, character)

    def _commit_session(self, tokens: TokenResponse, session_id: str, character: GameCharacter) -> LoginOutcome:
        self._credentials.store_tokens(tokens)
        self._credentials.store_game_session(session_id, character.account_id, character.display_name)
        self._set_state(FlowState.COMPLETE)
        logger.info(f"Logged in as {character.display_name}")
        return self._outcome(FlowState.COMPLETE, display_name=character.display_name)

    def _ensure_current(self, session: AuthSession) -> None:
        # Results of an abandoned attempt never reach the credential store
        if session.cancelled or session is not self._session:
            raise asyncio.CancelledError()

    async def _close_capture_server(self) -> None:
        server = self._capture_server
        if server is not None:
            await server.stop()
            if self._capture_server is server:
                self._capture_server = None
