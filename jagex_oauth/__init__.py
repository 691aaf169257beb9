"""
Jagex account OAuth login for the desktop launcher flow
"""
from .constants import (
    AUTHORIZE_URL,
    TOKEN_URL,
    LAUNCHER_CLIENT_ID,
    LAUNCHER_REDIRECT_URI,
    LAUNCHER_SCOPE,
    CONSENT_CLIENT_ID,
    CONSENT_SCOPE,
    SESSIONS_URL,
    ACCOUNTS_URL,
    DEFAULT_LOGIN_TIMEOUT,
)
from .models import (
    PkceParameters,
    TokenResponse,
    LoginProvider,
    ProviderDecision,
    GameCharacter,
    StoredCredentials,
    AuthSession,
)
from .errors import (
    AuthError,
    SecurityError,
    ProviderError,
    NetworkError,
    NeedsLoginError,
    NoCharactersError,
    StoreUnavailableError,
)
from .pkce import (
    generate_verifier,
    derive_challenge,
    generate_state,
    generate_nonce,
    generate_csrf_token,
    create_pkce_parameters,
)
from .jwt_utils import (
    decode_jwt,
    parse_jwt_claim,
    parse_jwt_expiry,
    parse_login_provider,
)
from .authorization import (
    build_launcher_authorization_url,
    build_consent_authorization_url,
    open_in_browser,
)
from .token_exchange import (
    exchange_code_for_tokens,
    refresh_access_token,
)
from .game_session import (
    create_game_session,
    fetch_accounts,
    choose_character,
)
from .redirect_channel import (
    RedirectChannel,
    RedirectResult,
    RedirectStatus,
    PendingRedirectChannel,
    parse_redirect_uri,
)
from .capture_server import (
    ConsentCaptureServer,
    ConsentResult,
    ConsentStatus,
    start_capture_server,
)
from .credential_manager import (
    CredentialManager,
    RefreshResult,
    RefreshStatus,
)
from .login_flow import (
    FlowState,
    LoginFlow,
    LoginOutcome,
)

__all__ = [
    # Constants
    "AUTHORIZE_URL",
    "TOKEN_URL",
    "LAUNCHER_CLIENT_ID",
    "LAUNCHER_REDIRECT_URI",
    "LAUNCHER_SCOPE",
    "CONSENT_CLIENT_ID",
    "CONSENT_SCOPE",
    "SESSIONS_URL",
    "ACCOUNTS_URL",
    "DEFAULT_LOGIN_TIMEOUT",
    # Models
    "PkceParameters",
    "TokenResponse",
    "LoginProvider",
    "ProviderDecision",
    "GameCharacter",
    "StoredCredentials",
    "AuthSession",
    # Errors
    "AuthError",
    "SecurityError",
    "ProviderError",
    "NetworkError",
    "NeedsLoginError",
    "NoCharactersError",
    "StoreUnavailableError",
    # Secrets
    "generate_verifier",
    "derive_challenge",
    "generate_state",
    "generate_nonce",
    "generate_csrf_token",
    "create_pkce_parameters",
    # JWT Utilities
    "decode_jwt",
    "parse_jwt_claim",
    "parse_jwt_expiry",
    "parse_login_provider",
    # Authorization
    "build_launcher_authorization_url",
    "build_consent_authorization_url",
    "open_in_browser",
    # Token Exchange
    "exchange_code_for_tokens",
    "refresh_access_token",
    # Game Session
    "create_game_session",
    "fetch_accounts",
    "choose_character",
    # Redirect Delivery
    "RedirectChannel",
    "RedirectResult",
    "RedirectStatus",
    "PendingRedirectChannel",
    "parse_redirect_uri",
    # Capture Server
    "ConsentCaptureServer",
    "ConsentResult",
    "ConsentStatus",
    "start_capture_server",
    # Credentials
    "CredentialManager",
    "RefreshResult",
    "RefreshStatus",
    # Login Flow
    "FlowState",
    "LoginFlow",
    "LoginOutcome",
]
