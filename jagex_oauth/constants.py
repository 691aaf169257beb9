"""
Jagex account OAuth constants (desktop launcher flow)
"""

# Shared authorization server
AUTHORIZE_URL = "https://account.jagex.com/oauth2/auth"
TOKEN_URL = "https://account.jagex.com/oauth2/token"

# Step 1: launcher login (authorization code + PKCE)
LAUNCHER_CLIENT_ID = "com_jagex_auth_desktop_launcher"
LAUNCHER_REDIRECT_URI = "https://secure.runescape.com/m=weblogin/launcher-redirect"
LAUNCHER_SCOPE = "openid offline gamesso.token.create user.profile.read"

# Step 2: game consent (hybrid id_token + code, nonce instead of PKCE)
CONSENT_CLIENT_ID = "1fddee4e-b100-4f4e-b2b0-097f9088f9d2"
CONSENT_SCOPE = "openid offline"
CONSENT_RESPONSE_TYPE = "id_token code"
CONSENT_REDIRECT_TEMPLATE = "http://localhost:{port}"

# Step 3: game session service
SESSIONS_URL = "https://auth.jagex.com/game-session/v1/sessions"
ACCOUNTS_URL = "https://auth.jagex.com/game-session/v1/accounts"

# id_token claim selecting the account kind
LOGIN_PROVIDER_CLAIM = "login_provider"
LOGIN_PROVIDER_LEGACY = "runescape"
LOGIN_PROVIDER_JAGEX = "jagex"

# Redirect URI scheme used by the launcher redirect page
LAUNCHER_URI_SCHEME = "jagex:"

# Loopback capture server
CAPTURE_HOST = "127.0.0.1"
CAPTURE_BACKLOG = 1
CAPTURE_POST_PATH = "/jws"
CAPTURE_CSRF_FIELD = "_csrf"
CAPTURE_MAX_BODY_BYTES = 64 * 1024
DEFAULT_LOGIN_TIMEOUT = 120.0

# Access tokens are refreshed this many seconds before they expire
REFRESH_MARGIN_SECONDS = 60
DEFAULT_EXPIRES_IN = 3600
