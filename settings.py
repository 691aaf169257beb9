from pathlib import Path
from config.loader import get_config_loader

# Get the config loader instance
config = get_config_loader()

# Logging
LOG_LEVEL = config.get("LOG_LEVEL", "info")
DEBUG_LOG_FILE = config.get("DEBUG_LOG_FILE", "jagex_auth_debug.log")

# Timeout configuration
# Whole login step (launcher redirect, or both consent capture requests)
LOGIN_TIMEOUT = config.get("LOGIN_TIMEOUT", 120.0)
# Connection timeout: Time to establish TCP connection to the provider
CONNECT_TIMEOUT = config.get("CONNECT_TIMEOUT", 10.0)
# Request timeout: Total timeout for token and game session requests
REQUEST_TIMEOUT = config.get("REQUEST_TIMEOUT", 30.0)

# Credential storage
CREDENTIAL_DIR = config.get("CREDENTIAL_DIR", str(Path.home() / ".jagex-launcher-auth"))
CREDENTIAL_FILE = config.get("CREDENTIAL_FILE", str(Path(CREDENTIAL_DIR) / "credentials.enc"))
CREDENTIAL_KEY_FILE = config.get("CREDENTIAL_KEY_FILE", str(Path(CREDENTIAL_DIR) / "credentials.key"))
# Fernet key supplied by the environment instead of the key file (e.g. from a system keyring)
CREDENTIAL_KEY = config.get("JAGEX_AUTH_KEY", "")
