"""Configuration loader for the Jagex launcher login

Loads configuration from multiple sources with the following priority:
1. Environment variables (highest priority)
2. .env file (path overridable with JAGEX_AUTH_ENV_FILE)
3. Hardcoded defaults (lowest priority)
"""

import logging
import os
from pathlib import Path
from typing import Any, Optional
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_FILE_VARIABLE = "JAGEX_AUTH_ENV_FILE"
TRUE_VALUES = ("true", "1", "yes", "on")


class ConfigLoader:
    """Resolves settings from the environment, a .env file and defaults"""

    def __init__(self, env_path: Optional[str] = None):
        """Initialize the config loader

        Args:
            env_path: Optional path to .env file. Defaults to $JAGEX_AUTH_ENV_FILE,
                     then '.env' in the current directory.
        """
        env_path = env_path or os.getenv(ENV_FILE_VARIABLE)
        self.env_path = Path(env_path) if env_path else Path(".env")
        self._load_env_file()

    def _load_env_file(self):
        # Variables already in the environment win over the file
        if self.env_path.exists():
            load_dotenv(dotenv_path=self.env_path, override=False)
            logger.debug(f"Loaded environment variables from {self.env_path}")
        else:
            logger.debug(f"No .env file at {self.env_path}, using environment variables and defaults only")

    def get(self, env_var: str, default: Any) -> Any:
        """Get a configuration value with priority: env > default

        The raw environment string is coerced to the type of ``default``
        (bool, int or float). Strings starting with ``~/`` are expanded.

        Args:
            env_var: Environment variable name to check
            default: Default value if not found in environment

        Returns:
            The configuration value from environment or default
        """
        env_value = os.getenv(env_var)
        if env_value is None or env_value == "":
            return self._expand(default)
        return self._expand(self._coerce(env_var, env_value, default))

    @staticmethod
    def _coerce(env_var: str, value: str, default: Any) -> Any:
        # bool before int: bool is an int subclass
        if isinstance(default, bool):
            return value.strip().lower() in TRUE_VALUES
        for kind in (int, float):
            if isinstance(default, kind):
                try:
                    return kind(value)
                except ValueError:
                    logger.warning(f"Failed to parse {env_var}={value} as {kind.__name__}, using default: {default}")
                    return default
        return value

    @staticmethod
    def _expand(value: Any) -> Any:
        if isinstance(value, str) and value.startswith("~/"):
            return str(Path(value).expanduser())
        return value


_config_loader = None


def get_config_loader() -> ConfigLoader:
    """Get or create the global ConfigLoader instance"""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader
