"""Configuration management package for jagex-launcher-auth"""

from .loader import ConfigLoader, get_config_loader

__all__ = [
    "ConfigLoader",
    "get_config_loader",
]
