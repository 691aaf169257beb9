"""CLI package for the Jagex launcher login

Provides the ``jagex-auth`` command: login, status, refresh, logout and the
game client launch environment.
"""

from cli.main import main

__all__ = [
    "main",
]
