"""Status display functionality for CLI"""

from datetime import datetime
import time
from typing import Optional

from rich.table import Table

from jagex_oauth import CredentialManager


def format_expiry(expiry: Optional[int], now: Optional[float] = None) -> str:
    """Human readable time until (or since) an access token expiry"""
    if not expiry:
        return "Unknown"

    now = time.time() if now is None else now
    delta = int(expiry - now)
    suffix = "" if delta >= 0 else " ago"
    delta = abs(delta)

    hours = delta // 3600
    minutes = (delta % 3600) // 60
    time_str = f"{hours}h {minutes}m" if hours > 0 else f"{minutes}m"
    return f"{time_str}{suffix}" if suffix else f"in {time_str}"


def show_credential_status(credentials: CredentialManager, console):
    """
    Display stored credential status without revealing any secret

    Args:
        credentials: CredentialManager instance
        console: Rich console for output
    """
    status = credentials.store.get_status()

    table = Table(title="Jagex Login Status")
    table.add_column("Property", style="cyan")
    table.add_column("Value")

    if not status["available"]:
        table.add_row("Credential Store", "[red]Unavailable[/red]")
        table.add_row("Credential File", str(credentials.store.credential_file))
        console.print(table)
        return

    table.add_row("Credential Store", "Available")
    table.add_row("Logged In", "Yes" if status["has_credentials"] else "No")

    if status["has_credentials"]:
        account_kind = "Jagex account" if status["has_session"] else "Legacy account"
        table.add_row("Account Kind", account_kind)
        if status.get("display_name"):
            table.add_row("Character", status["display_name"])
        expiry = status.get("access_token_expiry")
        if expiry:
            expires_at = datetime.fromtimestamp(expiry).isoformat(timespec="seconds")
            table.add_row("Access Token Expires", f"{expires_at} ({format_expiry(expiry)})")
        table.add_row("Refresh Token", "Stored" if status["has_refresh_token"] else "Missing")

    table.add_row("Credential File", str(credentials.store.credential_file))
    console.print(table)
