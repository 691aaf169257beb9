"""Authentication handlers for CLI"""

import asyncio
import logging
import shlex
import threading
import webbrowser
from typing import Dict

from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from jagex_oauth import (
    CredentialManager,
    FlowState,
    LoginFlow,
    LoginOutcome,
    NeedsLoginError,
    PendingRedirectChannel,
    RedirectResult,
    RefreshStatus,
    parse_redirect_uri,
)

logger = logging.getLogger(__name__)


class ConsoleRedirectChannel(PendingRedirectChannel):
    """Launcher redirect pasted by the user

    After the Jagex login page finishes, the browser tries to open a
    ``jagex:code=...`` link. Without a registered handler the user copies that
    link (or the address of the redirect page) into the terminal.

    The prompt runs on a daemon thread bound to one attempt, so a timeout or
    ``cancel()`` ends the wait without anyone pressing Enter.
    """

    def __init__(self, console):
        super().__init__()
        self.console = console

    def _prompt(self) -> str:
        self.console.print("\n[bold]After logging in[/bold], your browser will try to open a [cyan]jagex:[/cyan] link.")
        self.console.print("Copy that link (or the address of the page you landed on) and paste it below.")
        self.console.print("[dim]Leave empty to cancel[/dim]\n")
        return Prompt.ask("Redirect URL", default="", show_default=False, console=self.console)

    def _read_redirect(self, loop: asyncio.AbstractEventLoop, future: asyncio.Future, answered: threading.Event) -> None:
        try:
            uri = self._prompt()
        except (EOFError, OSError):
            uri = ""
        answered.set()
        result = parse_redirect_uri(uri) if uri.strip() else RedirectResult.cancelled()
        try:
            loop.call_soon_threadsafe(self._resolve, future, result)
        except RuntimeError:
            logger.debug("Redirect URL arrived after the event loop closed")

    async def wait_for_redirect(self, timeout: float) -> RedirectResult:
        if self._future is None:
            self.prepare()
        answered = threading.Event()
        reader = threading.Thread(
            target=self._read_redirect,
            args=(self._loop, self._future, answered),
            name="redirect-prompt",
            daemon=True,
        )
        reader.start()

        result = await super().wait_for_redirect(timeout)
        if not answered.is_set():
            self.console.print("\n[yellow]Stopped waiting for the redirect URL[/yellow]")
        return result


def make_browser_launcher(console):
    """Browser launcher that falls back to printing the URL"""
    def launch(url: str) -> None:
        console.print("\n[bold]Opening browser...[/bold]")
        if webbrowser.open(url):
            console.print("[green][OK][/green] Browser opened successfully")
        else:
            console.print("[yellow]Could not open browser automatically[/yellow]")
            console.print(f"Please open this URL manually:\n{url}")
    return launch


def choose_character_interactively(flow: LoginFlow, outcome: LoginOutcome, console) -> LoginOutcome:
    """Ask which character to use when the account has several"""
    table = Table(title="Characters")
    table.add_column("#", style="cyan")
    table.add_column("Name")
    for index, character in enumerate(outcome.characters, start=1):
        table.add_row(str(index), character.display_name or f"(unnamed {character.account_id})")
    console.print(table)

    choices = [str(i) for i in range(1, len(outcome.characters) + 1)]
    selection = Prompt.ask("Select a character", choices=choices, console=console)
    return flow.select_character(outcome.characters[int(selection) - 1])


def report_outcome(outcome: LoginOutcome, console) -> bool:
    """Print the final login outcome; returns True on success"""
    if outcome.low_confidence:
        console.print("[yellow]Warning:[/yellow] the account kind could not be confirmed; assumed a Jagex account")

    if outcome.state == FlowState.COMPLETE:
        name = outcome.display_name or "legacy account"
        console.print(Panel.fit(f"[green]Logged in as {name}[/green]", title="Login Complete"))
        return True

    if outcome.state == FlowState.CANCELLED:
        console.print("[yellow]Login cancelled[/yellow]")
        return False

    console.print(Panel.fit(f"[red]{outcome.error}[/red]", title="Login Failed"))
    return False


async def run_login(credentials: CredentialManager, console, timeout: float) -> bool:
    """
    Run the full interactive login

    Args:
        credentials: CredentialManager receiving the result
        console: Rich console for output
        timeout: Seconds allowed for each browser step

    Returns:
        True if the login completed
    """
    flow = LoginFlow(
        credentials,
        ConsoleRedirectChannel(console),
        launch_browser=make_browser_launcher(console),
        timeout=timeout,
    )
    try:
        outcome = await flow.start_login()
        if outcome.state == FlowState.CHARACTER_SELECT:
            outcome = choose_character_interactively(flow, outcome, console)
    finally:
        await flow.cancel()
    return report_outcome(outcome, console)


async def run_refresh(credentials: CredentialManager, console, force: bool = False) -> bool:
    """Refresh the access token if needed and report the result"""
    result = await credentials.refresh_if_needed(force=force)

    messages = {
        RefreshStatus.VALID: "[green]Access token is still valid[/green]",
        RefreshStatus.REFRESHED: "[green]Access token refreshed[/green]",
        RefreshStatus.NEEDS_LOGIN: "[yellow]Login required:[/yellow] run the login command",
        RefreshStatus.NETWORK_ERROR: f"[red]Refresh failed, try again later:[/red] {result.error}",
        RefreshStatus.STORE_UNAVAILABLE: f"[red]Credential store unavailable:[/red] {result.error}",
    }
    console.print(messages[result.status])
    return result.status in (RefreshStatus.VALID, RefreshStatus.REFRESHED)


def run_logout(credentials: CredentialManager, console) -> bool:
    if not credentials.clear_credentials():
        console.print(f"[red]Could not remove {credentials.store.credential_file}[/red]")
        return False
    console.print("[green]Stored credentials removed[/green]")
    return True


async def collect_launch_environment(credentials: CredentialManager) -> Dict[str, str]:
    """Launch environment, refreshing first when a legacy token is needed"""
    stored = credentials.get_credentials()
    if stored is None:
        raise NeedsLoginError("No stored credentials")

    needs_token = stored.session_id is None and credentials.get_access_token() is None
    result = await credentials.refresh_if_needed(force=needs_token)
    if result.status not in (RefreshStatus.VALID, RefreshStatus.REFRESHED):
        raise result.error or NeedsLoginError("Credentials could not be refreshed")
    return credentials.launch_environment()


async def print_launch_environment(credentials: CredentialManager, console, export: bool = False) -> bool:
    """Print the game client environment as KEY=value lines on stdout"""
    try:
        env = await collect_launch_environment(credentials)
    except NeedsLoginError as e:
        console.print(f"[yellow]Login required:[/yellow] {e}")
        return False

    prefix = "export " if export else ""
    for key, value in env.items():
        # Plain print: the output is meant to be consumed by a shell
        print(f"{prefix}{key}={shlex.quote(value)}")
    return True
