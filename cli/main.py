"""CLI entry point and argument parsing"""

import asyncio
import sys
import argparse

import settings
from jagex_oauth import AuthError, CredentialManager, StoreUnavailableError
from utils.debug_console import configure_logging, create_console
from cli.auth_handlers import print_launch_environment, run_login, run_logout, run_refresh
from cli.status_display import show_credential_status


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Jagex launcher login")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--timeout",
        type=float,
        default=settings.LOGIN_TIMEOUT,
        help="Seconds allowed for each browser step (default: from config)"
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("login", help="Log in with a Jagex or legacy account")
    subparsers.add_parser("status", help="Show stored login status")
    refresh = subparsers.add_parser("refresh", help="Refresh the access token if it is about to expire")
    refresh.add_argument("--force", action="store_true", help="Refresh even if the token is still valid")
    subparsers.add_parser("logout", help="Remove stored credentials")
    env = subparsers.add_parser("env", help="Print the game client launch environment")
    env.add_argument("--export", action="store_true", help="Prefix each line with 'export'")
    return parser


async def run_command(args, credentials: CredentialManager, console) -> bool:
    command = args.command or "status"

    if command == "login":
        return await run_login(credentials, console, args.timeout)
    if command == "refresh":
        return await run_refresh(credentials, console, force=args.force)
    if command == "logout":
        return run_logout(credentials, console)
    if command == "env":
        return await print_launch_environment(credentials, console, export=args.export)

    show_credential_status(credentials, console)
    return True


def main(argv=None):
    """Entry point for the CLI"""
    args = build_parser().parse_args(argv)

    configure_logging(settings.LOG_LEVEL, debug=args.debug, log_file=settings.DEBUG_LOG_FILE)
    console = create_console(args.debug, settings.DEBUG_LOG_FILE)
    if args.debug:
        console.print(f"[yellow]Debug mode enabled - verbose logging will be written to {settings.DEBUG_LOG_FILE}[/yellow]")

    credentials = CredentialManager()
    try:
        ok = asyncio.run(run_command(args, credentials, console))
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted by user[/yellow]")
        sys.exit(130)
    except (AuthError, StoreUnavailableError) as e:
        console.print(f"\n[red]Error:[/red] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Fatal error:[/red] {e}")
        if args.debug:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
