"""CLI for calnow - print the events of the current hour.

Usage:
    calnow events --calendar <id>          # Events in the current hour
    calnow events --calendar <id> --update # Re-authorize first
    calnow login                           # Interactive OAuth authorization
    calnow status                          # Show cached token status
    calnow logout                          # Delete the cached token
    calnow import <path>                   # Import OAuth client credentials
"""

from __future__ import annotations

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path

from googleapiclient.errors import HttpError

from calnow import config
from calnow.auth import (
    ServiceAccountAuth,
    TokenCacheManager,
    TokenStore,
    is_service_account_file,
)
from calnow.calendar import CalendarClient, CalendarError
from calnow.calendar.client import TRANSPORT_ERRORS
from calnow.exceptions import CalnowError, CredentialUnavailable

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NO_EVENTS = 2


def _manager(args: argparse.Namespace) -> TokenCacheManager:
    client_config = config.ClientConfig.from_file(args.credentials_file, args.scopes)
    return TokenCacheManager(client_config, TokenStore(args.token_file))


def cmd_events(args: argparse.Namespace) -> int:
    """Print the events of the current hour."""
    if not args.calendar:
        print("Error: missing required argument --calendar", file=sys.stderr)
        return EXIT_ERROR

    try:
        if is_service_account_file(args.credentials_file):
            service = ServiceAccountAuth(args.credentials_file, args.scopes).build_service()
        else:
            service = _manager(args).build_service(force_interactive=args.update)
    except HttpError as e:
        status = getattr(e.resp, "status", None)
        raise CalendarError(
            f"Unable to load the Calendar API: {e}",
            status_code=int(status) if status else None,
        ) from e
    except TRANSPORT_ERRORS as e:
        raise CalendarError(f"Unable to reach the Calendar API: {e}") from e

    events = CalendarClient(service).current_events(args.calendar)

    print("Upcoming events:")
    if not events:
        print("No upcoming events found.")
        return EXIT_NO_EVENTS

    for event in events:
        print(f"{event.start_text} ({event.summary}) {event.description or ''}".rstrip())
    return EXIT_OK


def cmd_login(args: argparse.Namespace) -> int:
    """Run the authorization flow and cache the token."""
    manager = _manager(args)
    manager.interactive = True
    credential = manager.acquire(force_interactive=True)
    if manager.store.load() != credential:
        print(
            f"Error: Authorized, but the token could not be saved to {manager.store.path}",
            file=sys.stderr,
        )
        return EXIT_ERROR

    print(f"\nToken saved to {manager.store.path}")
    return cmd_status(args)


def cmd_status(args: argparse.Namespace) -> int:
    """Show cached token status."""
    info = _manager(args).token_info()

    if info["status"] == "no_token":
        print("No token found - run 'calnow login'")
        return EXIT_ERROR

    print(f"Status     : {info['status']}")
    print(f"Scopes     : {', '.join(info.get('scopes', []))}")
    print(f"Expires in : {info.get('expires_in', 'unknown')}")
    print(f"Refreshable: {'yes' if info.get('has_refresh_token') else 'no'}")
    return EXIT_OK


def cmd_logout(args: argparse.Namespace) -> int:
    """Delete the cached token."""
    if TokenStore(args.token_file).clear():
        print("Token cache cleared")
    else:
        print("No token to clear")
    return EXIT_OK


def cmd_import(args: argparse.Namespace) -> int:
    """Import OAuth client credentials into the calnow directory."""
    source = Path(args.path).expanduser()

    if not source.exists():
        print(f"Error: File not found: {source}", file=sys.stderr)
        return EXIT_ERROR

    try:
        with open(source) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON: {e}", file=sys.stderr)
        return EXIT_ERROR

    if not isinstance(data, dict) or not (
        "installed" in data or "web" in data or data.get("type") == "service_account"
    ):
        print("Error: Expected OAuth client credentials or a service account key", file=sys.stderr)
        return EXIT_ERROR

    target = Path(args.credentials_file)
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)

    print("Imported credentials")
    print(f"  From: {source}")
    print(f"  To:   {target}")
    print()
    print("Next: Run 'calnow login' to authorize")
    return EXIT_OK


def parse_scopes(scope_str: str | None) -> list[str]:
    """Parse comma-separated scopes."""
    if not scope_str:
        return list(config.DEFAULT_SCOPES)
    return [s.strip() for s in scope_str.split(",") if s.strip()]


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--credentials-file",
        default=None,
        help="OAuth client credentials or service account key (default: ~/.calnow/credentials.json)",
    )
    common.add_argument(
        "--token-file",
        default=None,
        help="Token cache file (default: ~/.calnow/token.json)",
    )
    common.add_argument(
        "--scopes",
        type=str,
        default=",".join(config.DEFAULT_SCOPES),
        help="Comma-separated scopes (default: calendar_readonly)",
    )

    parser = argparse.ArgumentParser(
        prog="calnow",
        description="Print the Google Calendar events of the current hour",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Command")

    events_parser = subparsers.add_parser(
        "events", parents=[common], help="List events in the current hour"
    )
    events_parser.add_argument(
        "--calendar",
        default=None,
        help="Calendar id (default: $CALNOW_CALENDAR)",
    )
    events_parser.add_argument(
        "--update",
        action="store_true",
        help="Run the authorization flow before listing",
    )

    subparsers.add_parser("login", parents=[common], help="Interactive OAuth authorization")
    subparsers.add_parser("status", parents=[common], help="Show token status")
    subparsers.add_parser("logout", parents=[common], help="Delete the cached token")

    import_parser = subparsers.add_parser(
        "import", parents=[common], help="Import OAuth client credentials"
    )
    import_parser.add_argument("path", help="Path to credentials.json file")

    return parser


COMMANDS = {
    "events": cmd_events,
    "login": cmd_login,
    "status": cmd_status,
    "logout": cmd_logout,
    "import": cmd_import,
}


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv if argv is not None else sys.argv[1:])

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return EXIT_OK

    args.scopes = parse_scopes(args.scopes)
    args.credentials_file = args.credentials_file or str(config.credentials_path())
    args.token_file = args.token_file or str(config.token_path())
    if args.command == "events":
        args.calendar = args.calendar or config.default_calendar()

    try:
        return COMMANDS[args.command](args)
    except CredentialUnavailable as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'calnow login' (or pass --update) to authorize", file=sys.stderr)
        return EXIT_ERROR
    except CalnowError as e:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
