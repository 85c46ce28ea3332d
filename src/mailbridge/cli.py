"""Command-line entry point for Gmail authorization.

Provides an argparse-based tool with two subcommands:

- ``login``: obtain usable credentials, refreshing stored ones or running the
  interactive browser flow, and report the resulting auth state.
- ``status``: describe the stored credential file without any network access.

Usage::

    mailbridge login
    mailbridge login --force
    mailbridge status
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime

import structlog

from mailbridge.auth.manager import AuthManager
from mailbridge.auth.store import CredentialStore
from mailbridge.config import Settings, get_settings
from mailbridge.errors import MailbridgeError
from mailbridge.observability.sentry import get_sentry_processor, init_sentry

logger = structlog.get_logger()


def configure_logging(production: bool = False, sentry_enabled: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Output goes to stderr so stdout carries only command results.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if sentry_enabled:
        shared_processors.append(get_sentry_processor())

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="mailbridge")


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the ``mailbridge`` command."""
    parser = argparse.ArgumentParser(
        prog="mailbridge",
        description="Authorize Gmail access and inspect stored credentials",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    login = subparsers.add_parser(
        "login",
        help="Obtain credentials, opening a browser if needed",
    )
    login.add_argument(
        "--force",
        action="store_true",
        help="Ignore stored credentials and run the browser flow",
    )

    subparsers.add_parser(
        "status",
        help="Describe the stored credential file",
    )

    return parser


def describe_status(store: CredentialStore, now: datetime | None = None) -> str:
    """Summarize the stored credential file as human-readable text."""
    if not store.exists():
        return f"No credentials stored at {store.path}"

    record = store.load()
    if record is None:
        return f"Credential file at {store.path} could not be read"

    if record.expiry is None:
        expiry = "unknown"
    else:
        state = "expired" if record.is_expired(now or datetime.now(tz=UTC)) else "valid"
        expiry = f"{record.expiry.isoformat()} ({state})"

    lines = [
        f"Credential file: {store.path}",
        f"Refresh token: {'present' if record.refresh_token else 'absent'}",
        f"Expiry: {expiry}",
        "Scopes:",
        *(f"- {scope}" for scope in record.scopes),
    ]
    return "\n".join(lines)


async def run_login(settings: Settings, force: bool = False) -> str:
    manager = AuthManager(settings)
    if force:
        await manager.authorize()
    else:
        await manager.get_credentials()
    return f"Authorization complete. State: {manager.state.value}"


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the requested subcommand, and print its result."""
    args = build_parser().parse_args(argv)
    settings = get_settings()

    init_sentry(settings.sentry_dsn)
    configure_logging(settings.production, sentry_enabled=bool(settings.sentry_dsn))

    if args.command == "status":
        print(describe_status(CredentialStore(settings.gmail_token_path)))
        return 0

    try:
        print(asyncio.run(run_login(settings, force=args.force)))
    except MailbridgeError as exc:
        logger.error("login_failed", error=str(exc))
        print(f"Authorization failed: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
