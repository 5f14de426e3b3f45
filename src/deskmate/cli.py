"""Summary: Command-line interface for Deskmate.

Importance: Lets operators set up accounts and inspect credentials without the API.
Alternatives: Build an admin web UI first.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone

from deskmate.app import build_context
from deskmate.config import AppConfig
from deskmate.email import MailboxUnavailable
from deskmate.errors import CredentialError
from deskmate.mailbox import match_sent_mailbox
from deskmate.models import GOOGLE, CredentialFragment


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="Deskmate CLI")
    parser.add_argument("--user", type=str, default="local", help="User ID to act as")
    subparsers = parser.add_subparsers(dest="command", required=True)

    setup_email = subparsers.add_parser("setup-email", help="Configure a mailbox by provider")
    setup_email.add_argument("email", type=str)
    setup_email.add_argument("--provider", type=str, default=None)

    store_token = subparsers.add_parser("store-token", help="Store OAuth tokens")
    store_token.add_argument("provider", type=str)
    store_token.add_argument("access_token", type=str)
    store_token.add_argument("--refresh-token", type=str, default=None)
    store_token.add_argument("--expires-in", type=int, default=3600)

    resolve = subparsers.add_parser("resolve", help="Resolve the mail credential for a user")
    resolve.add_argument("--password", type=str, default=None)
    resolve.add_argument("--email", type=str, default=None, help="Identity email fallback")

    subparsers.add_parser("locate-sent", help="Connect and locate the sent folder")

    oauth_url = subparsers.add_parser("oauth-url", help="Print a provider authorization URL")
    oauth_url.add_argument("provider", type=str, nargs="?", default=GOOGLE)

    token_status = subparsers.add_parser("token-status", help="Show stored token state")
    token_status.add_argument("provider", type=str, nargs="?", default=GOOGLE)

    return parser


def run_cli(argv: list[str] | None = None) -> int:
    """Summary: Execute CLI commands based on arguments.

    Importance: Credential errors print the user-facing action and exit non-zero.
    Alternatives: Invoke services via the HTTP API.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    context = build_context(AppConfig.from_env())
    services = context.services_for_user(args.user)

    try:
        if args.command == "setup-email":
            stored = services.email_setup.manual_setup(args.email, args.provider)
            print(f"Configured {stored.provider} mailbox at {stored.host}:{stored.port}.")
            return 0

        if args.command == "store-token":
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=args.expires_in)
            services.tokens.store_tokens(
                args.provider, args.access_token, args.refresh_token, expires_at
            )
            print(f"Stored {args.provider} token for {args.user}.")
            return 0

        if args.command == "resolve":
            fragment = CredentialFragment(password=args.password)
            credential = context.resolver.resolve(args.user, fragment, args.email)
            mode = "oauth2" if credential.uses_oauth else "password"
            print(f"{credential.user} @ {credential.host}:{credential.port} ({mode})")
            return 0

        if args.command == "locate-sent":
            credential = context.resolver.resolve(args.user)
            try:
                listing = context.transport.list_mailboxes(credential)
            except MailboxUnavailable:
                listing = []
            match = match_sent_mailbox(listing, credential.host)
            print(f"{match.path} (rule {match.rule})")
            return 0

        if args.command == "oauth-url":
            print(context.oauth.start(args.user, args.provider))
            return 0

        if args.command == "token-status":
            status = services.tokens.status(args.provider)
            for key, value in status.items():
                print(f"{key}: {value}")
            return 0
    except CredentialError as exc:
        print(f"{exc.code}: {exc.message}. {exc.action}", file=sys.stderr)
        return 1

    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(run_cli())
