#!/usr/bin/env python3
"""
Storekeeper auth -- administrative command line.

Uses the same Settings, store and AuthService as the API, so it needs the
same environment (JWT_SIGNING_KEY, CIPHER_KEY, optionally DATABASE_URL).

Usage:
  python main.py register admin@example.com
  python main.py register legacy@example.com --mode encrypted
  python main.py reset-link user@example.com
  python main.py reset-link user@example.com --base-url https://stock.example.com
  python main.py purge-reset-tokens

Passwords are always read with getpass -- never from argv, where they would
end up in shell history and the process table.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import AuthError, UnknownAccount
from auth.models import CredentialMode
from auth.service import AuthService, build_auth_service
from core.config import get_settings


def _read_password() -> Optional[str]:
    """Prompt twice for a password. Returns None if the entries differ or are empty."""
    first = getpass.getpass("Password: ")
    if not first:
        print("  [!] Password cannot be empty.")
        return None
    if getpass.getpass("Repeat password: ") != first:
        print("  [!] Passwords do not match.")
        return None
    return first


def _cmd_register(service: AuthService, args: argparse.Namespace) -> int:
    password = _read_password()
    if password is None:
        return 1
    mode = CredentialMode(args.mode) if args.mode else None
    try:
        account = service.register(args.email, password, mode)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    print(f"  Account created: {account.email} (mode: {account.mode.value}, id: {account.id})")
    return 0


def _cmd_reset_link(service: AuthService, args: argparse.Namespace, base_url: str) -> int:
    try:
        token = service.request_reset(args.email)
    except UnknownAccount:
        print(f"  [!] No account for {args.email}.")
        return 1
    base = (args.base_url or base_url or "http://localhost:8000").rstrip("/")
    print(f"{base}/api/v1/auth/change-password/{token}")
    return 0


def _cmd_purge(service: AuthService) -> int:
    if service.resets.ttl_seconds is None:
        print("  RESET_TOKEN_TTL_SECONDS is 0 -- reset tokens never expire, nothing to purge.")
        return 0
    cleared = service.purge_expired_resets()
    print(f"  {cleared} expired reset token(s) cleared.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="storekeeper-auth",
        description="Administer Storekeeper accounts and password resets.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py register admin@example.com
  python main.py register legacy@example.com --mode encrypted
  python main.py reset-link user@example.com
  python main.py purge-reset-tokens
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_register = sub.add_parser("register", help="Create an account (password is prompted)")
    p_register.add_argument("email", help="Account email address")
    p_register.add_argument(
        "--mode",
        choices=[m.value for m in CredentialMode],
        default=None,
        help="Credential storage mode (default: DEFAULT_CREDENTIAL_MODE, normally hashed)",
    )

    p_reset = sub.add_parser("reset-link", help="Issue a password reset link and print it")
    p_reset.add_argument("email", help="Account email address")
    p_reset.add_argument(
        "--base-url",
        metavar="URL",
        default=None,
        help="Public base URL for the link (default: PUBLIC_BASE_URL or http://localhost:8000)",
    )

    sub.add_parser("purge-reset-tokens", help="Clear reset tokens older than RESET_TOKEN_TTL_SECONDS")

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    # Missing or malformed keys fail here, before any account is touched.
    try:
        settings = get_settings()
    except ValueError as exc:
        print(f"  [!] Configuration error: {exc}")
        return 2

    service = build_auth_service(settings)
    try:
        if args.command == "register":
            return _cmd_register(service, args)
        if args.command == "reset-link":
            return _cmd_reset_link(service, args, settings.public_base_url)
        return _cmd_purge(service)
    finally:
        service.store.close()


if __name__ == "__main__":
    sys.exit(main())
