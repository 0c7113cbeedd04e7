#!/usr/bin/env python3
"""
SchoolGate -- admin command line for the authentication store.

Usage:
  python main.py create-user alice "Alice Sharma" PRINCIPAL
  python main.py create-user bob "Bob Rao" OFFICE_STAFF --email bob@school.example --mobile 9876543210
  python main.py set-password alice
  python main.py lockout-status alice
  python main.py unlock alice
  python main.py generate-secrets

Passwords are always read from the terminal (no echo), never from argv.

Configuration is read from the environment / .env exactly as the API does
(see core/config.py): DATABASE_URL, ENCRYPTION_KEY, JWT_SECRET, REDIS_URL.
lockout-status and unlock only see the real lockout state when REDIS_URL
points at the same Redis the API uses.
"""

import argparse
import base64
import getpass
import math
import secrets
import string
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.crypto import FieldCipher
from auth.models import Principal
from auth.roles import Role
from auth.service import AuthService
from auth.state import build_state_store
from auth.store import UserStore
from auth.tokens import TokenCodec, hash_password
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _build_service() -> tuple[AuthService, UserStore]:
    settings = get_settings()
    cipher = FieldCipher.from_settings(settings)
    store = UserStore(cipher, db_url=settings.database_url)
    service = AuthService(
        directory=store,
        state=build_state_store(settings),
        codec=TokenCodec.from_settings(settings),
        settings=settings,
    )
    return service, store


def _prompt_password(prompt: str = "New password: ") -> Optional[str]:
    """Read a password twice from the terminal. Returns None on mismatch or if too short."""
    first = getpass.getpass(prompt)
    if len(first) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return None
    if len(first.encode("utf-8")) > 72:
        print("  [!] Password must be at most 72 bytes.")
        return None
    if getpass.getpass("Confirm password: ") != first:
        print("  [!] Passwords do not match.")
        return None
    return first


def _require_principal(store: UserStore, login: str) -> Optional[Principal]:
    principal = store.find_by_login(login)
    if principal is None:
        print(f"  [!] No principal with login '{login}'.")
    return principal


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_create_user(args: argparse.Namespace) -> int:
    password = _prompt_password()
    if password is None:
        return 1
    _service, store = _build_service()
    principal = Principal(
        login=args.login,
        display_name=args.display_name,
        role=Role(args.role),
        hashed_password=hash_password(password),
        email=args.email,
        mobile=args.mobile,
    )
    try:
        pid = store.create_user(principal)
    except IntegrityError:
        print(f"  [!] Login '{args.login}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created principal '{args.login}' (id={pid}, role={principal.role.value}).")
    return 0


def cmd_set_password(args: argparse.Namespace) -> int:
    service, store = _build_service()
    try:
        principal = _require_principal(store, args.login)
        if principal is None:
            return 1
        password = _prompt_password()
        if password is None:
            return 1
        service.set_password(principal, password)
    finally:
        store.close()
    print(f"  Password updated for '{args.login}'. Existing refresh sessions were ended.")
    return 0


def cmd_lockout_status(args: argparse.Namespace) -> int:
    service, store = _build_service()
    try:
        principal = _require_principal(store, args.login)
        if principal is None:
            return 1
        status = service.lockout_status(principal.id)
    finally:
        store.close()
    print(f"  Principal:       {args.login} (id={status.principal_id})")
    print(f"  Failed attempts: {status.failed_attempts}")
    if status.locked:
        minutes = math.ceil(status.remaining_lock_ms / 60000)
        print(f"  Locked:          yes (about {minutes} min remaining)")
    else:
        print("  Locked:          no")
    return 0


def cmd_unlock(args: argparse.Namespace) -> int:
    service, store = _build_service()
    try:
        principal = _require_principal(store, args.login)
        if principal is None:
            return 1
        service.unlock(principal.id)
    finally:
        store.close()
    print(f"  Lockout cleared for '{args.login}'.")
    return 0


def cmd_generate_secrets(args: argparse.Namespace) -> int:
    """Print fresh values for JWT_SECRET and ENCRYPTION_KEY in .env syntax."""
    alphabet = string.ascii_letters + string.digits
    print(f"JWT_SECRET={base64.b64encode(secrets.token_bytes(64)).decode('ascii')}")
    print(f"ENCRYPTION_KEY={''.join(secrets.choice(alphabet) for _ in range(32))}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SchoolGate -- manage principals and lockouts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a principal (password is prompted)")
    create.add_argument("login", help="Unique login name")
    create.add_argument("display_name", help="Name shown in the UI")
    create.add_argument("role", choices=[r.value for r in Role], help="Role granted to the principal")
    create.add_argument("--email", default=None, help="Email address (stored encrypted)")
    create.add_argument("--mobile", default=None, help="Mobile number (stored encrypted, searchable)")
    create.set_defaults(func=cmd_create_user)

    set_pw = sub.add_parser("set-password", help="Replace a principal's password")
    set_pw.add_argument("login")
    set_pw.set_defaults(func=cmd_set_password)

    status = sub.add_parser("lockout-status", help="Show failed attempts and lock state")
    status.add_argument("login")
    status.set_defaults(func=cmd_lockout_status)

    unlock = sub.add_parser("unlock", help="Clear a lockout and the failed-attempt counter")
    unlock.add_argument("login")
    unlock.set_defaults(func=cmd_unlock)

    gen = sub.add_parser("generate-secrets", help="Print new JWT_SECRET and ENCRYPTION_KEY values")
    gen.set_defaults(func=cmd_generate_secrets)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
