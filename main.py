#!/usr/bin/env python3
"""
Baby Tracker admin CLI -- bootstrap a self-hosted install.

Usage:
  python main.py init-db
  python main.py create-family --name "The Smiths" --slug smiths \\
      --admin-name Alex --admin-login-id 01 --admin-pin 123456 [--system-pin 654321]
  python main.py setup-token [--family-id ID]
  python main.py sysadmin-token

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database (default: sqlite:///./babytracker.db)
  SECRET_KEY    Signs every JWT this tool prints. Must match the server's key.
"""

import argparse
import re
import secrets
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_ADMIN, SYSTEM_LOGIN_ID, Caretaker, Family, FamilySetup
from auth.store import AuthStore
from auth.tokens import create_setup_token, create_sysadmin_token, hash_password
from core.config import get_settings
from core.timestamps import to_iso, utcnow
from tracker.models import FamilySettings
from tracker.store import TrackerStore

_SLUG_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,48}[a-z0-9])$")
_PIN_RE = re.compile(r"^\d{6,10}$")
_LOGIN_ID_RE = re.compile(r"^\d{2}$")


def _open_stores(database_url: str) -> tuple[AuthStore, TrackerStore]:
    """Open both stores. Creating them creates any missing tables."""
    return AuthStore(database_url), TrackerStore(database_url)


def cmd_init_db(args: argparse.Namespace) -> int:
    auth_store, tracker_store = _open_stores(args.database_url)
    auth_store.close()
    tracker_store.close()
    print(f"  Database ready: {args.database_url}")
    return 0


def cmd_create_family(args: argparse.Namespace) -> int:
    """Create a family with its system caretaker, first admin and settings row."""
    if not _SLUG_RE.match(args.slug):
        print(f"  [!] '{args.slug}' is not a valid slug. Use 3-50 lowercase letters, digits and hyphens.")
        return 1
    if not _LOGIN_ID_RE.match(args.admin_login_id) or args.admin_login_id == SYSTEM_LOGIN_ID:
        print("  [!] Admin login ID must be two digits and not 00.")
        return 1
    for label, pin in (("Admin PIN", args.admin_pin), ("System PIN", args.system_pin)):
        if pin is not None and not _PIN_RE.match(pin):
            print(f"  [!] {label} must be 6 to 10 digits.")
            return 1

    auth_store, tracker_store = _open_stores(args.database_url)
    try:
        try:
            family_id = auth_store.create_family(Family(slug=args.slug, name=args.name))
        except IntegrityError:
            print(f"  [!] A family with slug '{args.slug}' already exists.")
            return 1

        system_pin_hash = hash_password(args.system_pin) if args.system_pin else None
        auth_store.create_caretaker(
            Caretaker(
                family_id=family_id,
                login_id=SYSTEM_LOGIN_ID,
                name="System",
                role=ROLE_ADMIN,
                security_pin=system_pin_hash,
            )
        )
        admin_id = auth_store.create_caretaker(
            Caretaker(
                family_id=family_id,
                login_id=args.admin_login_id,
                name=args.admin_name,
                type="Parent",
                role=ROLE_ADMIN,
                security_pin=hash_password(args.admin_pin),
            )
        )
        tracker_store.create_settings(
            FamilySettings(
                family_id=family_id,
                family_name=args.name,
                security_pin=system_pin_hash,
                auth_type="SYSTEM" if system_pin_hash else "CARETAKER",
            )
        )
    finally:
        auth_store.close()
        tracker_store.close()

    print(f"  Family created:  {args.name} (/{args.slug})")
    print(f"  Family ID:       {family_id}")
    print(f"  Admin caretaker: {args.admin_name} (login ID {args.admin_login_id}, id {admin_id})")
    return 0


def cmd_setup_token(args: argparse.Namespace) -> int:
    """Record a FamilySetup grant and print the setup JWT that references it."""
    settings = get_settings()
    setup_secret = secrets.token_urlsafe(32)
    expires_at = to_iso(utcnow() + timedelta(seconds=settings.setup_token_expire_seconds))

    auth_store = AuthStore(args.database_url)
    try:
        auth_store.create_family_setup(FamilySetup(token=setup_secret, family_id=args.family_id, expires_at=expires_at))
    finally:
        auth_store.close()
    print(create_setup_token(setup_secret))
    return 0


def cmd_sysadmin_token(args: argparse.Namespace) -> int:
    print(create_sysadmin_token())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="babytracker",
        description="Administrative tasks for a Baby Tracker install.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py create-family --name "The Smiths" --slug smiths --admin-name Alex \\
      --admin-login-id 01 --admin-pin 123456 --system-pin 654321
  python main.py setup-token
  python main.py sysadmin-token
        """,
    )
    parser.add_argument(
        "--database-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    init_db = sub.add_parser("init-db", help="Create all tables")
    init_db.set_defaults(func=cmd_init_db)

    create_family = sub.add_parser("create-family", help="Create a family with its first admin")
    create_family.add_argument("--name", required=True, help="Display name of the family")
    create_family.add_argument("--slug", required=True, help="URL slug, e.g. smiths")
    create_family.add_argument("--admin-name", required=True, help="Name of the first admin caretaker")
    create_family.add_argument("--admin-login-id", required=True, help="Two-digit login ID for the admin (not 00)")
    create_family.add_argument("--admin-pin", required=True, help="6-10 digit PIN for the admin")
    create_family.add_argument(
        "--system-pin",
        default=None,
        help="Family-wide PIN. When given the family logs in with it (auth type SYSTEM); "
        "otherwise each caretaker uses their own PIN.",
    )
    create_family.set_defaults(func=cmd_create_family)

    setup_token = sub.add_parser("setup-token", help="Print a setup token that authorizes creating a family")
    setup_token.add_argument("--family-id", default=None, help="Restrict the token to one family")
    setup_token.set_defaults(func=cmd_setup_token)

    sysadmin_token = sub.add_parser("sysadmin-token", help="Print a system administrator token")
    sysadmin_token.set_defaults(func=cmd_sysadmin_token)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 1
    args.database_url = args.database_url or get_settings().database_url
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
