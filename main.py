#!/usr/bin/env python3
"""
LabelForge -- operator commands for the account database.

Usage:
  python main.py create-user admin@example.com --role admin
  python main.py create-user someone@example.com --password 'Str0ng!Pass1'
  python main.py purge-tokens
  python main.py audit-log --limit 20
  python main.py audit-log --action ban_user

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account database (SQLite file by default).
  SECRET_KEY    Signing key, required unless DEBUG=true.
"""

import argparse
import getpass
import json
import logging
import sys

from sqlalchemy.exc import IntegrityError

from admin.audit import AuditLog
from admin.models import AuditAction
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from plans.store import PlanStore


def _create_user(args: argparse.Namespace) -> int:
    """Create a verified account directly in the database.

    This is the recovery path for a lost admin: it bypasses registration,
    email verification and the bootstrap email rule.
    """
    settings = get_settings()
    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        print("  [!] Password must be at least 8 characters.")
        return 1

    users = UserStore(settings.database_url)
    plans = PlanStore(settings.database_url)
    try:
        user = User(
            email=args.email,
            password_hash=hash_password(password, settings.bcrypt_rounds),
            role=Role(args.role),
            email_verified=True,
        )
        try:
            user_id = users.create_user(user)
        except IntegrityError:
            print(f"  [!] An account for {args.email.strip().lower()} already exists.")
            return 1
        plans.assign_default_plan(user_id)
    finally:
        users.close()
        plans.close()

    print(f"  Created {args.role} {args.email.strip().lower()} ({user_id})")
    return 0


def _purge_tokens(args: argparse.Namespace) -> int:
    users = UserStore(get_settings().database_url)
    try:
        removed = users.purge_expired_refresh_tokens()
    finally:
        users.close()
    print(f"  Removed {removed} expired refresh token(s).")
    return 0


def _audit_log(args: argparse.Namespace) -> int:
    settings = get_settings()
    audit = AuditLog(settings.database_url)
    users = UserStore(settings.database_url)
    try:
        entries, total = audit.list_entries(
            limit=args.limit,
            action=AuditAction(args.action) if args.action else None,
        )
        emails = users.get_emails({e.admin_id for e in entries})
    finally:
        audit.close()
        users.close()

    if not entries:
        print("  No audit entries.")
        return 0
    for e in entries:
        actor = emails.get(e.admin_id, e.admin_id)
        print(f"  {e.created_at}  {e.action.value:<12} {actor:<32} -> {e.target_id}  {json.dumps(e.details)}")
    print(f"\n  Showing {len(entries)} of {total} entr{'y' if total == 1 else 'ies'}.")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="labelforge",
        description="LabelForge account administration.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a verified account.")
    create.add_argument("email", help="Account email address.")
    create.add_argument("--password", help="Password. Prompted for when omitted.")
    create.add_argument("--role", choices=[r.value for r in Role], default=Role.user.value)
    create.set_defaults(func=_create_user)

    purge = sub.add_parser("purge-tokens", help="Delete expired refresh tokens.")
    purge.set_defaults(func=_purge_tokens)

    audit = sub.add_parser("audit-log", help="Print the most recent admin actions.")
    audit.add_argument("--limit", type=int, default=20, help="Number of entries (default: 20, max: 100).")
    audit.add_argument("--action", choices=[a.value for a in AuditAction], help="Only show this action.")
    audit.set_defaults(func=_audit_log)

    args = parser.parse_args(argv)
    args.limit = max(1, min(getattr(args, "limit", 20), 100))
    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
