#!/usr/bin/env python3
"""
LeadExchange -- account administration and server entry point.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000
  python main.py create-user owner@example.com --role super_admin
  python main.py create-user rep@example.com --role sales --plan pro

create-user is the only way to make a super_admin account; the HTTP API never
accepts that role. The password is prompted for and never read from argv.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the account database (see core/config.py).
  SECRET_KEY    Required by `serve` unless DEBUG=true.
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import hash_password
from auth.plans import DEFAULT_PLAN_ID, PLAN_ENTITLEMENTS
from auth.store import UserStore
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _read_password() -> str:
    """Prompt twice for a password. Exits on mismatch or a short password."""
    password = getpass.getpass("  Password: ")
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        sys.exit(1)
    if getpass.getpass("  Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return password


def create_user(store: UserStore, email: str, role: str, plan_id: str, password: str) -> str:
    """Insert an account and return its ID. Raises IntegrityError on a duplicate email."""
    return store.create_user(User(email=email, role=role, plan_id=plan_id, password=hash_password(password)))


def _cmd_create_user(args: argparse.Namespace) -> None:
    settings = get_settings()
    store = UserStore(settings.database_url)
    try:
        if store.get_by_email(args.email) is not None:
            print(f"  [!] An account for '{args.email}' already exists.")
            sys.exit(1)
        password = _read_password()
        try:
            user_id = create_user(store, args.email, args.role, args.plan, password)
        except IntegrityError:
            print(f"  [!] An account for '{args.email}' already exists.")
            sys.exit(1)
    finally:
        store.close()
    print(f"  Created {args.role} account {user_id} ({args.email.strip().lower()}).")


def _cmd_serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="leadexchange",
        description="LeadExchange account administration and API server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-user owner@example.com --role super_admin
  DATABASE_URL=sqlite:///prod.db python main.py create-user rep@example.com --plan pro
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(func=_cmd_serve)

    create = sub.add_parser("create-user", help="Create an account from the command line")
    create.add_argument("email", help="Account email (stored lowercased)")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.BUILDER.value,
        help="Account role, including super_admin (default: builder)",
    )
    create.add_argument(
        "--plan",
        choices=sorted(PLAN_ENTITLEMENTS),
        default=DEFAULT_PLAN_ID,
        help=f"Billing plan for default entitlements (default: {DEFAULT_PLAN_ID})",
    )
    create.set_defaults(func=_cmd_create_user)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()
