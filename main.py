#!/usr/bin/env python3
"""
AdminConsole -- account administration CLI.

Operates directly on the configured database (DATABASE_URL), so it works
before the API has ever been started and without an admin token.

Usage:
  python main.py seed
  python main.py create-user --username alice --email alice@example.com --name "Alice" --role admin

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the account database (default: sqlite:///data/adminconsole.db)
  BCRYPT_ROUNDS  bcrypt cost factor used for new password hashes (default: 10)
  SECRET_KEY     Validated like the API does; set DEBUG=true to run without one
"""

import argparse
import getpass
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_ADMIN, ROLE_USER, ROLES, AuditAction, AuditLog, User
from auth.passwords import PasswordHasher
from auth.store import UserStore
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 6

# Development accounts created by `seed`. Change these passwords immediately
# on any deployment reachable by someone other than you.
_SEED_USERS = [
    {"username": "admin", "email": "admin@example.com", "name": "Admin User", "password": "admin123", "role": ROLE_ADMIN},
    {"username": "user", "email": "user@example.com", "name": "Regular User", "password": "user123", "role": ROLE_USER},
]


def _open_store() -> tuple[UserStore, PasswordHasher]:
    settings = get_settings()
    return UserStore(db_url=settings.database_url), PasswordHasher(rounds=settings.bcrypt_rounds)


def _prompt_password() -> str:
    """Read a new password twice from the terminal without echoing it."""
    password = getpass.getpass("  Password: ")
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise SystemExit(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
    if len(password.encode("utf-8")) > 72:
        raise SystemExit("  [!] Password must be at most 72 bytes.")
    if getpass.getpass("  Confirm:  ") != password:
        raise SystemExit("  [!] Passwords do not match.")
    return password


def seed(store: UserStore, hasher: PasswordHasher) -> int:
    """Create the development accounts that do not exist yet. Returns the count created."""
    created = 0
    for account in _SEED_USERS:
        if store.get_by_username(account["username"]) is not None:
            print(f"  {account['username']} already exists, skipping.")
            continue
        user_id = store.create_user(
            User(
                username=account["username"],
                email=account["email"],
                name=account["name"],
                role=account["role"],
                hashed_password=hasher.hash(account["password"]),
            )
        )
        store.create_audit_log(
            AuditLog(
                actor_name="cli",
                action=AuditAction.CREATE_USER,
                target_id=user_id,
                target_name=account["username"],
                details=f"role={account['role']} (seed)",
            )
        )
        print(f"  Created {account['role']} account '{account['username']}'.")
        created += 1
    return created


def create_user(
    store: UserStore,
    hasher: PasswordHasher,
    username: str,
    email: str,
    name: str,
    role: str,
    password: str,
) -> str:
    """Create one account and return its ID. Exits on a duplicate username or email."""
    if store.get_by_username(username) is not None:
        raise SystemExit(f"  [!] Username '{username}' already exists.")
    if store.get_by_email(email) is not None:
        raise SystemExit(f"  [!] Email '{email}' already exists.")
    try:
        user_id = store.create_user(
            User(username=username, email=email, name=name, role=role, hashed_password=hasher.hash(password))
        )
    except IntegrityError as exc:
        raise SystemExit("  [!] Username or email already exists.") from exc
    store.create_audit_log(
        AuditLog(
            actor_name="cli",
            action=AuditAction.CREATE_USER,
            target_id=user_id,
            target_name=username,
            details=f"role={role}",
        )
    )
    return user_id


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="adminconsole",
        description="Account administration for the AdminConsole API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed
  python main.py create-user --username alice --email alice@example.com --name "Alice" --role admin
  DATABASE_URL=sqlite:///data/staging.db python main.py seed
        """,
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("seed", help="Create the default admin and user development accounts")

    create = sub.add_parser("create-user", help="Create an account (password is prompted)")
    create.add_argument("--username", required=True, help="Login name, 3-64 characters")
    create.add_argument("--email", required=True, help="Unique email address, used for password resets")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument(
        "--role",
        choices=list(ROLES),
        default=ROLE_USER,
        help="Account role (default: user)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    if args.command == "create-user" and not 3 <= len(args.username) <= 64:
        parser.error("--username must be 3-64 characters")

    store, hasher = _open_store()
    try:
        if args.command == "seed":
            print("\nSeeding development accounts...")
            created = seed(store, hasher)
            print(f"  Done: {created} account(s) created.\n")
        else:
            password = _prompt_password()
            user_id = create_user(store, hasher, args.username, args.email, args.name, args.role, password)
            print(f"  Created {args.role} account '{args.username}' (id={user_id}).")
    finally:
        store.close()


if __name__ == "__main__":
    try:
        main()
    except KeyboardInterrupt:
        sys.exit(130)
