#!/usr/bin/env python3
"""Create administrator accounts, or promote existing accounts to administrator."""

from __future__ import annotations

import argparse
import getpass
import sys

import accounts
from db import create_db_engine, init_schema
from errors import ValidationError


def _prepare_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create or promote administrator accounts."
    )
    parser.add_argument(
        "emails",
        nargs="+",
        help="Email addresses to grant administrator access.",
    )
    parser.add_argument(
        "-p",
        "--password",
        help="Password for newly created accounts. If omitted, you will be prompted securely.",
    )
    return parser.parse_args(argv)


def _seed_admin(conn, email: str, password: str | None) -> bool:
    email = accounts.normalize_email(email)
    user = accounts.get_user_by_email(conn, email)
    if user:
        if user["is_admin"]:
            print(f"{email} is already an administrator")
        else:
            accounts.update_user(conn, user["id"], {"is_admin": True})
            print(f"Promoted {email}")
        return True

    if not password:
        print(f"Skipping {email!r}: no password given for a new account.", file=sys.stderr)
        return False
    try:
        accounts.create_user(conn, email, password, is_admin=True)
    except ValidationError as exc:
        print(f"Skipping {email!r}: {exc.message}", file=sys.stderr)
        return False
    print(f"Created {email}")
    return True


def main(argv=None, engine=None) -> int:
    args = _prepare_args(argv)
    engine = engine or create_db_engine()
    init_schema(engine)

    password = args.password
    with engine.connect() as conn:
        missing = [e for e in args.emails if not accounts.get_user_by_email(conn, e)]
    if missing and not password:
        password = getpass.getpass("Password for new accounts: ")

    ok = True
    with engine.begin() as conn:
        for email in args.emails:
            ok = _seed_admin(conn, email, password) and ok
    return 0 if ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
