# accounts.py
# User accounts: password login plus the is_admin flag that gates the admin surface.

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from db import users
from errors import StateConflict, UserNotFound, ValidationError
from pricing import isoformat
from settings import ADMIN_EMAILS

log = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 8


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and len(email) <= 255 and bool(EMAIL_RE.match(email))


def get_user(conn: Connection, user_id) -> Dict[str, Any]:
    try:
        user_id = int(user_id)
    except (TypeError, ValueError):
        raise UserNotFound(user_id) from None
    row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
    if row is None:
        raise UserNotFound(user_id)
    return dict(row)


def get_user_by_email(conn: Connection, email: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(users).where(func.lower(users.c.email) == normalize_email(email))
    ).mappings().first()
    return dict(row) if row else None


def list_users(conn: Connection) -> List[Dict[str, Any]]:
    rows = conn.execute(select(users).order_by(users.c.created_at.desc(), users.c.id.desc())).mappings().all()
    return [dict(r) for r in rows]


def create_user(
    conn: Connection,
    email: str,
    password: str,
    display_name: Optional[str] = None,
    is_admin: bool = False,
) -> Dict[str, Any]:
    email = normalize_email(email)
    errors = []
    if not is_valid_email(email):
        errors.append("Enter a valid email address.")
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if errors:
        raise ValidationError(errors)

    if get_user_by_email(conn, email):
        raise StateConflict("An account with this email already exists.", code="account_exists")

    now = datetime.now(timezone.utc)
    try:
        result = conn.execute(
            users.insert().values(
                email=email,
                password_hash=generate_password_hash(password),
                display_name=(display_name or "").strip() or None,
                is_admin=bool(is_admin) or email in ADMIN_EMAILS,
                created_at=now,
                updated_at=now,
            )
        )
    except IntegrityError:
        raise StateConflict("An account with this email already exists.", code="account_exists") from None
    user_id = result.inserted_primary_key[0]
    log.info("Created user %s (%s)", user_id, email)
    return get_user(conn, user_id)


def authenticate(conn: Connection, email: str, password: str) -> Optional[Dict[str, Any]]:
    user = get_user_by_email(conn, email)
    if not user or not password:
        return None
    if not check_password_hash(user["password_hash"], password):
        return None
    return user


def update_user(conn: Connection, user_id, values: Dict[str, Any]) -> Dict[str, Any]:
    user = get_user(conn, user_id)
    changes: Dict[str, Any] = {}
    if "display_name" in values:
        changes["display_name"] = (values["display_name"] or "").strip() or None
    if "is_admin" in values:
        changes["is_admin"] = bool(values["is_admin"])
    if "password" in values:
        password = values["password"] or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        changes["password_hash"] = generate_password_hash(password)
    if changes:
        changes["updated_at"] = datetime.now(timezone.utc)
        conn.execute(users.update().where(users.c.id == user["id"]).values(**changes))
        log.info("Updated user %s fields=%s", user["id"], sorted(k for k in changes if k != "password_hash"))
    return get_user(conn, user["id"])


def delete_user(conn: Connection, user_id) -> None:
    user = get_user(conn, user_id)
    conn.execute(users.delete().where(users.c.id == user["id"]))
    log.info("Deleted user %s", user["id"])


def serialize_user(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "displayName": user.get("display_name"),
        "isAdmin": bool(user.get("is_admin")),
        "createdAt": isoformat(user.get("created_at")),
    }
