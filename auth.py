"""Session login endpoints and the caller-identity helpers used by the other blueprints."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, g, jsonify, request, session

import accounts
from errors import Forbidden, NotificationError, Unauthorized, UserNotFound, ValidationError

log = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


def get_engine():
    return current_app.config["DB_ENGINE"]


def request_payload() -> Dict[str, Any]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if payload is None:
            raise ValidationError("Request body must be valid JSON.")
        if not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object.")
        return payload
    return request.form.to_dict()


def current_user() -> Optional[Dict[str, Any]]:
    """The signed-in user, loaded once per request; None for guests."""
    if "current_user" in g:
        return g.current_user
    user = None
    user_id = session.get("user_id")
    if user_id is not None:
        try:
            with get_engine().connect() as conn:
                user = accounts.get_user(conn, user_id)
        except UserNotFound:
            session.pop("user_id", None)
    g.current_user = user
    return user


def require_user() -> Dict[str, Any]:
    user = current_user()
    if user is None:
        raise Unauthorized("Sign in to continue.")
    return user


def require_admin(user: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    # Guests and non-admins get the same answer.
    if not user or not user.get("is_admin"):
        raise Forbidden()
    return user


def admin_guard():
    """``before_request`` hook for the admin blueprint."""
    require_admin(current_user())


def _login(user: Dict[str, Any]) -> None:
    session.clear()
    session["user_id"] = user["id"]
    session.permanent = True
    g.current_user = user


@auth_bp.post("/signup")
def signup():
    payload = request_payload()
    with get_engine().begin() as conn:
        user = accounts.create_user(
            conn,
            payload.get("email"),
            payload.get("password"),
            display_name=payload.get("displayName") or payload.get("display_name") or payload.get("name"),
        )
    _login(user)

    notifier = current_app.config.get("NOTIFIER")
    if notifier is not None:
        try:
            notifier.send_welcome(user["email"], {"name": user.get("display_name") or user["email"].split("@")[0]})
        except NotificationError:
            log.warning("Welcome email to %s failed", user["email"])

    return jsonify({"ok": True, "user": accounts.serialize_user(user)}), 201


@auth_bp.post("/login")
def login():
    payload = request_payload()
    with get_engine().connect() as conn:
        user = accounts.authenticate(conn, payload.get("email"), payload.get("password"))
    if user is None:
        raise Unauthorized("Invalid email or password.")
    _login(user)
    log.info("User %s signed in", user["id"])
    return jsonify({"ok": True, "user": accounts.serialize_user(user)})


@auth_bp.post("/logout")
def logout():
    session.clear()
    return jsonify({"ok": True})


@auth_bp.get("/me")
def me():
    user = require_user()
    return jsonify({"ok": True, "user": accounts.serialize_user(user)})


@auth_bp.post("/reset")
def reset():
    """Drop the session and any cached identity so the client starts over signed out."""
    user = current_user()
    session.clear()
    g.current_user = None
    if user:
        log.info("Session reset for user %s", user["id"])
    return jsonify({"ok": True})


@auth_bp.get("/profile")
def get_profile():
    user = require_user()
    return jsonify({"ok": True, "user": accounts.serialize_user(user)})


@auth_bp.route("/profile", methods=["PUT", "PATCH"])
def update_profile():
    user = require_user()
    payload = request_payload()
    values: Dict[str, Any] = {}
    for key in ("displayName", "display_name", "name"):
        if key in payload:
            values["display_name"] = payload[key]
            break

    new_password = payload.get("newPassword") or payload.get("new_password")
    if new_password:
        current_password = payload.get("currentPassword") or payload.get("current_password")
        with get_engine().connect() as conn:
            if accounts.authenticate(conn, user["email"], current_password) is None:
                raise Unauthorized("Current password is incorrect.")
        values["password"] = new_password

    with get_engine().begin() as conn:
        updated = accounts.update_user(conn, user["id"], values)
    g.current_user = updated
    return jsonify({"ok": True, "user": accounts.serialize_user(updated)})
