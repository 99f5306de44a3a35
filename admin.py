# admin.py (Blueprint: admin)
# Back-office CRUD over events, registrations and users. Every route sits
# behind admin_guard, installed once on the blueprint.

import logging

from flask import Blueprint, current_app, jsonify, request

import accounts
import events as event_store
import registrations as registration_store
from auth import admin_guard, current_user, get_engine, request_payload
from errors import StateConflict, ValidationError
from settings import PENDING_REGISTRATION_TTL_HOURS

log = logging.getLogger(__name__)

admin_bp = Blueprint("admin", __name__)
admin_bp.before_request(admin_guard)


def _workflow():
    return current_app.config["WORKFLOW"]


def _bool(v, default=False):
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


# ── events ───────────────────────────────────────────────────────────
@admin_bp.get("/events")
def list_events():
    include_archived = _bool(request.args.get("archived"))
    with get_engine().connect() as conn:
        rows = event_store.list_events(conn, include_archived=include_archived)
        payload = [
            event_store.serialize_event(e, registration_store.count_active_registrations(conn, e["id"]))
            for e in rows
        ]
    return jsonify({"ok": True, "events": payload})


@admin_bp.post("/events")
def create_event():
    with get_engine().begin() as conn:
        event = event_store.create_event(conn, request_payload())
    return jsonify({"ok": True, "event": event_store.serialize_event(event)}), 201


@admin_bp.get("/events/<event_id>")
def get_event(event_id):
    with get_engine().connect() as conn:
        event = event_store.get_event(conn, event_id, include_archived=True)
        taken = registration_store.count_active_registrations(conn, event["id"])
    return jsonify({"ok": True, "event": event_store.serialize_event(event, taken)})


@admin_bp.route("/events/<event_id>", methods=["PATCH", "PUT"])
def update_event(event_id):
    with get_engine().begin() as conn:
        event = event_store.update_event(conn, event_id, request_payload())
    return jsonify({"ok": True, "event": event_store.serialize_event(event)})


@admin_bp.delete("/events/<event_id>")
def delete_event(event_id):
    result = _workflow().delete_event(event_id)
    return jsonify({
        "ok": True,
        "id": result["id"],
        "archived": True,
        "cancelledRegistrations": result["cancelled_registrations"],
    })


@admin_bp.get("/events/<event_id>/registrations")
def event_registrations(event_id):
    with get_engine().connect() as conn:
        event = event_store.get_event(conn, event_id, include_archived=True)
        rows = registration_store.list_registrations(conn, event_id=event["id"])
    return jsonify({
        "ok": True,
        "registrations": [registration_store.serialize_registration(r, event) for r in rows],
    })


# ── registrations ────────────────────────────────────────────────────
@admin_bp.get("/registrations")
def list_registrations():
    status = (request.args.get("status") or "").strip().lower() or None
    if status and status not in registration_store.STATUSES:
        raise ValidationError(f"Unknown status {status!r}.")
    event_id = request.args.get("eventId") or request.args.get("event_id")
    try:
        event_id = int(event_id) if event_id else None
    except ValueError:
        raise ValidationError("eventId must be a number.") from None
    with get_engine().connect() as conn:
        rows = registration_store.list_registrations(conn, event_id=event_id, status=status)
    return jsonify({"ok": True, "registrations": [registration_store.serialize_registration(r) for r in rows]})


@admin_bp.post("/registrations")
def create_registration():
    payload = request_payload()
    event_id = payload.get("eventId") or payload.get("event_id")
    if not event_id:
        raise ValidationError("eventId is required.")
    user_id = payload.get("userId") or payload.get("user_id")
    if user_id is not None:
        with get_engine().connect() as conn:
            user_id = accounts.get_user(conn, user_id)["id"]
    reg = _workflow().initiate_registration(event_id, payload.get("name"), payload.get("email"), user_id=user_id)
    return jsonify({"ok": True, "registration": registration_store.serialize_registration(reg)}), 201


@admin_bp.route("/registrations/<registration_id>", methods=["PATCH", "PUT"])
def update_registration(registration_id):
    payload = request_payload()
    if "status" in payload:
        raise StateConflict("Status changes go through the cancel or confirm operations.")
    reg = _workflow().update_registrant(registration_id, payload)
    return jsonify({"ok": True, "registration": registration_store.serialize_registration(reg)})


@admin_bp.delete("/registrations/<registration_id>")
def delete_registration(registration_id):
    with get_engine().begin() as conn:
        registration_store.delete_registration(conn, registration_id)
    log.info("Admin %s deleted registration %s", current_user()["id"], registration_id)
    return jsonify({"ok": True, "message": "Registration deleted successfully"})


@admin_bp.post("/registrations/<registration_id>/cancel")
def cancel_registration(registration_id):
    payload = request_payload() if request.get_data() else {}
    reg = _workflow().cancel_registration(registration_id, refund=_bool(payload.get("refund"), True))
    return jsonify({"ok": True, "registration": registration_store.serialize_registration(reg)})


@admin_bp.post("/registrations/<registration_id>/resend-confirmation")
def resend_confirmation(registration_id):
    reg = _workflow().resend_confirmation(registration_id)
    return jsonify({"ok": True, "registration": registration_store.serialize_registration(reg)})


@admin_bp.post("/registrations/<registration_id>/payment-reminder")
def payment_reminder(registration_id):
    _workflow().send_payment_reminder(registration_id)
    return jsonify({"ok": True, "message": "Payment reminder email sent successfully"})


@admin_bp.post("/registrations/expire")
def expire_registrations():
    payload = request_payload() if request.get_data() else {}
    raw = payload.get("maxAgeHours", payload.get("max_age_hours"))
    try:
        hours = int(raw) if raw not in (None, "") else PENDING_REGISTRATION_TTL_HOURS
    except (TypeError, ValueError):
        raise ValidationError("maxAgeHours must be a whole number.") from None
    if hours < 1:
        raise ValidationError("maxAgeHours must be at least 1.")
    expired = _workflow().expire_stale_registrations(hours)
    return jsonify({"ok": True, "expired": expired})


# ── users ────────────────────────────────────────────────────────────
@admin_bp.get("/users")
def list_users():
    with get_engine().connect() as conn:
        rows = accounts.list_users(conn)
    return jsonify({"ok": True, "users": [accounts.serialize_user(u) for u in rows]})


@admin_bp.post("/users")
def create_user():
    payload = request_payload()
    with get_engine().begin() as conn:
        user = accounts.create_user(
            conn,
            payload.get("email"),
            payload.get("password"),
            display_name=payload.get("displayName") or payload.get("display_name"),
            is_admin=_bool(payload.get("isAdmin") or payload.get("is_admin")),
        )
    return jsonify({"ok": True, "user": accounts.serialize_user(user)}), 201


@admin_bp.route("/users/<user_id>", methods=["PATCH", "PUT"])
def update_user(user_id):
    payload = request_payload()
    values = {}
    if "displayName" in payload or "display_name" in payload:
        values["display_name"] = payload.get("displayName", payload.get("display_name"))
    if "isAdmin" in payload or "is_admin" in payload:
        values["is_admin"] = _bool(payload.get("isAdmin", payload.get("is_admin")))
    if "password" in payload:
        values["password"] = payload["password"]
    me = current_user()
    if str(me["id"]) == str(user_id) and values.get("is_admin") is False:
        raise StateConflict("Administrators cannot revoke their own access.")
    with get_engine().begin() as conn:
        user = accounts.update_user(conn, user_id, values)
    return jsonify({"ok": True, "user": accounts.serialize_user(user)})


@admin_bp.delete("/users/<user_id>")
def delete_user(user_id):
    if str(current_user()["id"]) == str(user_id):
        raise StateConflict("Administrators cannot delete their own account.")
    with get_engine().begin() as conn:
        accounts.delete_user(conn, user_id)
    return jsonify({"ok": True})


@admin_bp.post("/users/<user_id>/resend-welcome")
def resend_welcome(user_id):
    with get_engine().connect() as conn:
        user = accounts.get_user(conn, user_id)
    notifier = current_app.config["NOTIFIER"]
    notifier.send_welcome(user["email"], {"name": user.get("display_name") or user["email"].split("@")[0]})
    log.info("Welcome email resent to user %s", user["id"])
    return jsonify({"ok": True, "message": "Welcome email sent successfully"})
