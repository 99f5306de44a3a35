# api.py (Blueprint: api)
# Public JSON endpoints for browsing events and the register → pay → confirm flow.

import logging
from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request

import events as event_store
import registrations as registration_store
from accounts import is_valid_email, normalize_email
from auth import current_user, get_engine, request_payload, require_user
from errors import NotificationError, RegistrationNotFound, ValidationError
from settings import PAYMENT_CURRENCY, STRIPE_PUBLISHABLE_KEY

log = logging.getLogger(__name__)

CONTACT_MESSAGE_LIMIT = 500

api_bp = Blueprint("api", __name__)


def _workflow():
    return current_app.config["WORKFLOW"]


def _field(payload: Dict[str, Any], *names: str) -> Optional[Any]:
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    return None


def _owned_registration(registration_id) -> Dict[str, Any]:
    """Load a registration the caller may act on.

    Registrations tied to an account are only visible to that account (or an
    administrator); anyone else gets a plain not-found.
    """
    if not registration_id:
        raise ValidationError("registrationId is required.")
    with get_engine().connect() as conn:
        reg = registration_store.get_registration(conn, registration_id)
    owner = reg.get("user_id")
    if owner is not None:
        user = current_user()
        if not user or (user["id"] != owner and not user.get("is_admin")):
            raise RegistrationNotFound(registration_id)
    return reg


@api_bp.get("/events")
def list_events():
    with get_engine().connect() as conn:
        rows = event_store.list_events(conn)
        seats = {e["id"]: registration_store.count_active_registrations(conn, e["id"]) for e in rows}
    return jsonify({"ok": True, "events": [event_store.serialize_event(e, seats[e["id"]]) for e in rows]})


@api_bp.get("/events/<event_id>")
def get_event(event_id):
    with get_engine().connect() as conn:
        event = event_store.get_event(conn, event_id)
        taken = registration_store.count_active_registrations(conn, event["id"])
    return jsonify({"ok": True, "event": event_store.serialize_event(event, taken)})


@api_bp.post("/register-event")
def register_event():
    payload = request_payload()
    event_id = _field(payload, "eventId", "event_id")
    if event_id is None:
        raise ValidationError("eventId is required.")

    user = current_user()
    name = _field(payload, "name")
    email = _field(payload, "email")
    if user:
        name = name or user.get("display_name") or user["email"].split("@")[0]
        email = email or user["email"]

    reg = _workflow().initiate_registration(event_id, name, email, user_id=user["id"] if user else None)
    return jsonify({
        "ok": True,
        "registrationId": reg["id"],
        "registration": registration_store.serialize_registration(reg),
    }), 201


@api_bp.post("/create-payment-intent")
def create_payment_intent():
    payload = request_payload()
    reg = _owned_registration(_field(payload, "registrationId", "registration_id"))
    result = _workflow().prepare_payment(reg["id"])
    return jsonify({
        "ok": True,
        "clientSecret": result["client_secret"],
        "paymentIntentId": result["intent_id"],
        "amountCents": result["amount_cents"],
        "currency": result["currency"],
        "registration": registration_store.serialize_registration(result["registration"]),
    })


@api_bp.post("/confirm-payment")
def confirm_payment():
    payload = request_payload()
    reg = _owned_registration(_field(payload, "registrationId", "registration_id"))
    intent_id = _field(payload, "paymentIntentId", "payment_intent_id")
    updated = _workflow().confirm_payment(reg["id"], intent_id)
    return jsonify({"ok": True, "registration": registration_store.serialize_registration(updated)})


@api_bp.get("/registrations")
def my_registrations():
    user = require_user()
    with get_engine().connect() as conn:
        rows = registration_store.list_registrations(conn, user_id=user["id"], email=user["email"])
        event_cache: Dict[int, Dict[str, Any]] = {}
        for row in rows:
            if row["event_id"] not in event_cache:
                event_cache[row["event_id"]] = event_store.get_event(conn, row["event_id"], include_archived=True)
    return jsonify({
        "ok": True,
        "registrations": [
            registration_store.serialize_registration(r, event_cache[r["event_id"]]) for r in rows
        ],
    })


@api_bp.get("/payment-config")
def payment_config():
    return jsonify({
        "ok": True,
        "publishableKey": current_app.config.get("STRIPE_PUBLISHABLE_KEY", STRIPE_PUBLISHABLE_KEY),
        "currency": PAYMENT_CURRENCY,
    })


@api_bp.post("/stripe-webhook")
def stripe_webhook():
    gateway = current_app.config["PAYMENT_GATEWAY"]
    event = gateway.construct_event(request.get_data(), request.headers.get("Stripe-Signature"))
    log.info("Gateway event %s received (%s)", event.event_id, event.type)
    _workflow().handle_gateway_event(event)
    return jsonify({"received": True})


@api_bp.post("/contact")
def contact():
    payload = request_payload()
    form = {
        key: str(payload.get(key) or "").strip()
        for key in ("name", "email", "phone", "interest", "message", "source")
    }
    form["email"] = normalize_email(form["email"])

    errors = []
    if not form["name"]:
        errors.append("Name is required.")
    if not form["email"]:
        errors.append("Email is required.")
    elif not is_valid_email(form["email"]):
        errors.append("Enter a valid email address.")
    if len(form["message"]) > CONTACT_MESSAGE_LIMIT:
        errors.append(f"Message must be {CONTACT_MESSAGE_LIMIT} characters or fewer.")
    if errors:
        raise ValidationError(errors)

    notifier = current_app.config["NOTIFIER"]
    notifier.send_contact_notice(form)
    try:
        notifier.send_contact_auto_reply(form["email"], form)
    except NotificationError:
        log.warning("Contact acknowledgement to %s failed", form["email"])
    return jsonify({"ok": True, "message": "Message sent."})
