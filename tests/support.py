"""Shared fakes and builders for the test suite."""

import json
from dataclasses import replace

from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import accounts
import events as event_store
import payments
from db import init_schema
from errors import GatewayUnavailable, NotificationError, StateConflict, ValidationError
from webapp import create_app

INTRO_EVENT = {
    "name": "Intro",
    "start": "2025-06-01T09:00",
    "end": "2025-06-01T11:00",
    "capacity": 10,
    "price": "199.00",
    "location": "Online (Zoom)",
}


def memory_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        future=True,
    )
    init_schema(engine)
    return engine


class FakeGateway:
    """In-memory stand-in for StripeGateway."""

    def __init__(self):
        self.intents = {}
        self.created = []
        self.refunds = []
        self.cancelled = []
        self.lookups = 0
        self.fail_create = False
        self.fail_lookup = False
        self.fail_refund = False

    def create_intent(self, amount_cents, currency, metadata=None):
        if self.fail_create:
            raise GatewayUnavailable()
        intent_id = f"pi_test_{len(self.created) + 1}"
        intent = payments.PaymentIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret_abc",
            status=payments.PENDING,
            raw_status="requires_payment_method",
            amount_cents=amount_cents,
            currency=currency,
            metadata={k: str(v) for k, v in (metadata or {}).items()},
        )
        self.intents[intent_id] = intent
        self.created.append(intent)
        return intent

    def set_status(self, intent_id, status, last_error=None):
        raw = {"succeeded": "succeeded", "failed": "canceled"}.get(status, "requires_payment_method")
        self.intents[intent_id] = replace(
            self.intents[intent_id], status=status, raw_status=raw, last_error=last_error
        )

    def get_intent(self, intent_id):
        self.lookups += 1
        if self.fail_lookup:
            raise GatewayUnavailable()
        if intent_id not in self.intents:
            raise StateConflict(f"No such payment_intent: '{intent_id}'", code="intent_mismatch")
        return self.intents[intent_id]

    def get_intent_status(self, intent_id):
        return self.get_intent(intent_id).status

    def cancel_intent(self, intent_id):
        intent = self.get_intent(intent_id)
        if intent.status != payments.PENDING:
            raise StateConflict(f"Cannot cancel a {intent.raw_status} payment intent.", code="gateway_rejected")
        self.cancelled.append(intent_id)
        self.set_status(intent_id, payments.FAILED)
        return self.intents[intent_id]

    def refund(self, intent_id):
        if self.fail_refund:
            raise GatewayUnavailable()
        self.refunds.append(intent_id)
        return f"re_{len(self.refunds)}"

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise ValidationError("Invalid webhook signature.")
        body = json.loads(payload)
        intent = self.intents.get(body["intent_id"])
        return payments.GatewayEvent(event_id=body.get("id", "evt_test"), type=body["type"], intent=intent)


class FakeNotifier:
    def __init__(self):
        self.confirmations = []
        self.reminders = []
        self.welcomes = []
        self.operator_notices = []
        self.contact_notices = []
        self.contact_replies = []
        self.fail = False
        self.fail_auto_reply = False

    def send_confirmation(self, to_email, template_data):
        if self.fail:
            raise NotificationError(f"Could not send confirmation email to {to_email}.")
        self.confirmations.append((to_email, template_data))

    def send_payment_reminder(self, to_email, template_data):
        if self.fail:
            raise NotificationError(f"Could not send payment reminder to {to_email}.")
        self.reminders.append((to_email, template_data))

    def send_welcome(self, to_email, template_data):
        if self.fail:
            raise NotificationError(f"Could not send welcome email to {to_email}.")
        self.welcomes.append((to_email, template_data))

    def notify_operators(self, template_data):
        self.operator_notices.append(template_data)
        return True

    def send_contact_notice(self, data):
        if self.fail:
            raise NotificationError("We couldn't send your message right now. Please try again later.")
        self.contact_notices.append(data)

    def send_contact_auto_reply(self, to_email, data):
        if self.fail or self.fail_auto_reply:
            raise NotificationError(f"Could not send contact acknowledgement to {to_email}.")
        self.contact_replies.append((to_email, data))


def make_event(engine, **overrides):
    fields = dict(INTRO_EVENT)
    fields.update(overrides)
    with engine.begin() as conn:
        return event_store.create_event(conn, fields)


def make_user(engine, email="member@example.com", password="correct-horse", is_admin=False, name=None):
    with engine.begin() as conn:
        return accounts.create_user(conn, email, password, display_name=name, is_admin=is_admin)


def build_app(engine=None, gateway=None, notifier=None, enforce_capacity=True):
    engine = engine or memory_engine()
    app = create_app(
        engine=engine,
        gateway=gateway or FakeGateway(),
        notifier=notifier or FakeNotifier(),
        enforce_capacity=enforce_capacity,
        TESTING=True,
        SESSION_COOKIE_SECURE=False,
    )
    return app


def login(client, email, password="correct-horse"):
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return resp
