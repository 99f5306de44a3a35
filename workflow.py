"""Registration workflow: register, prepare payment, confirm payment.

Each step is a short request that reads and writes the registration row; no
state is carried between steps in memory. The engine, payment gateway and
notifier are handed in by the process entry point.

States::

    (none) -> pending -> paid -> refunding -> refunded
                  |        |
                  |        +-> cancelled (free events only)
                  |
                  +-> failed | cancelled
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import events as event_store
import payments
import registrations as registration_store
from accounts import is_valid_email, normalize_email
from errors import GatewayUnavailable, NotificationError, RegistrationNotFound, StateConflict, ValidationError
from registrations import CANCELLED, FAILED, PAID, PENDING, REFUNDED, REFUNDING

log = logging.getLogger(__name__)


def validate_registrant(name: Optional[str], email: Optional[str]) -> tuple[str, str]:
    name = (name or "").strip()
    email = normalize_email(email)
    errors = []
    if not name:
        errors.append("Name is required.")
    elif len(name) > 255:
        errors.append("Name must be 255 characters or fewer.")
    if not email:
        errors.append("Email is required.")
    elif not is_valid_email(email):
        errors.append("Enter a valid email address.")
    if errors:
        raise ValidationError(errors)
    return name, email


class RegistrationWorkflow:
    def __init__(self, engine, gateway, notifier, enforce_capacity: bool = True):
        self.engine = engine
        self.gateway = gateway
        self.notifier = notifier
        self.enforce_capacity = enforce_capacity

    # ── pending ────────────────────────────────────────────────
    def initiate_registration(self, event_id, name, email, user_id: Optional[int] = None) -> Dict[str, Any]:
        """Create a pending registration. Repeat calls create distinct rows."""
        name, email = validate_registrant(name, email)
        with self.engine.begin() as conn:
            # The row lock on the event serializes the count and the insert.
            event = event_store.get_event(conn, event_id, for_update=self.enforce_capacity)
            if self.enforce_capacity:
                taken = registration_store.count_active_registrations(conn, event["id"])
                if taken >= event["capacity"]:
                    raise StateConflict("This event is full.", code="event_full")
            reg = registration_store.insert_pending(
                conn,
                event["id"],
                name,
                email,
                amount_cents=event["price_cents"],
                currency=event["currency"],
                user_id=user_id,
            )
        log.info("Registration %s created for event %s (%s)", reg["id"], event["id"], email)
        return reg

    # ── payment intent ─────────────────────────────────────────
    def prepare_payment(self, registration_id) -> Dict[str, Any]:
        """Create (or reuse) a payment intent and return its client secret.

        A gateway failure leaves the registration untouched, so the call can
        simply be retried.
        """
        with self.engine.connect() as conn:
            reg = registration_store.get_registration(conn, registration_id)
            if reg["status"] != PENDING:
                raise StateConflict(f"Registration is {reg['status']}; payment cannot be prepared.")
            event = event_store.get_event(conn, reg["event_id"], include_archived=True)

        amount = event["price_cents"]
        currency = event["currency"]
        if amount == 0:
            return self._confirm_free(reg, event)

        if reg.get("payment_intent_id"):
            existing = self.gateway.get_intent(reg["payment_intent_id"])
            if existing.status == payments.SUCCEEDED:
                raise StateConflict(
                    "Payment already completed; confirm it instead.", code="payment_already_captured"
                )
            if existing.status == payments.PENDING and existing.amount_cents == amount and existing.client_secret:
                log.info("Reusing payment intent %s for registration %s", existing.intent_id, reg["id"])
                return self._payment_result(reg, existing, amount, currency)

        intent = self.gateway.create_intent(
            amount,
            currency,
            metadata={"registration_id": reg["id"], "event_id": event["id"], "email": reg["email"]},
        )
        with self.engine.begin() as conn:
            if not registration_store.set_payment_intent(conn, reg["id"], intent.intent_id, amount, currency):
                raise StateConflict("Registration changed while preparing payment.")
            reg = registration_store.get_registration(conn, reg["id"])
        return self._payment_result(reg, intent, amount, currency)

    @staticmethod
    def _payment_result(reg, intent, amount, currency) -> Dict[str, Any]:
        return {
            "registration": reg,
            "client_secret": intent.client_secret,
            "intent_id": intent.intent_id,
            "amount_cents": amount,
            "currency": currency,
        }

    def _confirm_free(self, reg, event) -> Dict[str, Any]:
        with self.engine.begin() as conn:
            won = registration_store.transition_status(
                conn, reg["id"], (PENDING,), PAID,
                paid_at=datetime.now(timezone.utc), amount_cents=0,
            )
            current = registration_store.get_registration(conn, reg["id"])
        if not won:
            raise StateConflict(f"Registration is {current['status']}.")
        self._send_confirmation(current, event)
        return {
            "registration": self._reload(current["id"]),
            "client_secret": None,
            "intent_id": None,
            "amount_cents": 0,
            "currency": event["currency"],
        }

    # ── paid ───────────────────────────────────────────────────
    def confirm_payment(self, registration_id, payment_intent_id) -> Dict[str, Any]:
        """Mark a registration paid once the gateway reports the intent succeeded.

        Idempotent for an already-paid registration with the same intent; only
        the request whose conditional update wins sends the confirmation.
        """
        if not payment_intent_id:
            raise ValidationError("paymentIntentId is required.")
        payment_intent_id = str(payment_intent_id)

        with self.engine.connect() as conn:
            reg = registration_store.get_registration(conn, registration_id)

        stored = reg.get("payment_intent_id")
        if reg["status"] == PAID:
            if stored == payment_intent_id:
                return reg
            raise StateConflict("Registration was paid with a different payment.", code="intent_mismatch")
        if reg["status"] != PENDING:
            raise StateConflict(f"Registration is {reg['status']}; payment cannot be confirmed.")
        if stored and stored != payment_intent_id:
            raise StateConflict("Payment does not belong to this registration.", code="intent_mismatch")

        intent = self.gateway.get_intent(payment_intent_id)
        if not stored and intent.metadata.get("registration_id") != reg["id"]:
            raise StateConflict("Payment does not belong to this registration.", code="intent_mismatch")

        if intent.status == payments.FAILED:
            with self.engine.begin() as conn:
                registration_store.transition_status(
                    conn, reg["id"], (PENDING,), FAILED,
                    match_intent=stored, payment_intent_id=payment_intent_id,
                    payment_error=intent.last_error or "Payment was canceled",
                )
            raise StateConflict(intent.last_error or "Payment failed.", code="payment_failed")

        if intent.status != payments.SUCCEEDED:
            if intent.last_error:
                with self.engine.begin() as conn:
                    registration_store.record_payment_error(conn, reg["id"], intent.last_error)
            raise StateConflict(intent.last_error or "Payment has not completed yet.", code="payment_incomplete")

        with self.engine.begin() as conn:
            won = registration_store.transition_status(
                conn, reg["id"], (PENDING,), PAID,
                match_intent=stored,
                payment_intent_id=payment_intent_id,
                paid_at=datetime.now(timezone.utc),
                payment_error=None,
                amount_cents=intent.amount_cents if intent.amount_cents is not None else reg["amount_cents"],
            )
            current = registration_store.get_registration(conn, reg["id"])
            event = event_store.get_event(conn, current["event_id"], include_archived=True)

        if not won:
            if current["status"] == PAID and current.get("payment_intent_id") == payment_intent_id:
                return current
            raise StateConflict(f"Registration is {current['status']}; payment cannot be confirmed.")

        self._send_confirmation(current, event)
        return self._reload(current["id"])

    def _template_data(self, reg, event) -> Dict[str, Any]:
        return {
            "registration_id": reg["id"],
            "name": reg["name"],
            "email": reg["email"],
            "event_name": event.get("name"),
            "event_start_at": event.get("start_at"),
            "location": event.get("location"),
            "amount_cents": reg.get("amount_cents"),
            "currency": reg.get("currency") or event.get("currency"),
        }

    def _send_confirmation(self, reg, event) -> bool:
        data = self._template_data(reg, event)
        try:
            self.notifier.send_confirmation(reg["email"], data)
        except NotificationError:
            # Payment stays authoritative; email_sent=false flags the row for a resend.
            log.error("Confirmation email for registration %s failed; resend required", reg["id"])
            self.notifier.notify_operators(dict(data, confirmation_failed=True))
            return False
        with self.engine.begin() as conn:
            registration_store.mark_email_sent(conn, reg["id"])
        self.notifier.notify_operators(data)
        return True

    def _reload(self, registration_id) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            return registration_store.get_registration(conn, registration_id)

    # ── admin transitions ──────────────────────────────────────
    def cancel_registration(self, registration_id, refund: bool = True) -> Dict[str, Any]:
        """Cancel a registration.

        A paid registration with a captured payment is always refunded; asking
        to cancel it without a refund is a conflict. Paid rows without a
        payment (free events) are simply cancelled.
        """
        reg = self._reload(registration_id)
        if reg["status"] == PAID and reg.get("payment_intent_id"):
            if not refund:
                raise StateConflict(
                    "Paid registrations are refunded when cancelled.", code="refund_required"
                )
            return self._refund(reg)

        if reg["status"] == PAID:
            from_statuses = (PAID,)
        elif reg["status"] in (PENDING, FAILED):
            from_statuses = (PENDING, FAILED)
            if reg["status"] == PENDING and reg.get("payment_intent_id"):
                self._close_open_intent(self.gateway.get_intent(reg["payment_intent_id"]))
        else:
            raise StateConflict(f"Registration is already {reg['status']}.")

        with self.engine.begin() as conn:
            won = registration_store.transition_status(conn, reg["id"], from_statuses, CANCELLED)
            current = registration_store.get_registration(conn, reg["id"])
        if not won:
            raise StateConflict(f"Registration changed to {current['status']}; reload and retry.")
        return current

    def _close_open_intent(self, intent: payments.PaymentIntent) -> None:
        if intent.status == payments.SUCCEEDED:
            raise StateConflict(
                "Payment already completed; confirm it and refund instead.", code="payment_already_captured"
            )
        if intent.status == payments.PENDING:
            self.gateway.cancel_intent(intent.intent_id)

    def _refund(self, reg) -> Dict[str, Any]:
        intent_id = reg["payment_intent_id"]
        with self.engine.begin() as conn:
            claimed = registration_store.transition_status(
                conn, reg["id"], (PAID,), REFUNDING, match_intent=intent_id
            )
            current = registration_store.get_registration(conn, reg["id"])
        if not claimed:
            raise StateConflict(f"Registration changed to {current['status']}; reload and retry.")

        try:
            self.gateway.refund(intent_id)
        except (GatewayUnavailable, StateConflict):
            with self.engine.begin() as conn:
                registration_store.transition_status(conn, reg["id"], (REFUNDING,), PAID)
            raise

        with self.engine.begin() as conn:
            registration_store.transition_status(conn, reg["id"], (REFUNDING,), REFUNDED)
            current = registration_store.get_registration(conn, reg["id"])
        log.info("Registration %s refunded (intent %s)", reg["id"], intent_id)
        return current

    def update_registrant(self, registration_id, fields: Dict[str, Any]) -> Dict[str, Any]:
        reg = self._reload(registration_id)
        name, email = validate_registrant(
            fields.get("name", reg["name"]), fields.get("email", reg["email"])
        )
        with self.engine.begin() as conn:
            return registration_store.update_registrant(conn, reg["id"], {"name": name, "email": email})

    def resend_confirmation(self, registration_id) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            reg = registration_store.get_registration(conn, registration_id)
            event = event_store.get_event(conn, reg["event_id"], include_archived=True)
        if reg["status"] != PAID:
            raise StateConflict("Only paid registrations have a confirmation to resend.")
        self.notifier.send_confirmation(reg["email"], self._template_data(reg, event))
        with self.engine.begin() as conn:
            registration_store.mark_email_sent(conn, reg["id"])
        return self._reload(reg["id"])

    def send_payment_reminder(self, registration_id) -> Dict[str, Any]:
        with self.engine.connect() as conn:
            reg = registration_store.get_registration(conn, registration_id)
            event = event_store.get_event(conn, reg["event_id"], include_archived=True)
        if reg["status"] != PENDING:
            raise StateConflict("Payment reminders are only sent for pending registrations.")
        self.notifier.send_payment_reminder(reg["email"], self._template_data(reg, event))
        log.info("Payment reminder sent for registration %s", reg["id"])
        return reg

    # ── settlement of abandoned intents ────────────────────────
    def _settle_pending_intent(self, reg, reason: str) -> Optional[str]:
        """Close a pending row whose payment intent may still be open.

        Returns the status the row ended in, or None when it was left pending
        for a later run.
        """
        intent_id = reg["payment_intent_id"]
        try:
            intent = self.gateway.get_intent(intent_id)
            if intent.status == payments.SUCCEEDED:
                return self.confirm_payment(reg["id"], intent_id)["status"]
            self._close_open_intent(intent)
        except (GatewayUnavailable, StateConflict) as exc:
            log.warning("Could not settle intent %s for registration %s: %s", intent_id, reg["id"], exc.message)
            return None

        with self.engine.begin() as conn:
            won = registration_store.transition_status(
                conn, reg["id"], (PENDING,), CANCELLED, match_intent=intent_id, payment_error=reason
            )
        return CANCELLED if won else None

    def expire_stale_registrations(self, max_age_hours: int) -> int:
        """Cancel pending rows older than ``max_age_hours``; returns how many were cancelled.

        Rows with a payment intent are checked with the gateway first: a paid
        intent confirms the row instead, an open one is cancelled at the gateway.
        """
        cutoff = datetime.now(timezone.utc) - timedelta(hours=max_age_hours)
        with self.engine.begin() as conn:
            expired = registration_store.expire_pending(conn, cutoff)
        with self.engine.connect() as conn:
            with_intent = registration_store.list_pending_with_intent(conn, older_than=cutoff)
        for reg in with_intent:
            if self._settle_pending_intent(reg, "Expired before payment") == CANCELLED:
                expired += 1
        log.info("Expired %d pending registrations older than %dh", expired, max_age_hours)
        return expired

    def delete_event(self, event_id) -> Dict[str, Any]:
        """Archive an event and close every registration still waiting on payment."""
        with self.engine.begin() as conn:
            result = event_store.delete_event(conn, event_id)
        with self.engine.connect() as conn:
            with_intent = registration_store.list_pending_with_intent(conn, event_id=result["id"])
        for reg in with_intent:
            if self._settle_pending_intent(reg, "Event was cancelled") == CANCELLED:
                result["cancelled_registrations"] += 1
        return result

    # ── gateway webhooks ───────────────────────────────────────
    def handle_gateway_event(self, event: payments.GatewayEvent) -> Optional[Dict[str, Any]]:
        intent = event.intent
        if intent is None:
            log.info("Ignoring gateway event %s (%s)", event.event_id, event.type)
            return None

        with self.engine.connect() as conn:
            reg = registration_store.find_by_payment_intent(conn, intent.intent_id)
            if reg is None and intent.metadata.get("registration_id"):
                try:
                    reg = registration_store.get_registration(conn, intent.metadata["registration_id"])
                except RegistrationNotFound:
                    reg = None
        if reg is None:
            log.warning("Gateway event %s references unknown intent %s", event.type, intent.intent_id)
            return None

        if event.type == "payment_intent.succeeded":
            try:
                return self.confirm_payment(reg["id"], intent.intent_id)
            except StateConflict as exc:
                current = self._reload(reg["id"])
                if current.get("payment_intent_id") == intent.intent_id and current["status"] in (
                    PAID, REFUNDING, REFUNDED,
                ):
                    return current
                if current["status"] == PENDING and exc.code != "intent_mismatch":
                    log.warning("Webhook confirm for registration %s deferred: %s", reg["id"], exc.message)
                    return None
                return self._refund_orphaned_payment(current, intent)
        if event.type == "payment_intent.payment_failed":
            with self.engine.begin() as conn:
                registration_store.record_payment_error(conn, reg["id"], intent.last_error)
            log.info("Recorded payment failure for registration %s", reg["id"])
            return self._reload(reg["id"])
        if event.type == "payment_intent.canceled":
            with self.engine.begin() as conn:
                registration_store.transition_status(
                    conn, reg["id"], (PENDING,), FAILED,
                    match_intent=intent.intent_id, payment_error="Payment was canceled",
                )
            return self._reload(reg["id"])

        log.info("Unhandled gateway event type %s", event.type)
        return None

    def _refund_orphaned_payment(self, reg, intent: payments.PaymentIntent) -> Optional[Dict[str, Any]]:
        """Refund a payment that succeeded after its registration was closed or paid otherwise."""
        with self.engine.connect() as conn:
            event = event_store.get_event(conn, reg["event_id"], include_archived=True)
        data = dict(self._template_data(reg, event), amount_cents=intent.amount_cents, refunded_intent=intent.intent_id)
        log.error(
            "Payment %s arrived for registration %s while it was %s; refunding",
            intent.intent_id, reg["id"], reg["status"],
        )
        try:
            self.gateway.refund(intent.intent_id)
        except GatewayUnavailable:
            self.notifier.notify_operators(dict(data, refund_failed=True))
            raise
        except StateConflict as exc:
            # Usually a refund that already went through on an earlier delivery.
            log.warning("Refund of %s rejected: %s", intent.intent_id, exc.message)
            return None

        if reg["status"] in (CANCELLED, FAILED) and reg.get("payment_intent_id") in (None, intent.intent_id):
            with self.engine.begin() as conn:
                registration_store.transition_status(
                    conn, reg["id"], (CANCELLED, FAILED), REFUNDED,
                    payment_intent_id=intent.intent_id,
                    payment_error="Payment arrived after the registration was closed; refunded",
                )
        self.notifier.notify_operators(data)
        return self._reload(reg["id"])
