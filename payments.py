"""Stripe payment gateway adapter.

The adapter performs no retries of its own; callers decide whether to retry.
Amounts are integer minor units (cents) in and out.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import stripe

from errors import GatewayUnavailable, StateConflict, ValidationError

log = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
PENDING = "pending"
FAILED = "failed"


@dataclass(frozen=True)
class PaymentIntent:
    intent_id: str
    client_secret: Optional[str]
    status: str
    raw_status: str
    amount_cents: Optional[int] = None
    currency: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)
    last_error: Optional[str] = None


@dataclass(frozen=True)
class GatewayEvent:
    event_id: str
    type: str
    intent: Optional[PaymentIntent]


def normalize_status(raw_status: Optional[str]) -> str:
    if raw_status == "succeeded":
        return SUCCEEDED
    if raw_status == "canceled":
        return FAILED
    return PENDING


def _metadata(obj: Any) -> Dict[str, str]:
    md = getattr(obj, "metadata", None)
    if not md:
        return {}
    return {str(k): str(md[k]) for k in md.keys()}


def _last_error(obj: Any) -> Optional[str]:
    err = getattr(obj, "last_payment_error", None)
    if not err:
        return None
    return getattr(err, "message", None) or "Payment failed"


def _to_intent(obj: Any) -> PaymentIntent:
    raw_status = getattr(obj, "status", None) or ""
    return PaymentIntent(
        intent_id=obj.id,
        client_secret=getattr(obj, "client_secret", None),
        status=normalize_status(raw_status),
        raw_status=raw_status,
        amount_cents=getattr(obj, "amount", None),
        currency=getattr(obj, "currency", None),
        metadata=_metadata(obj),
        last_error=_last_error(obj),
    )


class StripeGateway:
    """Thin wrapper over ``stripe.StripeClient`` with our error taxonomy."""

    def __init__(self, secret_key: str, webhook_secret: str = "", timeout: float = 10.0, client=None):
        self._webhook_secret = webhook_secret
        if client is not None:
            self._client = client
        else:
            if not secret_key:
                log.warning("STRIPE_SECRET_KEY is not set; payment calls will fail")
            self._client = stripe.StripeClient(
                secret_key or "sk_unset",
                http_client=stripe.RequestsClient(timeout=timeout),
                max_network_retries=0,
            )

    def _call(self, what: str, fn, *args, rejected_code: str = "gateway_rejected", **kwargs):
        try:
            return fn(*args, **kwargs)
        except stripe.CardError as exc:
            reason = getattr(exc, "user_message", None) or str(exc)
            log.warning("Stripe %s declined: %s", what, reason)
            raise GatewayUnavailable("Payment was declined.", decline_reason=reason) from exc
        except stripe.InvalidRequestError as exc:
            # The request itself is wrong (unknown id, wrong state); retrying cannot help.
            reason = getattr(exc, "user_message", None) or str(exc)
            log.warning("Stripe %s rejected: %s", what, reason)
            raise StateConflict(reason, code=rejected_code) from exc
        except stripe.APIConnectionError as exc:
            log.warning("Stripe %s failed to connect: %s", what, exc)
            raise GatewayUnavailable() from exc
        except stripe.StripeError as exc:
            log.exception("Stripe %s failed", what)
            reason = getattr(exc, "user_message", None)
            raise GatewayUnavailable(decline_reason=reason) from exc

    def create_intent(self, amount_cents: int, currency: str, metadata: Optional[Dict[str, Any]] = None) -> PaymentIntent:
        if not isinstance(amount_cents, int) or amount_cents <= 0:
            raise ValidationError("Payment amount must be a positive number of cents.")
        params = {
            "amount": amount_cents,
            "currency": currency.lower(),
            "metadata": {k: str(v) for k, v in (metadata or {}).items() if v is not None},
            "automatic_payment_methods": {"enabled": True},
        }
        obj = self._call("create_intent", self._client.payment_intents.create, params=params)
        intent = _to_intent(obj)
        log.info("Created payment intent %s for %s %s", intent.intent_id, amount_cents, currency)
        return intent

    def get_intent(self, intent_id: str) -> PaymentIntent:
        obj = self._call(
            "get_intent", self._client.payment_intents.retrieve, intent_id, rejected_code="intent_mismatch"
        )
        return _to_intent(obj)

    def get_intent_status(self, intent_id: str) -> str:
        return self.get_intent(intent_id).status

    def cancel_intent(self, intent_id: str) -> PaymentIntent:
        """Cancel an uncaptured intent so it can no longer be paid."""
        obj = self._call("cancel_intent", self._client.payment_intents.cancel, intent_id)
        log.info("Canceled payment intent %s", intent_id)
        return _to_intent(obj)

    def refund(self, intent_id: str) -> str:
        # One refund per intent, even when a caller repeats the request.
        obj = self._call(
            "refund",
            self._client.refunds.create,
            params={"payment_intent": intent_id},
            options={"idempotency_key": f"refund-{intent_id}"},
        )
        log.info("Refunded payment intent %s (refund %s)", intent_id, obj.id)
        return obj.id

    def construct_event(self, payload: bytes, signature: Optional[str]) -> GatewayEvent:
        if not self._webhook_secret:
            raise ValidationError("Webhook secret is not configured.")
        try:
            event = self._client.construct_event(payload, signature or "", self._webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            log.warning("Webhook signature verification failed: %s", exc)
            raise ValidationError("Invalid webhook signature.") from exc

        obj = event.data.object
        intent = _to_intent(obj) if getattr(obj, "object", None) == "payment_intent" else None
        return GatewayEvent(event_id=event.id, type=event.type, intent=intent)
