"""Registration store.

Every status change goes through ``transition_status``, a compare-and-set
UPDATE whose rowcount tells the caller whether it won. Side effects (emails,
refund bookkeeping) must only follow a winning transition.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Connection

from db import registrations
from errors import RegistrationNotFound
from pricing import cents_to_decimal, format_price, isoformat

log = logging.getLogger(__name__)

PENDING = "pending"
PAID = "paid"
FAILED = "failed"
CANCELLED = "cancelled"
REFUNDED = "refunded"
# Held while a refund is in flight; only the holder talks to the gateway.
REFUNDING = "refunding"

STATUSES = (PENDING, PAID, FAILED, CANCELLED, REFUNDED, REFUNDING)
ACTIVE_STATUSES = (PENDING, PAID, REFUNDING)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def insert_pending(
    conn: Connection,
    event_id: int,
    name: str,
    email: str,
    amount_cents: int,
    currency: str,
    user_id: Optional[int] = None,
) -> Dict[str, Any]:
    now = _now()
    data = dict(
        id=str(uuid.uuid4()),
        event_id=event_id,
        user_id=user_id,
        name=name,
        email=email,
        status=PENDING,
        payment_intent_id=None,
        amount_cents=amount_cents,
        currency=currency,
        email_sent=False,
        created_at=now,
        updated_at=now,
    )
    conn.execute(registrations.insert().values(**data))
    return data


def get_registration(conn: Connection, registration_id) -> Dict[str, Any]:
    if not registration_id:
        raise RegistrationNotFound(registration_id)
    row = conn.execute(
        select(registrations).where(registrations.c.id == str(registration_id))
    ).mappings().first()
    if row is None:
        raise RegistrationNotFound(registration_id)
    return dict(row)


def find_by_payment_intent(conn: Connection, intent_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(
        select(registrations).where(registrations.c.payment_intent_id == intent_id)
    ).mappings().first()
    return dict(row) if row else None


def list_registrations(
    conn: Connection,
    event_id: Optional[int] = None,
    status: Optional[str] = None,
    user_id: Optional[int] = None,
    email: Optional[str] = None,
) -> List[Dict[str, Any]]:
    stmt = select(registrations).order_by(registrations.c.created_at.desc())
    if event_id is not None:
        stmt = stmt.where(registrations.c.event_id == event_id)
    if status:
        stmt = stmt.where(registrations.c.status == status)
    if user_id is not None and email:
        stmt = stmt.where(
            (registrations.c.user_id == user_id) | (func.lower(registrations.c.email) == email.lower())
        )
    elif user_id is not None:
        stmt = stmt.where(registrations.c.user_id == user_id)
    elif email:
        stmt = stmt.where(func.lower(registrations.c.email) == email.lower())
    return [dict(r) for r in conn.execute(stmt).mappings().all()]


def count_active_registrations(conn: Connection, event_id: int) -> int:
    stmt = select(func.count()).select_from(registrations).where(
        registrations.c.event_id == event_id,
        registrations.c.status.in_(ACTIVE_STATUSES),
    )
    return conn.execute(stmt).scalar_one()


def transition_status(
    conn: Connection,
    registration_id: str,
    from_statuses: Iterable[str],
    to_status: str,
    **extra: Any,
) -> bool:
    """Move a registration to ``to_status`` only if it is still in ``from_statuses``.

    Extra keyword arguments are column values written in the same UPDATE.
    ``match_intent`` additionally requires the stored payment intent id to
    equal the given one.
    """
    match_intent = extra.pop("match_intent", None)
    stmt = registrations.update().where(
        registrations.c.id == registration_id,
        registrations.c.status.in_(tuple(from_statuses)),
    )
    if match_intent is not None:
        stmt = stmt.where(registrations.c.payment_intent_id == match_intent)
    result = conn.execute(stmt.values(status=to_status, updated_at=_now(), **extra))
    won = result.rowcount == 1
    if won:
        log.info("Registration %s -> %s", registration_id, to_status)
    return won


def set_payment_intent(
    conn: Connection, registration_id: str, intent_id: str, amount_cents: int, currency: str
) -> bool:
    result = conn.execute(
        registrations.update()
        .where(registrations.c.id == registration_id, registrations.c.status == PENDING)
        .values(
            payment_intent_id=intent_id,
            amount_cents=amount_cents,
            currency=currency,
            payment_error=None,
            updated_at=_now(),
        )
    )
    return result.rowcount == 1


def record_payment_error(conn: Connection, registration_id: str, message: Optional[str]) -> None:
    conn.execute(
        registrations.update()
        .where(registrations.c.id == registration_id)
        .values(payment_error=(message or "Payment failed")[:1000], updated_at=_now())
    )


def update_registrant(conn: Connection, registration_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
    get_registration(conn, registration_id)
    if values:
        conn.execute(
            registrations.update()
            .where(registrations.c.id == registration_id)
            .values(updated_at=_now(), **values)
        )
    return get_registration(conn, registration_id)


def mark_email_sent(conn: Connection, registration_id: str, sent: bool = True) -> None:
    conn.execute(
        registrations.update()
        .where(registrations.c.id == registration_id)
        .values(email_sent=sent, updated_at=_now())
    )


def delete_registration(conn: Connection, registration_id: str) -> None:
    result = conn.execute(registrations.delete().where(registrations.c.id == str(registration_id)))
    if result.rowcount == 0:
        raise RegistrationNotFound(registration_id)


def cancel_pending_for_event(conn: Connection, event_id: int) -> int:
    """Cancel the event's pending rows that never reached the gateway.

    Rows holding a payment intent may already be paid; the workflow settles
    those one by one against the gateway.
    """
    result = conn.execute(
        registrations.update()
        .where(
            registrations.c.event_id == event_id,
            registrations.c.status == PENDING,
            registrations.c.payment_intent_id.is_(None),
        )
        .values(status=CANCELLED, updated_at=_now())
    )
    return result.rowcount


def expire_pending(conn: Connection, older_than: datetime) -> int:
    """Cancel stale pending rows without a payment intent."""
    result = conn.execute(
        registrations.update()
        .where(
            registrations.c.status == PENDING,
            registrations.c.created_at < older_than,
            registrations.c.payment_intent_id.is_(None),
        )
        .values(status=CANCELLED, payment_error="Expired before payment", updated_at=_now())
    )
    return result.rowcount


def list_pending_with_intent(
    conn: Connection, older_than: Optional[datetime] = None, event_id: Optional[int] = None
) -> List[Dict[str, Any]]:
    stmt = select(registrations).where(
        registrations.c.status == PENDING,
        registrations.c.payment_intent_id.is_not(None),
    )
    if older_than is not None:
        stmt = stmt.where(registrations.c.created_at < older_than)
    if event_id is not None:
        stmt = stmt.where(registrations.c.event_id == event_id)
    return [dict(r) for r in conn.execute(stmt.order_by(registrations.c.created_at)).mappings().all()]


def count_expirable(conn: Connection, older_than: datetime) -> int:
    stmt = select(func.count()).select_from(registrations).where(
        registrations.c.status == PENDING,
        registrations.c.created_at < older_than,
    )
    return conn.execute(stmt).scalar_one()


def serialize_registration(reg: Dict[str, Any], event: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    payload = {
        "id": reg["id"],
        "eventId": reg["event_id"],
        "userId": reg.get("user_id"),
        "name": reg["name"],
        "email": reg["email"],
        "status": reg["status"],
        "paymentIntentId": reg.get("payment_intent_id"),
        "amountCents": reg.get("amount_cents"),
        "amount": str(cents_to_decimal(reg.get("amount_cents"))),
        "amountDisplay": format_price(reg.get("amount_cents"), reg.get("currency")),
        "currency": reg.get("currency"),
        "paymentError": reg.get("payment_error"),
        "emailSent": bool(reg.get("email_sent")),
        "paidAt": isoformat(reg.get("paid_at")),
        "createdAt": isoformat(reg.get("created_at")),
    }
    if event is not None:
        payload["eventName"] = event.get("name")
        payload["eventStartAt"] = isoformat(event.get("start_at"))
    return payload
