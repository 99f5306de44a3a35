"""Event store: reads and admin writes over the events table."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

import registrations as registration_store
from db import events
from errors import EventNotFound, ValidationError
from pricing import as_utc, format_price, cents_to_decimal, isoformat, parse_datetime, parse_price_to_cents
from settings import PAYMENT_CURRENCY

log = logging.getLogger(__name__)

_TEXT_FIELDS = ("description", "location", "agenda", "contact", "inclusions")

_FIELD_ALIASES = {
    "start_at": ("start_at", "startAt", "start_date", "startDate", "start"),
    "end_at": ("end_at", "endAt", "end_date", "endDate", "end"),
    "price_cents": ("price_cents", "priceCents"),
}


def _pick(fields: Dict[str, Any], key: str):
    for alias in _FIELD_ALIASES.get(key, (key,)):
        if alias in fields:
            return True, fields[alias]
    return False, None


def _s(x):
    if x is None:
        return None
    x = str(x).strip()
    return x or None


def _parse_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        if not raw.is_integer():
            raise ValueError
        return int(raw)
    return int(str(raw).strip())


def validate_event_fields(fields: Dict[str, Any], current: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Normalize admin input into column values.

    With ``current`` the input is a partial update, and cross-field checks run
    against the merged record. Raises ValidationError before anything is written.
    """
    if not isinstance(fields, dict):
        raise ValidationError("Event payload must be an object.")
    partial = current is not None
    errors: List[str] = []
    values: Dict[str, Any] = {}

    present, raw = _pick(fields, "name")
    if present or not partial:
        name = _s(raw)
        if not name:
            errors.append("Name is required.")
        else:
            values["name"] = name[:255]

    for key, label in (("start_at", "Start time"), ("end_at", "End time")):
        present, raw = _pick(fields, key)
        if present or not partial:
            try:
                values[key] = parse_datetime(raw)
            except ValueError:
                errors.append(f"{label} must be an ISO 8601 timestamp.")

    present, raw = _pick(fields, "capacity")
    if present or not partial:
        try:
            capacity = _parse_int(raw)
        except (TypeError, ValueError):
            errors.append("Capacity must be a whole number.")
        else:
            if capacity < 1:
                errors.append("Capacity must be at least 1.")
            else:
                values["capacity"] = capacity

    cents_present, raw_cents = _pick(fields, "price_cents")
    price_present, raw_price = _pick(fields, "price")
    if cents_present:
        try:
            cents = _parse_int(raw_cents)
            if cents < 0:
                raise ValueError
            values["price_cents"] = cents
        except (TypeError, ValueError):
            errors.append("Price must be a non-negative amount.")
    elif price_present or not partial:
        try:
            values["price_cents"] = parse_price_to_cents(raw_price)
        except ValueError as exc:
            errors.append(str(exc))

    present, raw = _pick(fields, "currency")
    if present or not partial:
        currency = (_s(raw) or PAYMENT_CURRENCY).lower()
        if len(currency) != 3 or not currency.isalpha():
            errors.append("Currency must be a three-letter code.")
        else:
            values["currency"] = currency

    for key in _TEXT_FIELDS:
        present, raw = _pick(fields, key)
        if present:
            values[key] = _s(raw)

    start = values.get("start_at") or as_utc((current or {}).get("start_at"))
    end = values.get("end_at") or as_utc((current or {}).get("end_at"))
    if start and end and end <= start:
        errors.append("End time must be after start time.")

    if errors:
        raise ValidationError(errors)
    return values


def _row_to_event(row) -> Dict[str, Any]:
    return dict(row) if row is not None else None


def get_event(conn: Connection, event_id, include_archived: bool = False, for_update: bool = False) -> Dict[str, Any]:
    try:
        event_id = int(event_id)
    except (TypeError, ValueError):
        raise EventNotFound(event_id) from None
    stmt = select(events).where(events.c.id == event_id)
    if not include_archived:
        stmt = stmt.where(events.c.archived_at.is_(None))
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().first()
    if row is None:
        raise EventNotFound(event_id)
    return _row_to_event(row)


def list_events(conn: Connection, include_archived: bool = False) -> List[Dict[str, Any]]:
    stmt = select(events).order_by(events.c.start_at.asc(), events.c.id.asc())
    if not include_archived:
        stmt = stmt.where(events.c.archived_at.is_(None))
    return [dict(r) for r in conn.execute(stmt).mappings().all()]


def create_event(conn: Connection, fields: Dict[str, Any]) -> Dict[str, Any]:
    values = validate_event_fields(fields)
    now = datetime.now(timezone.utc)
    values.update(created_at=now, updated_at=now)
    result = conn.execute(events.insert().values(**values))
    event_id = result.inserted_primary_key[0]
    log.info("Created event %s (%s)", event_id, values["name"])
    return get_event(conn, event_id)


def update_event(conn: Connection, event_id, fields: Dict[str, Any]) -> Dict[str, Any]:
    current = get_event(conn, event_id, for_update=True)
    values = validate_event_fields(fields, current=current)
    if values:
        values["updated_at"] = datetime.now(timezone.utc)
        conn.execute(events.update().where(events.c.id == current["id"]).values(**values))
        log.info("Updated event %s fields=%s", current["id"], sorted(values))
    return get_event(conn, current["id"])


def delete_event(conn: Connection, event_id) -> Dict[str, Any]:
    """Archive an event and cancel its pending registrations that hold no payment intent.

    Paid registrations are left in place so an administrator can refund them.
    Pending rows with an intent are settled against the gateway by the workflow.
    """
    current = get_event(conn, event_id, for_update=True)
    now = datetime.now(timezone.utc)
    conn.execute(
        events.update().where(events.c.id == current["id"]).values(archived_at=now, updated_at=now)
    )
    cancelled = registration_store.cancel_pending_for_event(conn, current["id"])
    log.info("Archived event %s; cancelled %d pending registrations", current["id"], cancelled)
    return {"id": current["id"], "archived": True, "cancelled_registrations": cancelled}


def serialize_event(event: Dict[str, Any], seats_taken: Optional[int] = None) -> Dict[str, Any]:
    payload = {
        "id": event["id"],
        "name": event["name"],
        "description": event.get("description"),
        "startAt": isoformat(event.get("start_at")),
        "endAt": isoformat(event.get("end_at")),
        "capacity": event["capacity"],
        "priceCents": event["price_cents"],
        "price": str(cents_to_decimal(event["price_cents"])),
        "priceDisplay": format_price(event["price_cents"], event.get("currency")),
        "currency": event.get("currency"),
        "location": event.get("location"),
        "agenda": event.get("agenda"),
        "contact": event.get("contact"),
        "inclusions": event.get("inclusions"),
        "archived": event.get("archived_at") is not None,
    }
    if seats_taken is not None:
        payload["seatsRemaining"] = max(event["capacity"] - seats_taken, 0)
    return payload
