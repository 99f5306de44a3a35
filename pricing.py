# pricing.py
# Money and date helpers. Amounts are integer minor units (cents) everywhere
# past the request boundary.
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

_SYMBOLS = {"EUR": "€", "USD": "$", "GBP": "£", "CAD": "C$", "AUD": "A$"}


def currency_symbol(currency: str | None) -> str:
    if not currency:
        return ""
    return _SYMBOLS.get(currency.upper(), currency.upper())


def parse_price_to_cents(value: Any) -> int:
    """Convert a decimal price ("199.00", 199, Decimal) to integer cents.

    Raises ValueError for negatives, non-numbers, and sub-cent precision.
    """
    if value is None or isinstance(value, bool):
        raise ValueError("Price is required.")
    if isinstance(value, float):
        value = repr(value)
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValueError("Price must be a number.") from None
    if not amount.is_finite():
        raise ValueError("Price must be a number.")
    if amount < 0:
        raise ValueError("Price cannot be negative.")
    cents = amount * 100
    if cents != cents.to_integral_value():
        raise ValueError("Price cannot have more than two decimal places.")
    return int(cents)


def cents_to_decimal(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(Decimal("0.01"))


def format_price(cents: int | None, currency: str | None) -> str:
    amount = cents_to_decimal(cents)
    currency_code = (currency or "").strip().upper() or "USD"
    symbol = _SYMBOLS.get(currency_code)
    if symbol:
        return f"{symbol}{amount:,.2f}"
    return f"{currency_code} {amount:,.2f}"


def parse_datetime(raw: Any) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if isinstance(raw, datetime):
        dt = raw
    else:
        if not raw or not str(raw).strip():
            raise ValueError("Date is required.")
        candidate = str(raw).strip()
        if candidate.endswith("Z"):
            candidate = candidate[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(candidate)
        except ValueError:
            raise ValueError(f"Invalid date: {raw!r}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value else None


def format_event_date(value: datetime | None) -> str:
    value = as_utc(value)
    if not value:
        return ""
    return value.strftime("%b %d, %Y %H:%M UTC")
