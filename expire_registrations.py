#!/usr/bin/env python3
"""Cancel pending registrations that were never paid.

Meant to run from cron; the age threshold defaults to PENDING_REGISTRATION_TTL_HOURS.
Rows that already hold a payment intent are checked with Stripe first, so a
payment that went through late is confirmed rather than cancelled.
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timedelta, timezone

import registrations as registration_store
import settings
from db import create_db_engine, init_schema
from notifications import SmtpNotifier
from payments import StripeGateway
from workflow import RegistrationWorkflow


def _prepare_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--max-age-hours",
        type=int,
        default=settings.PENDING_REGISTRATION_TTL_HOURS,
        help="Cancel pending registrations older than this many hours.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Only report how many registrations are old enough to expire.",
    )
    return parser.parse_args(argv)


def main(argv=None, engine=None, gateway=None, notifier=None) -> int:
    logging.basicConfig(level=settings.LOG_LEVEL)
    args = _prepare_args(argv)
    if args.max_age_hours < 1:
        print("--max-age-hours must be at least 1")
        return 2

    engine = engine or create_db_engine()
    init_schema(engine)

    if args.dry_run:
        cutoff = datetime.now(timezone.utc) - timedelta(hours=args.max_age_hours)
        with engine.connect() as conn:
            stale = registration_store.count_expirable(conn, cutoff)
        print(f"{stale} pending registrations would expire")
        return 0

    if gateway is None:
        gateway = StripeGateway(
            settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout=settings.PAYMENT_TIMEOUT,
        )
    workflow = RegistrationWorkflow(engine, gateway, notifier or SmtpNotifier())
    expired = workflow.expire_stale_registrations(args.max_age_hours)
    print(f"Expired {expired} pending registrations")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
