"""Flask application assembly.

Collaborators (engine, payment gateway, notifier, workflow) are built once
here and shared through ``app.config``; nothing else constructs them.
"""

import logging
from datetime import timedelta
from typing import Any, Optional

from flask import Flask, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import settings
from db import create_db_engine, init_schema
from errors import register_error_handlers
from notifications import SmtpNotifier
from payments import StripeGateway
from workflow import RegistrationWorkflow

log = logging.getLogger(__name__)


def create_app(
    engine=None,
    gateway=None,
    notifier=None,
    enforce_capacity: Optional[bool] = None,
    **config: Any,
) -> Flask:
    app = Flask(__name__)
    app.secret_key = settings.SECRET_KEY
    app.config.update(
        SESSION_COOKIE_SECURE=True,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
        PERMANENT_SESSION_LIFETIME=timedelta(days=14),
        STRIPE_PUBLISHABLE_KEY=settings.STRIPE_PUBLISHABLE_KEY,
    )
    app.config.update(config)

    if engine is None:
        engine = create_db_engine()
    init_schema(engine)

    if gateway is None:
        gateway = StripeGateway(
            settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            timeout=settings.PAYMENT_TIMEOUT,
        )
    if notifier is None:
        notifier = SmtpNotifier()
    if enforce_capacity is None:
        enforce_capacity = settings.ENFORCE_EVENT_CAPACITY

    app.config["DB_ENGINE"] = engine
    app.config["PAYMENT_GATEWAY"] = gateway
    app.config["NOTIFIER"] = notifier
    app.config["WORKFLOW"] = RegistrationWorkflow(engine, gateway, notifier, enforce_capacity=enforce_capacity)

    register_error_handlers(app)

    from api import api_bp
    from auth import auth_bp
    from admin import admin_bp
    app.register_blueprint(api_bp, url_prefix="/api")
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    @app.get("/healthz")
    def healthz():
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            log.exception("Health check failed")
            return jsonify({"ok": False, "database": "unavailable"}), 503
        return jsonify({"ok": True, "database": "ok"})

    return app
