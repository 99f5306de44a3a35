"""Service error taxonomy and the Flask handlers that render it as JSON."""

from __future__ import annotations

import logging
from typing import List, Optional

from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

log = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


class ValidationError(ServiceError):
    """Bad input; the caller can correct it."""

    status_code = 400
    code = "validation_error"

    def __init__(self, errors, code: Optional[str] = None):
        if isinstance(errors, str):
            errors = [errors]
        self.errors: List[str] = list(errors)
        super().__init__("; ".join(self.errors), code)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        payload["errors"] = self.errors
        return payload


class Unauthorized(ServiceError):
    status_code = 401
    code = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str = "Administrator access required."):
        super().__init__(message)


class NotFoundError(ServiceError):
    status_code = 404
    code = "not_found"


class EventNotFound(NotFoundError):
    def __init__(self, event_id):
        super().__init__("Event not found.")
        self.event_id = event_id


class RegistrationNotFound(NotFoundError):
    def __init__(self, registration_id):
        super().__init__("Registration not found.")
        self.registration_id = registration_id


class UserNotFound(NotFoundError):
    def __init__(self, user_id):
        super().__init__("User not found.")
        self.user_id = user_id


class StateConflict(ServiceError):
    """A workflow transition that the current state does not allow."""

    status_code = 409
    code = "state_conflict"


class GatewayUnavailable(ServiceError):
    """The payment processor failed or declined; safe to retry."""

    status_code = 502
    code = "gateway_unavailable"

    def __init__(self, message: str = "Payment provider unavailable.", decline_reason: Optional[str] = None):
        super().__init__(message)
        self.decline_reason = decline_reason

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.decline_reason:
            payload["decline_reason"] = self.decline_reason
        return payload


class NotificationError(ServiceError):
    status_code = 503
    code = "notification_failed"


def register_error_handlers(app) -> None:
    @app.errorhandler(ServiceError)
    def _service_error(exc: ServiceError):
        if exc.status_code >= 500:
            log.warning("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_payload()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def _database_error(exc: SQLAlchemyError):
        log.exception("Database operation failed: %s", exc)
        return jsonify({"ok": False, "error": "internal_error", "message": "Database error."}), 500
