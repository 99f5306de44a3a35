"""Shared service configuration pulled from environment variables."""
import logging
import os

log = logging.getLogger(__name__)


def _get_env_setting(key: str, default: str = "") -> str:
    value = os.getenv(key)
    if value is None:
        return default.strip()
    return value.strip()


def _bool_env(name: str, default: str = "false") -> bool:
    value = os.getenv(name, default)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "y", "on"}


def _float_env(name: str, default: float) -> float:
    raw = _get_env_setting(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        log.warning("Invalid %s value %s; using %s", name, raw, default)
        return default


def _load_secret_file(path: str) -> str:
    if not path:
        return ""
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return handle.read().strip()
    except OSError:
        log.warning("Unable to read secret file %s", path)
        return ""


SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

BRAND_NAME = os.getenv("BRAND_NAME", "AI Bootcamp")
SITE_URL = _get_env_setting("SITE_URL", "http://localhost:8080").rstrip("/")

# Payment provider
STRIPE_SECRET_KEY = _get_env_setting("STRIPE_SECRET_KEY")
STRIPE_PUBLISHABLE_KEY = _get_env_setting("STRIPE_PUBLISHABLE_KEY")
STRIPE_WEBHOOK_SECRET = _get_env_setting("STRIPE_WEBHOOK_SECRET")
PAYMENT_CURRENCY = _get_env_setting("PAYMENT_CURRENCY", "usd").lower()
PAYMENT_TIMEOUT = _float_env("PAYMENT_TIMEOUT", 10.0)

# Email (SMTP)
EMAIL_BACKEND = _get_env_setting("EMAIL_BACKEND", "smtp").lower()
SMTP_HOST = _get_env_setting("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(_get_env_setting("SMTP_PORT", "465"))
SMTP_TIMEOUT = _float_env("SMTP_TIMEOUT", 10.0)
SMTP_USERNAME = _get_env_setting("SMTP_USERNAME")

_smtp_password = _get_env_setting("SMTP_PASSWORD")
if not _smtp_password:
    _smtp_password = _load_secret_file(_get_env_setting("SMTP_PASSWORD_FILE"))
SMTP_PASSWORD = _smtp_password

SMTP_FROM = _get_env_setting("SMTP_FROM", f"{BRAND_NAME} <no-reply@localhost>")
_smtp_starttls_default = "true" if SMTP_PORT not in (25, 2525, 465) else "false"
SMTP_STARTTLS = _bool_env("SMTP_STARTTLS", _smtp_starttls_default)
REG_NOTIFY_ENABLED = _bool_env("REG_NOTIFY_ENABLED", "true")
REG_NOTIFY_TO = _get_env_setting("REG_NOTIFY_TO")
CONTACT_TO = _get_env_setting("CONTACT_TO") or REG_NOTIFY_TO

# Registration workflow policy
ENFORCE_EVENT_CAPACITY = _bool_env("ENFORCE_EVENT_CAPACITY", "true")
PENDING_REGISTRATION_TTL_HOURS = int(_get_env_setting("PENDING_REGISTRATION_TTL_HOURS", "48"))

ADMIN_EMAILS = frozenset(
    e.strip().lower() for e in _get_env_setting("ADMIN_EMAILS").split(",") if e.strip()
)
