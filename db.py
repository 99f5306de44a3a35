# db.py
# Engine construction (DSN-first, SQLite fallback) and the table definitions
# shared by every store module.

import logging
import os

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
)
from sqlalchemy.engine import URL, Engine

log = logging.getLogger(__name__)

_SQLITE_FALLBACK_URL = "sqlite:///local.db"

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", String(255), nullable=False),
    Column("display_name", String(255)),
    Column("is_admin", Boolean, nullable=False, default=False),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

events = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("start_at", DateTime(timezone=True), nullable=False),
    Column("end_at", DateTime(timezone=True), nullable=False),
    Column("capacity", Integer, nullable=False),
    Column("price_cents", Integer, nullable=False),
    Column("currency", String(3), nullable=False),
    Column("location", String(255)),
    Column("agenda", Text),
    Column("contact", Text),
    Column("inclusions", Text),
    Column("archived_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)

registrations = Table(
    "registrations",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("event_id", Integer, ForeignKey("events.id"), nullable=False, index=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, index=True),
    Column("status", String(20), nullable=False, index=True),
    Column("payment_intent_id", String(255), index=True),
    Column("amount_cents", Integer),
    Column("currency", String(3)),
    Column("payment_error", Text),
    Column("email_sent", Boolean, nullable=False, default=False),
    Column("paid_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)


def _is_dsn(s: str) -> bool:
    if not s:
        return False
    s = s.strip().lower()
    return s.startswith("postgresql://") or s.startswith("postgresql+psycopg2://") or s.startswith("postgresql+pg8000://")


def sqlalchemy_url():
    # 1) Full DSN via DATABASE_URL (Supabase hands out one of these)
    db_url = os.getenv("DATABASE_URL")
    if db_url:
        return db_url

    # 2) Full DSN via INSTANCE_CONNECTION_NAME
    inst = os.getenv("INSTANCE_CONNECTION_NAME", "")
    if _is_dsn(inst):
        return inst

    # 3) Standard TCP params
    user = os.getenv("DB_USER")
    pwd  = os.getenv("DB_PASS") or os.getenv("DB_PASSWORD")
    name = os.getenv("DB_NAME")
    host = os.getenv("DB_HOST")
    port = os.getenv("DB_PORT")
    if host and user and pwd and name:
        return URL.create(
            drivername="postgresql+psycopg2",
            username=user,
            password=pwd,
            host=host,
            port=int(port) if port else None,
            database=name,
        )

    # 4) Cloud SQL unix socket style (project:region:instance)
    if inst and user and pwd and name:
        return URL.create(
            drivername="postgresql+psycopg2",
            username=user,
            password=pwd,
            host=None,
            database=name,
            query={"host": f"/cloudsql/{inst}"},
        )

    # 5) Fallback: local SQLite
    return _SQLITE_FALLBACK_URL


def create_db_engine(url=None) -> Engine:
    url = url or sqlalchemy_url()
    if str(url).startswith("sqlite"):
        return create_engine(url, future=True)
    return create_engine(url, pool_pre_ping=True, pool_recycle=1800, future=True)


def init_schema(engine: Engine) -> None:
    """Create any missing tables."""
    metadata.create_all(engine, checkfirst=True)
    log.info("Database schema ready (dialect=%s)", engine.dialect.name)
