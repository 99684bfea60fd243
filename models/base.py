"""
SQLAlchemy engine and session factories.

Two separate engines exist because:
- FastAPI is async → needs aiosqlite/asyncpg + async sessions
- Worker processes and the CLI are sync → need pysqlite/psycopg2 + sync sessions

Both point at the same durable store. Workers in different processes never
share memory; everything they agree on goes through these tables.

SQLite is the default store. It gets WAL journaling so readers never block the
single writer, and a busy timeout so concurrent workers wait for the write lock
instead of failing immediately.
"""

import os
from datetime import datetime, timezone

from sqlalchemy import DateTime, create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import TypeDecorator

from config.settings import settings


class Base(DeclarativeBase):
    """Base class for all ORM models. SQLAlchemy uses this to track table metadata."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime column.

    SQLite has no timezone support and hands back naive values, PostgreSQL
    hands back values in the session time zone. This normalizes both so the
    rest of the code can compare timestamps without caring about the backend.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


def _configure_sqlite(engine: Engine, url: str) -> None:
    """Create the database directory on demand and set per-connection pragmas."""
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return

    database = parsed.database
    busy_timeout_ms = int(settings.SQLITE_BUSY_TIMEOUT * 1000)

    @event.listens_for(engine, "do_connect")
    def _ensure_directory(dialect, conn_rec, cargs, cparams):
        if database and database != ":memory:" and not database.startswith("file:"):
            directory = os.path.dirname(os.path.abspath(database))
            os.makedirs(directory, exist_ok=True)

    @event.listens_for(engine, "connect")
    def _set_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        if database and database != ":memory:":
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_timeout_ms}")
        cursor.close()


def make_sync_engine(url: str) -> Engine:
    engine = create_engine(url, echo=False)
    _configure_sqlite(engine, url)
    return engine


def make_async_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(url, echo=False)
    _configure_sqlite(engine.sync_engine, url)
    return engine


# ── Async engine (for FastAPI) ──────────────────────────────────
async_engine = make_async_engine(settings.async_database_url)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False)

# ── Sync engine (for workers and the CLI) ───────────────────────
sync_engine = make_sync_engine(settings.sync_database_url)
SyncSessionLocal = sessionmaker(sync_engine, expire_on_commit=False)
