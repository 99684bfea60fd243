"""
Runtime configuration stored in the `config` table.

`queuectl config set max-retries 5` writes a row here; workers read the table
once at construction and freeze it into a QueueConfig snapshot, so one worker
never changes its retry policy halfway through a job. Settings from
config/settings.py are the fallbacks for missing or unparsable rows.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from config.settings import Settings, settings
from models.config_entry import ConfigEntry

logger = logging.getLogger(__name__)

MAX_RETRIES_KEY = "max-retries"
BACKOFF_BASE_KEY = "backoff-base"
TIMEOUT_MS_KEY = "timeout-ms"

_KEY_ALIASES = {
    "max_retries": MAX_RETRIES_KEY,
    "backoff_base": BACKOFF_BASE_KEY,
    "timeout_ms": TIMEOUT_MS_KEY,
}


def normalize_key(key: str) -> str:
    """Accept both `max_retries` and `max-retries` spellings."""
    key = str(key).strip()
    return _KEY_ALIASES.get(key, key)


def default_entries(source: Settings = settings) -> dict[str, str]:
    return {
        MAX_RETRIES_KEY: str(source.MAX_RETRIES),
        BACKOFF_BASE_KEY: _format_number(source.RETRY_BACKOFF_BASE),
        TIMEOUT_MS_KEY: str(source.JOB_TIMEOUT_MS),
    }


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def upsert_statement(dialect_name: str, key: str, value: str, overwrite: bool = True):
    """
    INSERT ... ON CONFLICT for the config table.

    overwrite=False is used when seeding defaults: several processes may start
    at once and the first writer wins.
    """
    insert = pg_insert if dialect_name == "postgresql" else sqlite_insert
    stmt = insert(ConfigEntry).values(key=key, value=value)
    if overwrite:
        return stmt.on_conflict_do_update(
            index_elements=[ConfigEntry.key], set_={"value": stmt.excluded.value}
        )
    return stmt.on_conflict_do_nothing(index_elements=[ConfigEntry.key])


class ConfigStore:
    """Read/write access to the config table using sync sessions."""

    def __init__(self, db_session_factory):
        self._db_session_factory = db_session_factory

    def get(self, key: str) -> Optional[str]:
        with self._db_session_factory() as session:
            row = session.get(ConfigEntry, normalize_key(key))
            return row.value if row else None

    def all(self) -> dict[str, str]:
        with self._db_session_factory() as session:
            rows = session.execute(select(ConfigEntry).order_by(ConfigEntry.key)).scalars()
            return {row.key: row.value for row in rows}

    def set(self, key: str, value) -> str:
        normalized = normalize_key(key)
        if not normalized:
            raise ValueError("Config key must not be empty")
        with self._db_session_factory() as session:
            dialect = session.get_bind().dialect.name
            session.execute(upsert_statement(dialect, normalized, str(value)))
            session.commit()
        logger.info(f"Config {normalized} set to {value}")
        return normalized


def _parse(raw: Optional[str], cast, fallback, key: str):
    if raw is None:
        return fallback
    try:
        return cast(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring unparsable config value {key}={raw!r}, using {fallback}")
        return fallback


@dataclass(frozen=True)
class QueueConfig:
    """
    Immutable snapshot of the queue tunables.

    Passed into the worker loop, executor and retry policy at construction
    instead of being looked up on every decision.
    """
    max_retries: int = 3
    backoff_base: float = 2.0
    timeout_ms: int = 60000

    @classmethod
    def from_settings(cls, source: Settings = settings) -> "QueueConfig":
        return cls(
            max_retries=source.MAX_RETRIES,
            backoff_base=source.RETRY_BACKOFF_BASE,
            timeout_ms=source.JOB_TIMEOUT_MS,
        )

    @classmethod
    def from_entries(cls, entries: dict[str, str], source: Settings = settings) -> "QueueConfig":
        defaults = cls.from_settings(source)
        return cls(
            max_retries=_parse(entries.get(MAX_RETRIES_KEY), int, defaults.max_retries, MAX_RETRIES_KEY),
            backoff_base=_parse(entries.get(BACKOFF_BASE_KEY), float, defaults.backoff_base, BACKOFF_BASE_KEY),
            timeout_ms=_parse(entries.get(TIMEOUT_MS_KEY), int, defaults.timeout_ms, TIMEOUT_MS_KEY),
        )

    @classmethod
    def load(cls, session: Session, source: Settings = settings) -> "QueueConfig":
        rows = session.execute(select(ConfigEntry)).scalars()
        return cls.from_entries({row.key: row.value for row in rows}, source)
