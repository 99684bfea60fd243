"""
Centralized configuration using pydantic-settings.

How it works:
- Reads environment variables automatically (e.g., DATABASE_URL env var → Settings.DATABASE_URL)
- Falls back to defaults defined here if env vars are not set
- Can also read from a .env file in the project root

These are process-level settings. The queue tunables (max-retries, backoff-base,
timeout-ms) can also be overridden at runtime through the `config` table, see
config/runtime.py. Values here are only the fallbacks for that table.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Durable store ───────────────────────────────────────────
    # Every worker process, the CLI and the API must point at the same store.
    DATABASE_URL: str = "sqlite:///.queue/queue.sqlite"
    SQLITE_BUSY_TIMEOUT: float = 30.0  # seconds a writer waits on a locked db

    # ── Retry / execution defaults ──────────────────────────────
    MAX_RETRIES: int = 3
    RETRY_BACKOFF_BASE: float = 2.0    # run_at = now + base ** attempts
    JOB_TIMEOUT_MS: int = 60000

    # ── Worker ──────────────────────────────────────────────────
    WORKER_HEARTBEAT_INTERVAL: float = 5.0
    WORKER_STALE_AFTER: float = 30.0       # heartbeat age that marks a worker dead
    WORKER_MIN_IDLE_WAIT: float = 0.5
    WORKER_DEFAULT_IDLE_WAIT: float = 1.0
    WORKER_MAX_IDLE_WAIT: float = 5.0
    WORKER_EXIT_WHEN_EMPTY: bool = True

    # ── App ─────────────────────────────────────────────────────
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    @property
    def sync_database_url(self) -> str:
        """Sync connection string for workers and the CLI (pysqlite / psycopg2)."""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            return "postgresql+psycopg2://" + url[len("postgresql://"):]
        return url

    @property
    def async_database_url(self) -> str:
        """Async connection string for FastAPI (aiosqlite / asyncpg)."""
        url = self.DATABASE_URL
        for prefix, async_prefix in (
            ("sqlite://", "sqlite+aiosqlite://"),
            ("postgresql://", "postgresql+asyncpg://"),
            ("postgresql+psycopg2://", "postgresql+asyncpg://"),
        ):
            if url.startswith(prefix):
                return async_prefix + url[len(prefix):]
        return url

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# Singleton — import this everywhere
settings = Settings()
