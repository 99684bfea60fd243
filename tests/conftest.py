"""
Shared test fixtures.

These replace real infrastructure with lightweight local alternatives:
- Shared database → SQLite (in memory via aiosqlite for the API, a file in
  tmp_path for worker/repository tests that open many connections and threads)
- HTTP server → httpx.AsyncClient with ASGI transport (no network)
- Wall clock → FakeClock where a test needs exact timestamps

This means tests:
- Run without any external service
- Are fully isolated (each test gets a fresh database)
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import sessionmaker

from api.dependencies import get_db
from api.main import create_app
from config.runtime import QueueConfig
from models.base import make_sync_engine
from models.schema import init_db
from repository.jobs import JobRepository
from repository.workers import WorkerRegistry

# SQLite in-memory database — created fresh for each test
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


# ── Async (API) ─────────────────────────────────────────────────


@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(init_db)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine):
    """Create a database session bound to the test engine."""
    factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(async_session):
    """
    Create a test HTTP client that talks directly to the FastAPI app.

    dependency_overrides tells FastAPI: "instead of using the real get_db,
    use this test version." ASGITransport means requests go directly to the
    app in-process, no HTTP server or network involved.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ── Sync (workers, repository, CLI) ─────────────────────────────


@pytest.fixture
def sync_engine(tmp_path):
    engine = make_sync_engine(f"sqlite:///{tmp_path / 'queue.sqlite'}")
    with engine.begin() as conn:
        init_db(conn)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine):
    return sessionmaker(sync_engine, expire_on_commit=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue_config():
    return QueueConfig(max_retries=3, backoff_base=2.0, timeout_ms=5000)


@pytest.fixture
def jobs(session_factory, queue_config):
    """JobRepository on the real clock."""
    return JobRepository(session_factory, config=queue_config)


@pytest.fixture
def registry(session_factory):
    return WorkerRegistry(session_factory, stale_after=30.0)
