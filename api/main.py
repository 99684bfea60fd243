"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create tables, seed config defaults)
3. Registers all routers (jobs, dlq, workers, config, health)
4. Runs shutdown logic (dispose the engine)

The API is a window onto the shared job store. It enqueues and inspects jobs
and signals workers, but never executes anything itself.

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
   or:   queuectl dashboard
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import settings
from models.base import async_engine
from models.schema import init_db
from repository.errors import (
    InvalidJobState,
    JobNotFound,
    QueueError,
    RepositoryFailure,
    ValidationError,
)
from api.routers import config, dlq, health, jobs, workers

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Runs on startup (before yield) and shutdown (after yield).

    Startup:
    - Creates all tables if they don't exist (safe to run multiple times)
    - Seeds max-retries / backoff-base / timeout-ms defaults

    Shutdown:
    - Disposes the DB engine (closes connection pool)
    """
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(init_db)
    logger.info("API ready")

    yield

    # ── Shutdown ────────────────────────────────────────────────
    await async_engine.dispose()
    logger.info("API shut down")


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="queuectl",
        description="Durable multi-process background job queue: jobs, dead-letter queue and workers",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(dlq.router)
    app.include_router(workers.router)
    app.include_router(config.router)

    @app.exception_handler(QueueError)
    async def queue_error_handler(request: Request, exc: QueueError) -> JSONResponse:
        return JSONResponse(status_code=_status_for(exc), content={"detail": str(exc)})

    return app


def _status_for(exc: QueueError) -> int:
    if isinstance(exc, JobNotFound):
        return 404
    if isinstance(exc, InvalidJobState):
        return 409
    if isinstance(exc, ValidationError):
        return 422
    if isinstance(exc, RepositoryFailure):
        logger.error(f"Job store error: {exc}")
        return 503
    return 400


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()
