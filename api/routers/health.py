"""
Health check endpoint.

Checks that the shared job store is reachable. If this fails, workers are
failing too: they read and write the same database.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)) -> dict:
    """Check that the job store answers a trivial query."""
    await db.execute(text("SELECT 1"))
    return {"status": "healthy", "database": "ok"}
