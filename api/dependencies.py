"""
Request-scoped dependencies for the API routers.

Every endpoint that touches the job store declares
`db: AsyncSession = Depends(get_db)` and gets one session per request. Tests
replace get_db through app.dependency_overrides to point at their own engine.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from models.base import AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One async session per request, closed when the response is sent."""
    async with AsyncSessionLocal() as session:
        yield session
