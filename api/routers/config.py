"""
Read-only view of the runtime config table.

Values are changed with `queuectl config set`; workers pick them up the next
time they start.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from models.config_entry import ConfigEntry

router = APIRouter(prefix="/config", tags=["config"])


@router.get("/")
async def get_config(db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    rows = (await db.execute(select(ConfigEntry).order_by(ConfigEntry.key))).scalars()
    return {row.key: row.value for row in rows}
