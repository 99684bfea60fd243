"""
Worker endpoints.

GET  /workers/      → Registered worker processes with their last heartbeat
POST /workers/stop  → Ask every worker to exit after its current job
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.worker import StopResponse, WorkerResponse
from repository.workers import list_workers_query, stop_all_statement

router = APIRouter(prefix="/workers", tags=["workers"])


@router.get("/", response_model=list[WorkerResponse])
async def list_workers(db: AsyncSession = Depends(get_db)) -> list[WorkerResponse]:
    workers = (await db.execute(list_workers_query())).scalars().all()
    return [WorkerResponse.model_validate(w) for w in workers]


@router.post("/stop", response_model=StopResponse)
async def stop_workers(db: AsyncSession = Depends(get_db)) -> StopResponse:
    """
    Set stop_requested on every worker that hasn't been asked yet.

    Workers check the flag between jobs, so this never interrupts a running
    command. Each worker removes its own row once it has drained.
    """
    signaled = (await db.execute(stop_all_statement())).rowcount
    await db.commit()
    return StopResponse(signaled=signaled)
