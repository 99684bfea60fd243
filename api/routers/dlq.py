"""
Dead-letter queue endpoints.

GET  /dlq/                  → Jobs that exhausted their retries (state=dead)
POST /dlq/{job_id}/requeue  → Give a dead job a fresh start: pending, attempts=0

Requeue is a single conditional UPDATE (WHERE state='dead'), so a job that
is not dead is never touched, even if two people click at the same time.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.job import JobResponse
from models.base import utcnow
from models.enums import JobState
from models.job import Job
from repository.errors import InvalidJobState, JobNotFound
from repository.jobs import dlq_query, requeue_statement

router = APIRouter(prefix="/dlq", tags=["dlq"])


@router.get("/", response_model=list[JobResponse])
async def list_dead_jobs(db: AsyncSession = Depends(get_db)) -> list[JobResponse]:
    """Dead jobs, most recently failed first."""
    jobs = (await db.execute(dlq_query())).scalars().all()
    return [JobResponse.model_validate(j) for j in jobs]


@router.post("/{job_id}/requeue", response_model=JobResponse)
async def requeue_dead_job(
    job_id: str,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """
    Move one job from the DLQ back to pending.

    Raises JobNotFound (404) for an unknown id and InvalidJobState (409) when
    the job is not dead; in both cases nothing is written.
    """
    result = await db.execute(requeue_statement(job_id, utcnow()))
    if result.rowcount != 1:
        await db.rollback()
        job = await db.get(Job, job_id)
        if job is None:
            raise JobNotFound(job_id)
        raise InvalidJobState(job_id, job.state, JobState.DEAD.value)

    await db.commit()
    job = await db.get(Job, job_id, populate_existing=True)
    return JobResponse.model_validate(job)
