"""
Job endpoints.

POST /jobs/                → Enqueue a new job (persists as pending)
GET  /jobs/                → List jobs, optionally filtered by state, paginated
GET  /jobs/status          → Per-state counts + active worker count
GET  /jobs/{job_id}        → Get a single job by ID
GET  /jobs/{job_id}/logs   → Captured stdout/stderr/info/error lines for a job

The API layer is intentionally thin:
- Validate input (Pydantic does this automatically)
- Run the same statements the sync JobRepository runs, on an async session
- Return the response

It does NOT claim or execute jobs — that's what worker processes do.
"""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db
from api.schemas.job import (
    JobCreate,
    JobListResponse,
    JobLogResponse,
    JobResponse,
    QueueStatus,
)
from config.runtime import QueueConfig
from config.settings import settings
from models.base import utcnow
from models.config_entry import ConfigEntry
from models.enums import JobState
from models.job import Job
from repository.jobs import (
    build_job,
    counts_by_state,
    list_jobs_query,
    logs_query,
    state_counts_query,
)
from repository.errors import JobNotFound
from repository.workers import active_workers_query

router = APIRouter(prefix="/jobs", tags=["jobs"])


async def _id_taken(db: AsyncSession, job_id: str) -> bool:
    return await db.get(Job, job_id) is not None


async def _get_job_or_raise(db: AsyncSession, job_id: str) -> Job:
    job = await db.get(Job, job_id)
    if job is None:
        raise JobNotFound(job_id)
    return job


@router.post("/", response_model=JobResponse, status_code=201)
async def create_job(
    job_in: JobCreate,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """
    Enqueue a new job.

    The job is saved with state=pending and attempts=0. Any worker process
    polling the same store can claim it once its run_at has passed.
    max_retries falls back to the `max-retries` config value.
    """
    rows = (await db.execute(select(ConfigEntry))).scalars()
    config = QueueConfig.from_entries({row.key: row.value for row in rows})

    if job_in.id and await _id_taken(db, job_in.id):
        raise HTTPException(status_code=409, detail=f"Job id already exists: {job_in.id}")

    job = build_job(job_in, config.max_retries, utcnow())
    db.add(job)
    try:
        await db.commit()
    except IntegrityError:
        # Another request inserted the same id between the check and the commit
        await db.rollback()
        raise HTTPException(status_code=409, detail=f"Job id already exists: {job.id}")
    await db.refresh(job)
    return JobResponse.model_validate(job)


@router.get("/", response_model=JobListResponse)
async def list_jobs(
    state: Optional[JobState] = Query(None, description="Filter by job state"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=500, description="Jobs per page"),
    db: AsyncSession = Depends(get_db),
) -> JobListResponse:
    """
    List jobs, newest first.

    Two queries: one COUNT for `total`, one OFFSET/LIMIT for the page itself.
    """
    state_value = state.value if state else None

    count_query = select(func.count(Job.id))
    if state_value:
        count_query = count_query.where(Job.state == state_value)
    total = (await db.execute(count_query)).scalar() or 0

    offset = (page - 1) * page_size
    query = list_jobs_query(state_value).offset(offset).limit(page_size)
    jobs = (await db.execute(query)).scalars().all()

    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/status", response_model=QueueStatus)
async def get_status(db: AsyncSession = Depends(get_db)) -> QueueStatus:
    """Job counts for every state, and how many workers are alive and not stopping."""
    counts = counts_by_state((await db.execute(state_counts_query())).all())

    stale_before = utcnow() - timedelta(seconds=settings.WORKER_STALE_AFTER)
    active = (await db.execute(active_workers_query(stale_before))).scalar() or 0

    return QueueStatus(jobs=counts, active_workers=active)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: str,
    db: AsyncSession = Depends(get_db),
) -> JobResponse:
    """Get a single job by its id."""
    return JobResponse.model_validate(await _get_job_or_raise(db, job_id))


@router.get("/{job_id}/logs", response_model=list[JobLogResponse])
async def get_job_logs(
    job_id: str,
    db: AsyncSession = Depends(get_db),
) -> list[JobLogResponse]:
    """Captured output for a job, oldest first."""
    await _get_job_or_raise(db, job_id)
    logs = (await db.execute(logs_query(job_id))).scalars().all()
    return [JobLogResponse.model_validate(entry) for entry in logs]
