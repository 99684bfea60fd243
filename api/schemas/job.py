"""
Pydantic schemas for the /jobs and /dlq endpoints.

These are NOT database models — they define the HTTP API contract:
- JobCreate: what the user sends when enqueueing a job (request body)
- JobResponse: what we send back for a single job
- JobListResponse: paginated list of jobs
- JobLogResponse: one captured output/event line
- QueueStatus: per-state counts plus the number of active workers

JobCreate is the same JobSubmission the CLI validates against, so a job the
API accepts is exactly a job the CLI would accept.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from repository.submission import JobSubmission


class JobCreate(JobSubmission):
    """Request body for POST /jobs/."""


class JobResponse(BaseModel):
    """Response body for a single job."""

    id: str
    command: str
    state: str
    attempts: int
    max_retries: int
    priority: int
    run_at: datetime
    created_at: datetime
    updated_at: datetime
    worker_id: Optional[str] = None
    last_error: Optional[str] = None

    # from_attributes=True tells Pydantic to read from SQLAlchemy model attributes
    model_config = {"from_attributes": True}


class JobListResponse(BaseModel):
    """Paginated list of jobs — returned by GET /jobs/."""

    jobs: list[JobResponse]
    total: int       # total matching jobs (ignoring pagination)
    page: int
    page_size: int


class JobLogResponse(BaseModel):
    id: int
    job_id: str
    type: str
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}


class QueueStatus(BaseModel):
    """Returned by GET /jobs/status."""

    jobs: dict[str, int]     # every job state, zero-filled
    active_workers: int      # not stopping, heartbeat fresh
