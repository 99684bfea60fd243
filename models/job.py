"""
Job and JobLog ORM models — map to the "jobs" and "job_logs" tables.

Key design decisions:
- String primary key: callers may supply their own id, otherwise a UUID4 string
- state + worker_id together are the claim: a job is owned by a worker only
  while state == 'processing' and worker_id names that worker
- attempts is bumped by the claim UPDATE itself, never by the outcome write
- run_at doubles as the retry backoff: a job whose run_at is in the future is
  invisible to claiming
- (state, run_at) and (priority, created_at) indexes back the claim query
"""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, UTCDateTime, utcnow
from models.enums import JobState


def new_job_id() -> str:
    return str(uuid.uuid4())


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("idx_jobs_state_run_at", "state", "run_at"),
        Index("idx_jobs_priority_created", "priority", "created_at"),
    )

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[str] = mapped_column(String(255), primary_key=True, default=new_job_id)
    command: Mapped[str] = mapped_column(Text, nullable=False)

    # ── Lifecycle ───────────────────────────────────────────────
    state: Mapped[str] = mapped_column(
        String(20), default=JobState.PENDING.value, nullable=False, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    worker_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # ── Scheduling ──────────────────────────────────────────────
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    run_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    # ── Timestamps ──────────────────────────────────────────────
    # Set in Python rather than by the server so creation order has
    # sub-second resolution on SQLite too (it breaks priority ties).
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Job {self.id} [{self.state}] attempts={self.attempts}/{self.max_retries}>"


class JobLog(Base):
    """One captured output chunk or event line. Rows are only ever inserted."""

    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("jobs.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<JobLog {self.job_id} ({self.type})>"
