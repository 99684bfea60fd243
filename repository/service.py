"""
QueueService — the operations the CLI (and anything else outside the worker
loop) is allowed to call.

It is a thin facade over JobRepository and WorkerRegistry; it exists so that
collaborators depend on one small surface instead of reaching into tables.
"""

from typing import Optional

from config.settings import settings
from models.base import SyncSessionLocal
from models.job import Job, JobLog
from models.worker import Worker
from repository.jobs import JobRepository
from repository.workers import WorkerRegistry


class QueueService:

    def __init__(self, jobs: JobRepository, workers: WorkerRegistry):
        self.jobs = jobs
        self.workers = workers

    @classmethod
    def from_session_factory(cls, db_session_factory=SyncSessionLocal) -> "QueueService":
        return cls(
            JobRepository(db_session_factory),
            WorkerRegistry(db_session_factory, stale_after=settings.WORKER_STALE_AFTER),
        )

    def enqueue(self, payload) -> str:
        return self.jobs.enqueue(payload)

    def list_jobs(self, state: Optional[str] = None) -> list[Job]:
        return self.jobs.list_jobs(state)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.jobs.get_job(job_id)

    def get_logs(self, job_id: str) -> list[JobLog]:
        return self.jobs.get_logs(job_id)

    def get_status(self) -> dict:
        return {
            "jobs": self.jobs.count_by_state(),
            "active_workers": self.workers.active_count(),
        }

    def dlq_list(self) -> list[Job]:
        return self.jobs.dlq_list()

    def dlq_requeue(self, job_id: str) -> Job:
        return self.jobs.dlq_requeue(job_id)

    def request_stop_all_workers(self) -> int:
        return self.workers.request_stop_all()

    def list_workers(self) -> list[Worker]:
        return self.workers.list_workers()
