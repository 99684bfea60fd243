"""
Claim & scheduling loop — one instance per worker process.

The loop is an explicit state machine with a single exit point:

    REGISTERING ──> POLLING <──────────────┐
                      │  │                 │
          job claimed │  │ nothing eligible│
                      v  └── wait ─────────┘
                  EXECUTING ──> POLLING

    POLLING ──(stop requested | queue empty)──> DRAINING ──> exit

- REGISTERING: recover jobs abandoned by dead workers, insert our worker row,
  start the heartbeat thread
- POLLING: honor stop requests, otherwise claim the next eligible job; when
  nothing is eligible either drain (queue empty) or sleep until the nearest
  run_at (at least WORKER_MIN_IDLE_WAIT)
- EXECUTING: run the job synchronously through JobExecutor
- DRAINING: stop the heartbeat, delete our worker row, return

Stop requests are only checked between jobs. A job that has started always
runs to completion (or to its timeout); shutdown is never preemptive. A worker
whose row was evicted as stale treats the missing row as a stop request.
"""

import enum
import logging
import os
import threading
import uuid
from datetime import datetime
from typing import Callable, Optional

from models.base import utcnow
from models.enums import WorkerStatus
from models.job import Job
from repository.errors import RepositoryFailure
from repository.jobs import JobRepository
from repository.workers import WorkerRegistry
from worker.executor import JobExecutor
from worker.heartbeat import Heartbeat

logger = logging.getLogger(__name__)


class WorkerState(str, enum.Enum):
    REGISTERING = "registering"
    POLLING = "polling"
    EXECUTING = "executing"
    DRAINING = "draining"


def idle_delay(
    next_run_at: Optional[datetime],
    now: datetime,
    minimum: float = 0.5,
    default: float = 1.0,
    maximum: Optional[float] = None,
) -> float:
    """
    Seconds to sleep when nothing is eligible.

    Until the nearest pending run_at, never less than `minimum`; `default`
    when there is no pending run_at to aim for. `maximum` bounds the sleep so
    stop requests and newly enqueued jobs are noticed in reasonable time.
    """
    if next_run_at is None:
        delay = default
    else:
        delay = max(minimum, (next_run_at - now).total_seconds())
    if maximum is not None:
        delay = min(delay, maximum)
    return delay


class QueueWorker:

    def __init__(
        self,
        jobs: JobRepository,
        registry: WorkerRegistry,
        executor: JobExecutor,
        worker_id: Optional[str] = None,
        heartbeat_interval: float = 5.0,
        min_idle_wait: float = 0.5,
        default_idle_wait: float = 1.0,
        max_idle_wait: Optional[float] = 5.0,
        exit_when_empty: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.worker_id = worker_id or str(uuid.uuid4())
        self.state = WorkerState.REGISTERING
        self.jobs_processed = 0

        self._jobs = jobs
        self._registry = registry
        self._executor = executor
        self._min_idle_wait = min_idle_wait
        self._default_idle_wait = default_idle_wait
        self._max_idle_wait = max_idle_wait
        self._exit_when_empty = exit_when_empty
        self._clock = clock

        self._status = WorkerStatus.IDLE
        self._current_job: Optional[Job] = None
        self._shutdown = threading.Event()
        self._heartbeat = Heartbeat(
            registry,
            self.worker_id,
            heartbeat_interval,
            status=lambda: self._status,
            on_lost=self.request_shutdown,
        )

    @property
    def status(self) -> WorkerStatus:
        return self._status

    def request_shutdown(self) -> None:
        """
        Local stop (SIGINT/SIGTERM). Same semantics as a stop request in the
        store: finish the current job, then drain. Also cuts an idle wait short.
        """
        self._shutdown.set()

    def run(self) -> int:
        """
        Run the state machine until it drains.

        Returns:
            process exit code: 0 after a normal drain, 1 when the worker could
            not register itself
        """
        logger.info(f"Worker {self.worker_id} started (PID {os.getpid()})")
        if not self._register():
            return 1

        try:
            while self.state != WorkerState.DRAINING:
                try:
                    self.state = self._step()
                except Exception as e:
                    logger.error(f"Worker loop error: {e}", exc_info=True)
                    self._current_job = None
                    self.state = WorkerState.POLLING
                    self._wait(self._default_idle_wait)
        finally:
            self._drain()
        return 0

    def _step(self) -> WorkerState:
        if self.state == WorkerState.POLLING:
            return self._poll()
        if self.state == WorkerState.EXECUTING:
            return self._execute()
        raise RuntimeError(f"Unexpected worker state: {self.state}")

    # ── REGISTERING ─────────────────────────────────────────────

    def _register(self) -> bool:
        self._recover_orphaned_jobs()
        try:
            self._registry.register(self.worker_id)
        except RepositoryFailure as e:
            logger.error(f"Worker {self.worker_id} could not register: {e}")
            return False

        self._heartbeat.start()
        self.state = WorkerState.POLLING
        return True

    def _recover_orphaned_jobs(self) -> None:
        """Best effort: a failure here is logged and the worker starts anyway."""
        try:
            stale_before = self._registry.stale_before(self._clock())
            self._registry.evict_stale(self._clock())
            self._jobs.recover_orphaned(stale_before)
        except RepositoryFailure as e:
            logger.error(f"Startup cleanup failed: {e}")

    # ── POLLING ─────────────────────────────────────────────────

    def _stop_requested(self) -> bool:
        if self._shutdown.is_set():
            return True
        return self._registry.is_stop_requested(self.worker_id)

    def _poll(self) -> WorkerState:
        try:
            if self._stop_requested():
                logger.info(f"Worker {self.worker_id} received stop request")
                return WorkerState.DRAINING

            job = self._jobs.claim_next(self.worker_id, self._clock())
            if job is not None:
                self._current_job = job
                return WorkerState.EXECUTING

            if self._exit_when_empty and self._jobs.pending_count() == 0:
                logger.info("No more jobs left. Worker exiting.")
                return WorkerState.DRAINING

            delay = idle_delay(
                self._jobs.next_run_at(),
                self._clock(),
                minimum=self._min_idle_wait,
                default=self._default_idle_wait,
                maximum=self._max_idle_wait,
            )
        except RepositoryFailure as e:
            logger.error(f"Poll failed, retrying: {e}")
            delay = self._default_idle_wait

        self._wait(delay)
        return WorkerState.POLLING

    def _wait(self, seconds: float) -> None:
        self._shutdown.wait(seconds)

    # ── EXECUTING ───────────────────────────────────────────────

    def _execute(self) -> WorkerState:
        job, self._current_job = self._current_job, None
        self._set_status(WorkerStatus.RUNNING)
        try:
            self._executor.execute(job, self.worker_id)
            self.jobs_processed += 1
        except RepositoryFailure as e:
            logger.error(f"Could not record outcome for job {job.id}: {e}")
        finally:
            self._set_status(WorkerStatus.IDLE)
        return WorkerState.POLLING

    def _set_status(self, status: WorkerStatus) -> None:
        self._status = status
        self._heartbeat.beat()

    # ── DRAINING ────────────────────────────────────────────────

    def _drain(self) -> None:
        self.state = WorkerState.DRAINING
        self._heartbeat.stop()
        try:
            self._registry.deregister(self.worker_id)
        except RepositoryFailure as e:
            logger.error(f"Worker {self.worker_id} could not deregister: {e}")
        logger.info(
            f"Worker {self.worker_id} stopped gracefully after "
            f"{self.jobs_processed} job(s)"
        )
