"""
Job repository — every read and write of the jobs and job_logs tables.

The claim protocol lives here. There is no lock service and no lease: two
workers that pick the same candidate both send

    UPDATE jobs SET state='processing', worker_id=:me, attempts=attempts+1
    WHERE id=:id AND state='pending'

and the store serializes them. Exactly one sees rowcount == 1; the other gets
rowcount == 0 (a ClaimRace) and simply selects again.

    pending ──claim──> processing ──outcome──> completed
       ^                    │
       │   retry (run_at    ├──outcome──> pending (run_at = now + base^attempts)
       │   in the future)   │
       └────────────────────┴──outcome──> dead ──dlq_requeue──> pending

The statement builders at the top of the module are plain SQLAlchemy
constructs, so the async API routers execute the same queries with an
AsyncSession that the sync JobRepository executes here.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.runtime import QueueConfig
from models.base import utcnow
from models.enums import JobState, LogType
from models.job import Job, JobLog, new_job_id
from models.worker import Worker
from repository.errors import (
    ClaimRace,
    InvalidJobState,
    JobNotFound,
    RepositoryFailure,
    ValidationError,
)
from repository.submission import JobSubmission, parse_submission
from worker.retry import Outcome

logger = logging.getLogger(__name__)


# ── Statement builders (shared with the async API) ──────────────


def next_eligible_query(now: datetime):
    """Id of the highest-priority, oldest pending job whose run_at has passed."""
    return (
        select(Job.id)
        .where(Job.state == JobState.PENDING.value, Job.run_at <= now)
        .order_by(Job.priority.desc(), Job.created_at.asc())
        .limit(1)
    )


def claim_statement(job_id: str, worker_id: str, now: datetime):
    return (
        update(Job)
        .where(Job.id == job_id, Job.state == JobState.PENDING.value)
        .values(
            state=JobState.PROCESSING.value,
            worker_id=worker_id,
            attempts=Job.attempts + 1,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def requeue_statement(job_id: str, now: datetime):
    """dead → pending with a clean slate. Matches nothing unless the job is dead."""
    return (
        update(Job)
        .where(Job.id == job_id, Job.state == JobState.DEAD.value)
        .values(
            state=JobState.PENDING.value,
            attempts=0,
            last_error=None,
            worker_id=None,
            run_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def list_jobs_query(state: Optional[str] = None):
    query = select(Job)
    if state:
        query = query.where(Job.state == state)
    return query.order_by(Job.created_at.desc())


def dlq_query():
    return (
        select(Job)
        .where(Job.state == JobState.DEAD.value)
        .order_by(Job.updated_at.desc())
    )


def state_counts_query():
    return select(Job.state, func.count(Job.id)).group_by(Job.state)


def logs_query(job_id: str):
    return select(JobLog).where(JobLog.job_id == job_id).order_by(JobLog.id.asc())


def counts_by_state(rows) -> dict[str, int]:
    """Turn (state, count) rows into a dict that always lists every state."""
    counts = {state.value: 0 for state in JobState}
    for state, count in rows:
        counts[state] = count
    return counts


def validate_state(state: Optional[str]) -> Optional[str]:
    if state is None or state == "":
        return None
    try:
        return JobState(state).value
    except ValueError:
        allowed = "|".join(s.value for s in JobState)
        raise ValidationError(f"Unknown state '{state}'. Expected one of {allowed}") from None


def build_job(submission: JobSubmission, default_max_retries: int, now: datetime) -> Job:
    """Turn a validated submission into a new pending Job row (not yet added)."""
    return Job(
        id=submission.id or new_job_id(),
        command=submission.command,
        state=JobState.PENDING.value,
        attempts=0,
        max_retries=(
            submission.max_retries
            if submission.max_retries is not None
            else default_max_retries
        ),
        priority=submission.priority,
        run_at=submission.run_at or now,
        created_at=now,
        updated_at=now,
    )


# ── Repository ──────────────────────────────────────────────────


class JobRepository:
    """
    Sync job repository used by worker processes and the CLI.

    Every public method opens and closes its own session, so one repository
    can be shared by the worker loop and the heartbeat thread.
    """

    def __init__(
        self,
        db_session_factory,
        config: Optional[QueueConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db_session_factory = db_session_factory
        self._config = config
        self._clock = clock

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session: Session = self._db_session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise RepositoryFailure(f"Job store error: {e}") from e
        finally:
            session.close()

    # ── Writes ──────────────────────────────────────────────────

    def enqueue(self, payload) -> str:
        """
        Validate and insert a new pending job.

        Args:
            payload: dict (or JobSubmission) with `command` and optional
                     `id`, `priority`, `run_at`, `max_retries`.

        Returns:
            the job id

        Raises:
            ValidationError: before anything is written
        """
        submission = parse_submission(payload)
        now = self._clock()

        with self._session() as session:
            config = self._config or QueueConfig.load(session)
            if submission.id and session.get(Job, submission.id) is not None:
                raise ValidationError(f"Job id already exists: {submission.id}")

            job = build_job(submission, config.max_retries, now)
            session.add(job)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ValidationError(f"Job id already exists: {job.id}") from e

            logger.info(
                f"Enqueued job {job.id} (priority={job.priority}, "
                f"max_retries={job.max_retries}, run_at={job.run_at.isoformat()})"
            )
            return job.id

    def claim_next(self, worker_id: str, now: Optional[datetime] = None) -> Optional[Job]:
        """
        Claim the next eligible job for `worker_id`, or return None.

        Selection and the conditional UPDATE run in separate short transactions:
        the UPDATE re-checks state == 'pending', which is the only guard needed.
        Losing the race means someone else took that row, so the next selection
        will see a different candidate (or none).
        """
        now = now or self._clock()
        while True:
            with self._session() as session:
                candidate = session.execute(next_eligible_query(now)).scalar()
            if candidate is None:
                return None
            try:
                return self._claim(candidate, worker_id, now)
            except ClaimRace:
                logger.debug(f"Lost claim race for job {candidate}, selecting again")

    def _claim(self, job_id: str, worker_id: str, now: datetime) -> Job:
        with self._session() as session:
            result = session.execute(claim_statement(job_id, worker_id, now))
            if result.rowcount != 1:
                session.rollback()
                raise ClaimRace(job_id)
            session.commit()
            job = session.get(Job, job_id)

        logger.info(f"Worker {worker_id} claimed job {job_id} (priority {job.priority})")
        return job

    def try_claim(self, job_id: str, worker_id: str, now: Optional[datetime] = None) -> bool:
        """Single conditional claim of a known job. True if this caller won."""
        try:
            self._claim(job_id, worker_id, now or self._clock())
        except ClaimRace:
            return False
        return True

    def record_outcome(
        self,
        job_id: str,
        worker_id: str,
        outcome: Outcome,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Apply a retry-policy decision to a job this worker holds.

        Conditional on the job still being processing under `worker_id`. If
        recovery handed it back to the queue in the meantime, nothing is
        written and False is returned.
        """
        now = now or self._clock()
        values = {
            "state": outcome.state.value,
            "last_error": outcome.last_error,
            "worker_id": None,
            "updated_at": now,
        }
        if outcome.run_at is not None:
            values["run_at"] = outcome.run_at

        stmt = (
            update(Job)
            .where(
                Job.id == job_id,
                Job.state == JobState.PROCESSING.value,
                Job.worker_id == worker_id,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            updated = session.execute(stmt).rowcount
            session.commit()

        if updated != 1:
            logger.warning(
                f"Outcome {outcome.state.value} for job {job_id} dropped: "
                f"no longer held by worker {worker_id}"
            )
            return False
        return True

    def append_log(self, job_id: str, log_type: LogType | str, content: str) -> None:
        log_type = LogType(log_type)
        with self._session() as session:
            session.add(JobLog(
                job_id=job_id,
                type=log_type.value,
                content=content,
                created_at=self._clock(),
            ))
            session.commit()

    def recover_orphaned(self, stale_before: datetime) -> int:
        """
        Return processing jobs whose owner is dead to pending.

        An owner counts as dead when it has no worker row or its heartbeat is
        older than `stale_before`. Jobs held by live workers are left alone.
        attempts is not touched; the interrupted run already counted.
        """
        live_workers = select(Worker.id).where(Worker.heartbeat_at >= stale_before)
        stmt = (
            update(Job)
            .where(
                Job.state == JobState.PROCESSING.value,
                or_(Job.worker_id.is_(None), Job.worker_id.not_in(live_workers)),
            )
            .values(state=JobState.PENDING.value, worker_id=None, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        with self._session() as session:
            recovered = session.execute(stmt).rowcount
            session.commit()

        if recovered:
            logger.warning(f"Recovered {recovered} job(s) abandoned by dead workers")
        return recovered

    def dlq_requeue(self, job_id: str) -> Job:
        """
        Move one dead job back to pending with attempts=0 and no last_error.

        Raises:
            JobNotFound: no such job
            InvalidJobState: the job exists but is not dead (nothing is changed)
        """
        now = self._clock()
        with self._session() as session:
            result = session.execute(requeue_statement(job_id, now))
            if result.rowcount == 1:
                session.commit()
                job = session.get(Job, job_id)
                logger.info(f"Job {job_id} moved from DLQ to pending queue")
                return job

            session.rollback()
            job = session.get(Job, job_id)
            if job is None:
                raise JobNotFound(job_id)
            raise InvalidJobState(job_id, job.state, JobState.DEAD.value)

    # ── Reads ───────────────────────────────────────────────────

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._session() as session:
            return session.get(Job, job_id)

    def list_jobs(self, state: Optional[str] = None) -> list[Job]:
        state = validate_state(state)
        with self._session() as session:
            return list(session.execute(list_jobs_query(state)).scalars())

    def dlq_list(self) -> list[Job]:
        with self._session() as session:
            return list(session.execute(dlq_query()).scalars())

    def get_logs(self, job_id: str) -> list[JobLog]:
        with self._session() as session:
            return list(session.execute(logs_query(job_id)).scalars())

    def count_by_state(self) -> dict[str, int]:
        with self._session() as session:
            return counts_by_state(session.execute(state_counts_query()).all())

    def pending_count(self) -> int:
        with self._session() as session:
            return session.execute(
                select(func.count(Job.id)).where(Job.state == JobState.PENDING.value)
            ).scalar() or 0

    def next_run_at(self) -> Optional[datetime]:
        """Earliest run_at among pending jobs (None when nothing is pending)."""
        with self._session() as session:
            return session.execute(
                select(Job.run_at)
                .where(Job.state == JobState.PENDING.value)
                .order_by(Job.run_at.asc())
                .limit(1)
            ).scalar()
