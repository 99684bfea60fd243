"""
Worker registry — the workers table.

A worker is "live" while its heartbeat is fresher than WORKER_STALE_AFTER.
A process that crashes never deletes its row; its heartbeat simply stops
moving, and the next worker to start evicts the row and recovers the jobs it
held (see JobRepository.recover_orphaned).
"""

import logging
import os
import socket
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Callable, Iterator, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.base import utcnow
from models.enums import WorkerStatus
from models.worker import Worker
from repository.errors import RepositoryFailure

logger = logging.getLogger(__name__)


def list_workers_query():
    return select(Worker).order_by(Worker.started_at.desc())


def active_workers_query(stale_before: datetime):
    return select(func.count(Worker.id)).where(
        Worker.stop_requested.is_(False),
        Worker.heartbeat_at >= stale_before,
    )


def stop_all_statement():
    return (
        update(Worker)
        .where(Worker.stop_requested.is_(False))
        .values(stop_requested=True)
        .execution_options(synchronize_session=False)
    )


class WorkerRegistry:

    def __init__(
        self,
        db_session_factory,
        stale_after: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._db_session_factory = db_session_factory
        self._stale_after = stale_after
        self._clock = clock

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session: Session = self._db_session_factory()
        try:
            yield session
        except SQLAlchemyError as e:
            session.rollback()
            raise RepositoryFailure(f"Worker store error: {e}") from e
        finally:
            session.close()

    def stale_before(self, now: Optional[datetime] = None) -> datetime:
        """Heartbeats older than this belong to dead workers."""
        return (now or self._clock()) - timedelta(seconds=self._stale_after)

    # ── Owner-side operations ───────────────────────────────────

    def register(self, worker_id: str, pid: Optional[int] = None) -> Worker:
        now = self._clock()
        worker = Worker(
            id=worker_id,
            pid=pid if pid is not None else os.getpid(),
            hostname=socket.gethostname(),
            status=WorkerStatus.IDLE.value,
            stop_requested=False,
            started_at=now,
            heartbeat_at=now,
        )
        with self._session() as session:
            session.add(worker)
            session.commit()
        logger.info(f"Registered worker {worker_id} (pid {worker.pid})")
        return worker

    def heartbeat(self, worker_id: str, status: WorkerStatus | str = WorkerStatus.IDLE) -> bool:
        """Refresh heartbeat_at and status. False if the row is gone."""
        status = WorkerStatus(status)
        with self._session() as session:
            updated = session.execute(
                update(Worker)
                .where(Worker.id == worker_id)
                .values(status=status.value, heartbeat_at=self._clock())
                .execution_options(synchronize_session=False)
            ).rowcount
            session.commit()
        return updated == 1

    def is_stop_requested(self, worker_id: str) -> bool:
        """A missing row counts as a stop: the worker was evicted as stale."""
        with self._session() as session:
            flag = session.execute(
                select(Worker.stop_requested).where(Worker.id == worker_id)
            ).scalar()
        return flag is None or bool(flag)

    def deregister(self, worker_id: str) -> None:
        with self._session() as session:
            session.execute(delete(Worker).where(Worker.id == worker_id))
            session.commit()
        logger.info(f"Deregistered worker {worker_id}")

    def evict_stale(self, now: Optional[datetime] = None) -> int:
        """Delete rows of workers whose heartbeat stopped. Returns how many."""
        with self._session() as session:
            evicted = session.execute(
                delete(Worker).where(Worker.heartbeat_at < self.stale_before(now))
            ).rowcount
            session.commit()
        if evicted:
            logger.warning(f"Evicted {evicted} stale worker record(s)")
        return evicted

    # ── Collaborator-side operations ────────────────────────────

    def request_stop_all(self) -> int:
        """Ask every worker to exit after its current job. Returns how many were signaled."""
        with self._session() as session:
            signaled = session.execute(stop_all_statement()).rowcount
            session.commit()
        logger.info(f"Stop requested for {signaled} worker(s)")
        return signaled

    def list_workers(self) -> list[Worker]:
        with self._session() as session:
            return list(session.execute(list_workers_query()).scalars())

    def active_count(self, now: Optional[datetime] = None) -> int:
        with self._session() as session:
            return session.execute(active_workers_query(self.stale_before(now))).scalar() or 0
