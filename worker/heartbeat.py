"""
Background heartbeat — keeps a worker's row fresh while the loop is busy or idle.

Runs in a daemon thread so liveness keeps ticking during a long job or a long
idle wait. It only ever writes this worker's own row, so it needs no locking
against the main loop beyond reading the current status.
"""

import logging
import threading
from typing import Callable, Optional

from models.enums import WorkerStatus
from repository.errors import RepositoryFailure
from repository.workers import WorkerRegistry

logger = logging.getLogger(__name__)


class Heartbeat:

    def __init__(
        self,
        registry: WorkerRegistry,
        worker_id: str,
        interval: float,
        status: Callable[[], WorkerStatus],
        on_lost: Optional[Callable[[], None]] = None,
    ):
        self._registry = registry
        self._worker_id = worker_id
        self._interval = interval
        self._status = status
        self._on_lost = on_lost
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stopped.clear()
        self._thread = threading.Thread(
            target=self._run, name=f"heartbeat-{self._worker_id[:8]}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=self._interval + 1)
            self._thread = None

    def beat(self) -> None:
        try:
            if not self._registry.heartbeat(self._worker_id, self._status()):
                logger.warning(f"Heartbeat for worker {self._worker_id} found no row")
                if self._on_lost is not None:
                    self._on_lost()
        except RepositoryFailure as e:
            logger.error(f"Heartbeat failed for worker {self._worker_id}: {e}")

    def _run(self) -> None:
        # wait() returns True once stop() is called, ending the loop
        while not self._stopped.wait(self._interval):
            self.beat()
