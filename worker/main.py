"""
Worker process entry point.

Each worker is a SEPARATE OS process. Run as many as you like, on the same
store; they never talk to each other. All coordination happens through the
conditional UPDATE in JobRepository.claim_next.

To run one in the foreground:
    python -m worker.main

To start several in the background:
    queuectl worker start --count 4

The process exits on its own once the pending queue is empty, when
`queuectl worker stop` sets its stop flag, or on Ctrl+C / SIGTERM. In every
case the job in progress is allowed to finish first.
"""

import logging
import signal
import sys

from config.runtime import QueueConfig
from config.settings import Settings, settings
from models.base import SyncSessionLocal, sync_engine
from models.schema import init_db
from repository.jobs import JobRepository
from repository.workers import WorkerRegistry
from worker.executor import JobExecutor
from worker.loop import QueueWorker
from worker.retry import RetryPolicy

logger = logging.getLogger(__name__)


def build_worker(db_session_factory, source: Settings = settings, **kwargs) -> QueueWorker:
    """
    Wire a QueueWorker against `db_session_factory`.

    The queue tunables are read from the config table exactly once, here, and
    handed to every component as a frozen QueueConfig.
    """
    with db_session_factory() as session:
        config = QueueConfig.load(session, source)
    logger.info(
        f"Worker config: max_retries={config.max_retries}, "
        f"backoff_base={config.backoff_base}, timeout_ms={config.timeout_ms}"
    )

    jobs = JobRepository(db_session_factory, config=config)
    registry = WorkerRegistry(db_session_factory, stale_after=source.WORKER_STALE_AFTER)
    executor = JobExecutor(jobs, RetryPolicy(config.backoff_base), timeout_ms=config.timeout_ms)

    options = {
        "heartbeat_interval": source.WORKER_HEARTBEAT_INTERVAL,
        "min_idle_wait": source.WORKER_MIN_IDLE_WAIT,
        "default_idle_wait": source.WORKER_DEFAULT_IDLE_WAIT,
        "max_idle_wait": source.WORKER_MAX_IDLE_WAIT,
        "exit_when_empty": source.WORKER_EXIT_WHEN_EMPTY,
    }
    options.update(kwargs)
    return QueueWorker(jobs, registry, executor, **options)


def main() -> int:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        # Safe to call from every worker: existing tables and config rows are kept
        with sync_engine.begin() as conn:
            init_db(conn)
        worker = build_worker(SyncSessionLocal)
    except Exception as e:
        logger.error(f"Worker startup failed: {e}", exc_info=True)
        return 1

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    def shutdown(signum, frame):
        logger.info("Shutdown signal received, finishing current job...")
        worker.request_shutdown()

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)

    return worker.run()


if __name__ == "__main__":
    sys.exit(main())
