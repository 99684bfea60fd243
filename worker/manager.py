"""
Spawning worker processes for `queuectl worker start`.

Background workers are started detached (new session, output discarded) so
they outlive the CLI invocation. Foreground workers inherit the terminal and
run one after another, which is mostly useful for watching logs.
"""

import logging
import subprocess
import sys

logger = logging.getLogger(__name__)

WORKER_COMMAND = [sys.executable, "-m", "worker.main"]


def start_workers(count: int, foreground: bool = False) -> list[int]:
    """
    Start `count` worker processes.

    Returns:
        pids of the background workers (empty in foreground mode)

    Raises:
        ValueError: count < 1
    """
    if count < 1:
        raise ValueError("Worker count must be at least 1")

    pids = []
    for i in range(count):
        if foreground:
            logger.info(f"Starting worker {i + 1} in foreground")
            subprocess.run(WORKER_COMMAND, check=False)
            continue

        proc = subprocess.Popen(
            WORKER_COMMAND,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
        pids.append(proc.pid)
        logger.info(f"Started background worker pid {proc.pid}")
    return pids
