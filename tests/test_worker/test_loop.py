"""
End-to-end tests for the worker state machine.

Each test runs a real QueueWorker (real shell commands, real heartbeat thread)
against a SQLite file, with tiny idle waits and backoff so the whole retry
ladder finishes in well under a second.
"""

import sys
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from models.base import utcnow
from models.enums import JobState
from worker.executor import JobExecutor
from worker.loop import QueueWorker, WorkerState, idle_delay
from worker.retry import RetryPolicy

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell commands")


def _worker(jobs, registry, **kwargs):
    executor = JobExecutor(jobs, RetryPolicy(backoff_base=0.01), timeout_ms=5000)
    options = {
        "heartbeat_interval": 0.05,
        "min_idle_wait": 0.005,
        "default_idle_wait": 0.01,
        "max_idle_wait": 0.05,
    }
    options.update(kwargs)
    return QueueWorker(jobs, registry, executor, **options)


def _wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_empty_queue_drains_on_its_own(jobs, registry):
    worker = _worker(jobs, registry)

    assert worker.run() == 0
    assert worker.state == WorkerState.DRAINING
    assert worker.jobs_processed == 0
    assert registry.list_workers() == []


def test_processes_jobs_in_priority_order(jobs, registry):
    low = jobs.enqueue({"command": "echo low", "priority": 1})
    high = jobs.enqueue({"command": "echo high", "priority": 5})

    worker = _worker(jobs, registry)
    assert worker.run() == 0

    assert worker.jobs_processed == 2
    assert jobs.get_job(low).state == JobState.COMPLETED.value
    assert jobs.get_job(high).state == JobState.COMPLETED.value
    # job_logs ids are assigned in execution order
    assert jobs.get_logs(high)[0].id < jobs.get_logs(low)[0].id


def test_always_failing_job_ends_dead_after_retries(jobs, registry):
    job_id = jobs.enqueue({"command": "echo nope >&2; exit 1", "max_retries": 2})

    worker = _worker(jobs, registry)
    assert worker.run() == 0

    job = jobs.get_job(job_id)
    assert job.state == JobState.DEAD.value
    assert job.attempts == 3
    assert job.last_error == "Command exited with code 1: nope"
    assert worker.jobs_processed == 3
    assert [j.id for j in jobs.dlq_list()] == [job_id]


def test_requeued_dead_job_runs_again(jobs, registry):
    job_id = jobs.enqueue({"command": "exit 1", "max_retries": 0})
    _worker(jobs, registry).run()
    assert jobs.get_job(job_id).state == JobState.DEAD.value

    jobs.dlq_requeue(job_id)
    _worker(jobs, registry).run()

    job = jobs.get_job(job_id)
    assert job.state == JobState.DEAD.value
    assert job.attempts == 1


def test_job_of_crashed_worker_is_recovered_on_start(jobs, registry):
    job_id = jobs.enqueue({"command": "echo recovered"})
    jobs.claim_next("crashed-worker")   # never registered, never finishes

    worker = _worker(jobs, registry)
    assert worker.run() == 0

    job = jobs.get_job(job_id)
    assert job.state == JobState.COMPLETED.value
    assert job.attempts == 2


def test_job_of_live_worker_is_not_recovered(jobs, registry):
    registry.register("busy-worker", pid=1)
    job_id = jobs.enqueue({"command": "true"})
    jobs.claim_next("busy-worker")

    worker = _worker(jobs, registry)
    assert worker.run() == 0

    job = jobs.get_job(job_id)
    assert job.state == JobState.PROCESSING.value
    assert job.worker_id == "busy-worker"
    assert worker.jobs_processed == 0


def test_local_shutdown_drains_before_claiming(jobs, registry):
    job_id = jobs.enqueue({"command": "true"})

    worker = _worker(jobs, registry)
    worker.request_shutdown()
    assert worker.run() == 0

    assert jobs.get_job(job_id).state == JobState.PENDING.value
    assert registry.list_workers() == []


def test_stop_request_lets_current_job_finish(jobs, registry):
    job_id = jobs.enqueue({"command": "sleep 0.3; echo finished"})
    worker = _worker(jobs, registry, exit_when_empty=False)

    thread = threading.Thread(target=worker.run)
    thread.start()
    try:
        assert _wait_for(
            lambda: jobs.get_job(job_id).state == JobState.PROCESSING.value
        )
        assert registry.request_stop_all() == 1
    finally:
        thread.join(timeout=10)

    assert not thread.is_alive()
    assert jobs.get_job(job_id).state == JobState.COMPLETED.value
    assert registry.list_workers() == []


def test_idle_worker_notices_stop_request(jobs, registry):
    worker = _worker(jobs, registry, exit_when_empty=False)

    thread = threading.Thread(target=worker.run)
    thread.start()
    try:
        assert _wait_for(lambda: len(registry.list_workers()) == 1)
        registry.request_stop_all()
    finally:
        thread.join(timeout=10)

    assert not thread.is_alive()
    assert registry.list_workers() == []


def test_evicted_idle_worker_drains(jobs, registry):
    worker = _worker(jobs, registry, exit_when_empty=False)

    thread = threading.Thread(target=worker.run)
    thread.start()
    try:
        assert _wait_for(lambda: len(registry.list_workers()) == 1)
        # another process judged this worker dead and deleted its row
        assert registry.evict_stale(utcnow() + timedelta(seconds=60)) == 1
    finally:
        thread.join(timeout=10)

    assert not thread.is_alive()
    assert registry.list_workers() == []


def test_worker_evicted_mid_job_finishes_then_drains(jobs, registry):
    job_id = jobs.enqueue({"command": "sleep 0.3; echo finished"})
    later = jobs.enqueue({"command": "true", "run_at": utcnow() + timedelta(seconds=1)})
    worker = _worker(jobs, registry, exit_when_empty=False)

    thread = threading.Thread(target=worker.run)
    thread.start()
    try:
        assert _wait_for(
            lambda: jobs.get_job(job_id).state == JobState.PROCESSING.value
        )
        assert registry.evict_stale(utcnow() + timedelta(seconds=60)) == 1
    finally:
        thread.join(timeout=10)

    assert not thread.is_alive()
    assert jobs.get_job(job_id).state == JobState.COMPLETED.value
    assert jobs.get_job(later).state == JobState.PENDING.value
    assert worker.jobs_processed == 1
    assert registry.list_workers() == []


def test_duplicate_worker_id_fails_to_register(jobs, registry):
    registry.register("taken", pid=1)

    worker = _worker(jobs, registry, worker_id="taken")

    assert worker.run() == 1


# ── idle_delay ──────────────────────────────────────────────────

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_idle_delay_defaults_when_nothing_pending():
    assert idle_delay(None, NOW, minimum=0.5, default=1.0) == 1.0


def test_idle_delay_sleeps_until_next_run_at():
    assert idle_delay(NOW + timedelta(seconds=3), NOW, minimum=0.5) == 3.0


def test_idle_delay_has_a_floor():
    assert idle_delay(NOW + timedelta(milliseconds=10), NOW, minimum=0.5) == 0.5
    assert idle_delay(NOW - timedelta(seconds=10), NOW, minimum=0.5) == 0.5


def test_idle_delay_is_capped():
    assert idle_delay(NOW + timedelta(hours=1), NOW, minimum=0.5, maximum=5.0) == 5.0
