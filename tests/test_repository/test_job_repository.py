"""
Tests for JobRepository: enqueue validation and defaults, claim ordering and
eligibility, outcome writes and the dead-letter requeue.

Everything runs against a SQLite file in tmp_path with a FakeClock, so
timestamps are exact.
"""

from datetime import timedelta

import pytest

from config.runtime import QueueConfig
from models.enums import JobState, LogType
from repository.errors import InvalidJobState, JobNotFound, ValidationError
from repository.jobs import JobRepository
from worker.retry import Outcome


@pytest.fixture
def repo(session_factory, queue_config, clock):
    return JobRepository(session_factory, config=queue_config, clock=clock)


# ── enqueue ─────────────────────────────────────────────────────


def test_enqueue_applies_defaults(repo, clock):
    job_id = repo.enqueue({"command": "echo hi"})

    job = repo.get_job(job_id)
    assert job.command == "echo hi"
    assert job.state == JobState.PENDING.value
    assert job.attempts == 0
    assert job.priority == 0
    assert job.max_retries == 3
    assert job.run_at == clock.now
    assert job.worker_id is None
    assert job.last_error is None


def test_enqueue_keeps_caller_fields(repo, clock):
    later = clock.now + timedelta(hours=1)
    job_id = repo.enqueue({
        "id": "build-42",
        "command": "make build",
        "priority": 7,
        "run_at": later.isoformat(),
        "max_retries": 0,
    })

    assert job_id == "build-42"
    job = repo.get_job("build-42")
    assert job.priority == 7
    assert job.run_at == later
    assert job.max_retries == 0


def test_enqueue_uses_configured_max_retries(session_factory, clock):
    repo = JobRepository(session_factory, config=QueueConfig(max_retries=7), clock=clock)
    job_id = repo.enqueue({"command": "true"})
    assert repo.get_job(job_id).max_retries == 7


def test_enqueue_without_snapshot_reads_config_table(session_factory, clock):
    """No injected QueueConfig → the seeded config table default (3) applies."""
    repo = JobRepository(session_factory, clock=clock)
    job_id = repo.enqueue({"command": "true"})
    assert repo.get_job(job_id).max_retries == 3


@pytest.mark.parametrize("payload", [
    {},
    {"command": None},
    {"command": 42},
    {"command": ["echo", "hi"]},
    {"command": "   "},
    "echo hi",
    None,
])
def test_enqueue_rejects_bad_command(repo, payload):
    with pytest.raises(ValidationError):
        repo.enqueue(payload)
    assert repo.list_jobs() == []


@pytest.mark.parametrize("payload", [
    {"command": "true", "priority": "high"},
    {"command": "true", "max_retries": -1},
    {"command": "true", "run_at": "not a date"},
])
def test_enqueue_rejects_bad_optional_fields(repo, payload):
    with pytest.raises(ValidationError):
        repo.enqueue(payload)


def test_enqueue_duplicate_id_is_rejected(repo):
    repo.enqueue({"id": "dup", "command": "true"})
    with pytest.raises(ValidationError, match="already exists"):
        repo.enqueue({"id": "dup", "command": "false"})
    assert repo.get_job("dup").command == "true"


# ── claim ───────────────────────────────────────────────────────


def test_claim_prefers_higher_priority(repo, clock):
    low = repo.enqueue({"command": "echo low", "priority": 1})
    clock.advance(1)
    high = repo.enqueue({"command": "echo high", "priority": 5})
    clock.advance(1)

    assert repo.claim_next("w1").id == high
    assert repo.claim_next("w1").id == low


def test_claim_breaks_priority_ties_by_creation_order(repo, clock):
    first = repo.enqueue({"command": "echo 1"})
    clock.advance(1)
    second = repo.enqueue({"command": "echo 2"})
    clock.advance(1)

    assert repo.claim_next("w1").id == first
    assert repo.claim_next("w1").id == second
    assert repo.claim_next("w1") is None


def test_claim_ignores_future_run_at(repo, clock):
    job_id = repo.enqueue({
        "command": "echo later",
        "run_at": (clock.now + timedelta(seconds=10)).isoformat(),
    })

    assert repo.claim_next("w1") is None
    clock.advance(9)
    assert repo.claim_next("w1") is None

    clock.advance(1)
    claimed = repo.claim_next("w1")
    assert claimed.id == job_id
    assert claimed.run_at <= clock.now


def test_claim_stamps_worker_and_increments_attempts(repo, clock):
    job_id = repo.enqueue({"command": "true"})
    clock.advance(1)

    claimed = repo.claim_next("worker-a")

    assert claimed.id == job_id
    assert claimed.state == JobState.PROCESSING.value
    assert claimed.worker_id == "worker-a"
    assert claimed.attempts == 1
    assert claimed.updated_at == clock.now


def test_try_claim_only_succeeds_from_pending(repo):
    job_id = repo.enqueue({"command": "true"})

    assert repo.try_claim(job_id, "w1") is True
    assert repo.try_claim(job_id, "w2") is False
    assert repo.get_job(job_id).worker_id == "w1"
    assert repo.get_job(job_id).attempts == 1


# ── outcomes ────────────────────────────────────────────────────


def test_record_outcome_completed(repo, clock):
    job_id = repo.enqueue({"command": "true"})
    repo.claim_next("w1")

    clock.advance(2)
    assert repo.record_outcome(job_id, "w1", Outcome(state=JobState.COMPLETED)) is True

    job = repo.get_job(job_id)
    assert job.state == JobState.COMPLETED.value
    assert job.worker_id is None
    assert job.last_error is None
    assert job.updated_at == clock.now


def test_record_outcome_retry_pushes_run_at(repo, clock):
    job_id = repo.enqueue({"command": "false"})
    repo.claim_next("w1")

    retry_at = clock.now + timedelta(seconds=2)
    outcome = Outcome(state=JobState.PENDING, last_error="boom", run_at=retry_at)
    assert repo.record_outcome(job_id, "w1", outcome) is True

    job = repo.get_job(job_id)
    assert job.state == JobState.PENDING.value
    assert job.last_error == "boom"
    assert job.run_at == retry_at
    assert job.attempts == 1


def test_record_outcome_requires_ownership(repo):
    """A worker that lost its job (e.g. to recovery) cannot overwrite it."""
    job_id = repo.enqueue({"command": "true"})
    repo.claim_next("w1")

    assert repo.record_outcome(job_id, "w2", Outcome(state=JobState.COMPLETED)) is False
    assert repo.get_job(job_id).state == JobState.PROCESSING.value


def test_attempts_never_decrease_across_retries(repo, clock):
    job_id = repo.enqueue({"command": "false"})
    seen = []
    for _ in range(3):
        clock.advance(1)
        job = repo.claim_next("w1")
        seen.append(job.attempts)
        repo.record_outcome(
            job_id, "w1", Outcome(state=JobState.PENDING, last_error="x", run_at=clock.now)
        )
    assert seen == [1, 2, 3]


def test_append_log_and_get_logs_in_order(repo):
    job_id = repo.enqueue({"command": "echo hi"})
    repo.append_log(job_id, LogType.STDOUT, "hi\n")
    repo.append_log(job_id, "info", "Exited with code 0 in 0.01s")

    entries = repo.get_logs(job_id)
    assert [(e.type, e.content) for e in entries] == [
        ("stdout", "hi\n"),
        ("info", "Exited with code 0 in 0.01s"),
    ]


# ── dead-letter queue ───────────────────────────────────────────


def _make_dead(repo, command="false"):
    job_id = repo.enqueue({"command": command, "max_retries": 0})
    assert repo.try_claim(job_id, "w1")
    repo.record_outcome(job_id, "w1", Outcome(state=JobState.DEAD, last_error="exit 1"))
    return job_id


def test_dlq_list_only_contains_dead_jobs(repo):
    dead = _make_dead(repo)
    repo.enqueue({"command": "true"})

    assert [job.id for job in repo.dlq_list()] == [dead]


def test_dlq_requeue_round_trip(repo, clock):
    job_id = _make_dead(repo)
    clock.advance(60)

    job = repo.dlq_requeue(job_id)

    assert job.state == JobState.PENDING.value
    assert job.attempts == 0
    assert job.last_error is None
    assert job.worker_id is None
    assert job.run_at == clock.now
    assert repo.dlq_list() == []


def test_dlq_requeue_of_pending_job_fails_without_mutation(repo):
    job_id = repo.enqueue({"command": "true", "priority": 3})
    before = repo.get_job(job_id)

    with pytest.raises(InvalidJobState):
        repo.dlq_requeue(job_id)

    after = repo.get_job(job_id)
    assert after.state == before.state
    assert after.attempts == before.attempts
    assert after.updated_at == before.updated_at


def test_dlq_requeue_unknown_job(repo):
    with pytest.raises(JobNotFound):
        repo.dlq_requeue("missing")


# ── reads ───────────────────────────────────────────────────────


def test_count_by_state_lists_every_state(repo):
    repo.enqueue({"command": "true"})
    repo.enqueue({"command": "true"})
    _make_dead(repo)

    counts = repo.count_by_state()
    assert counts == {
        "pending": 2,
        "processing": 0,
        "completed": 0,
        "failed": 0,
        "dead": 1,
    }
    assert repo.pending_count() == 2


def test_list_jobs_filters_by_state(repo):
    repo.enqueue({"command": "true"})
    dead = _make_dead(repo)

    assert [job.id for job in repo.list_jobs("dead")] == [dead]
    assert len(repo.list_jobs()) == 2
    with pytest.raises(ValidationError):
        repo.list_jobs("sleeping")


def test_next_run_at_is_earliest_pending(repo, clock):
    assert repo.next_run_at() is None
    soon = clock.now + timedelta(seconds=5)
    repo.enqueue({"command": "true", "run_at": (clock.now + timedelta(seconds=50)).isoformat()})
    repo.enqueue({"command": "true", "run_at": soon.isoformat()})

    assert repo.next_run_at() == soon
