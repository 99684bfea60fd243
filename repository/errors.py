"""
Error taxonomy for the queue core.

- ValidationError: bad enqueue input, raised before anything is written
- ClaimRace: another worker won the conditional UPDATE; handled inside
  JobRepository.claim_next by selecting again, never seen by callers
- ExecutionFailure: the command failed; turned into a job state transition by
  the executor, never escapes it
- RepositoryFailure: the durable store errored; propagates to the caller of
  the failing operation
- JobNotFound / InvalidJobState: lookups and DLQ requeue on the wrong job
"""


class QueueError(Exception):
    """Base class for every error raised by the queue core."""


class ValidationError(QueueError, ValueError):
    pass


class ClaimRace(QueueError):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} was claimed by another worker")
        self.job_id = job_id


class ExecutionFailure(QueueError):
    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class RepositoryFailure(QueueError):
    pass


class JobNotFound(QueueError, LookupError):
    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidJobState(QueueError):
    def __init__(self, job_id: str, state: str, expected: str):
        super().__init__(f"Job {job_id} is not {expected} (state={state})")
        self.job_id = job_id
        self.state = state
        self.expected = expected
