"""
Job executor — runs one claimed job's command and records what happened.

This is the code that actually DOES THE WORK. The worker loop calls
executor.execute(job, worker_id) and this method handles the full run:

    1. Start the command through the shell, in its own process group
    2. Wait for it, bounded by timeout-ms; on timeout kill the whole group
    3. Append non-empty stdout/stderr to job_logs, plus an info/error line
    4. Ask RetryPolicy what comes next (completed / retry later / dead)
    5. Write that outcome, conditional on this worker still holding the job

A failing command never raises out of execute(): non-zero exit, death by
signal, timeout, and failure to even start are all ExecutionFailures that
end up as state transitions.
"""

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from models.base import utcnow
from models.enums import JobState, LogType
from models.job import Job
from repository.errors import ExecutionFailure, RepositoryFailure
from repository.jobs import JobRepository
from worker.retry import Outcome, RetryPolicy

logger = logging.getLogger(__name__)

_ERROR_DETAIL_LIMIT = 500


@dataclass
class CommandResult:
    exit_code: int | None
    stdout: str
    stderr: str
    timed_out: bool = False


class JobExecutor:

    def __init__(
        self,
        repository: JobRepository,
        retry_policy: RetryPolicy,
        timeout_ms: int = 60000,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repository = repository
        self._retry_policy = retry_policy
        self._timeout_ms = timeout_ms
        self._clock = clock

    def execute(self, job: Job, worker_id: str) -> Outcome:
        """
        Run a claimed job to completion and record its outcome.

        Args:
            job: the job as returned by claim_next (attempts already incremented)
            worker_id: the claiming worker, used to guard the outcome write

        Returns:
            the Outcome that was decided (and written, unless the claim was lost)
        """
        logger.info(
            f"Starting job {job.id} | Command: {job.command!r} | "
            f"Priority: {job.priority} | Attempt: {job.attempts}/{job.max_retries + 1}"
        )

        start_time = time.monotonic()
        result = None
        error = None
        try:
            result = self.run_command(job.command)
            self._raise_for_result(result)
        except ExecutionFailure as e:
            error = e.message
        elapsed = time.monotonic() - start_time

        self._write_logs(job.id, result, error, elapsed)

        outcome = self._retry_policy.decide(
            attempts=job.attempts,
            max_retries=job.max_retries,
            now=self._clock(),
            error=error,
            succeeded=error is None,
        )
        self._repository.record_outcome(job.id, worker_id, outcome)
        self._log_outcome(job, outcome, elapsed)
        return outcome

    def run_command(self, command: str) -> CommandResult:
        """Run `command` through the shell and capture both streams in full."""
        popen_kwargs = {
            "shell": True,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            "stdin": subprocess.DEVNULL,
            "text": True,
            "errors": "replace",
        }
        if os.name == "posix":
            # Own process group so a timeout kills the shell AND its children
            popen_kwargs["start_new_session"] = True

        try:
            proc = subprocess.Popen(command, **popen_kwargs)
        except OSError as e:
            raise ExecutionFailure(f"Failed to start command: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=self._timeout_ms / 1000)
        except subprocess.TimeoutExpired:
            self._kill(proc)
            stdout, stderr = proc.communicate()
            return CommandResult(proc.returncode, stdout or "", stderr or "", timed_out=True)

        return CommandResult(proc.returncode, stdout or "", stderr or "")

    def _kill(self, proc: subprocess.Popen) -> None:
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass  # already gone

    def _raise_for_result(self, result: CommandResult) -> None:
        if result.timed_out:
            raise ExecutionFailure(
                f"Command timed out after {self._timeout_ms}ms", result.exit_code
            )

        code = result.exit_code
        if code == 0:
            return

        if code is not None and code < 0:
            try:
                name = signal.Signals(-code).name
            except ValueError:
                name = str(-code)
            raise ExecutionFailure(f"Command terminated by signal {name}", code)

        message = f"Command exited with code {code}"
        detail = result.stderr.strip().splitlines()
        if detail:
            message = f"{message}: {detail[-1][:_ERROR_DETAIL_LIMIT]}"
        raise ExecutionFailure(message, code)

    def _write_logs(self, job_id: str, result, error, elapsed: float) -> None:
        entries = []
        if result is not None and result.stdout:
            entries.append((LogType.STDOUT, result.stdout))
        if result is not None and result.stderr:
            entries.append((LogType.STDERR, result.stderr))
        if error is None:
            entries.append((LogType.INFO, f"Exited with code 0 in {elapsed:.2f}s"))
        else:
            entries.append((LogType.ERROR, error))

        for log_type, content in entries:
            try:
                self._repository.append_log(job_id, log_type, content)
            except RepositoryFailure as e:
                # Losing a log line must not stop the outcome from being recorded
                logger.error(f"Could not write {log_type.value} log for job {job_id}: {e}")

    def _log_outcome(self, job: Job, outcome: Outcome, elapsed: float) -> None:
        if outcome.state == JobState.COMPLETED:
            logger.info(f"Job {job.id} completed in {elapsed:.2f}s")
        elif outcome.is_retry:
            logger.warning(
                f"Job {job.id} failed (attempt {job.attempts}/{job.max_retries + 1}), "
                f"retrying in {outcome.delay_seconds:g}s: {outcome.last_error}"
            )
        else:
            logger.error(
                f"Job {job.id} permanently failed after {job.attempts} attempts, "
                f"moved to dead-letter queue: {outcome.last_error}"
            )
