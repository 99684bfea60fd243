"""
Retry policy — decides what happens to a job after it runs.

Three outcomes:
1. success                           → COMPLETED, last_error cleared
2. failure, attempts <= max_retries  → PENDING again, run_at = now + base ** attempts
3. failure, attempts > max_retries   → DEAD (the dead-letter queue)

max_retries counts retries, not runs: a job with max_retries=2 runs at most
three times, and max_retries=0 goes straight to DEAD on its first failure.

`attempts` is the count AFTER the claim incremented it, so the first failure
waits base**1 seconds, the second base**2, and so on. No jitter, no cap.

Why reset to PENDING instead of a separate retry queue?
Because claiming already ignores jobs whose run_at is in the future. Pushing
run_at forward is the whole backoff mechanism; the job goes back through the
same claim path as a brand new job once the delay has passed.

This module is pure: no database, no clock. The caller passes `now`, which is
what makes the backoff schedule testable to the exact second.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from models.enums import JobState

# Far enough in the future that the job is effectively parked.
_NEVER = datetime.max.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Outcome:
    """The next state of a job plus the fields that go with it."""
    state: JobState
    last_error: Optional[str] = None
    run_at: Optional[datetime] = None   # only set when the job is rescheduled
    delay_seconds: Optional[float] = None

    @property
    def is_retry(self) -> bool:
        return self.state == JobState.PENDING


class RetryPolicy:

    def __init__(self, backoff_base: float = 2.0):
        self._backoff_base = backoff_base

    @property
    def backoff_base(self) -> float:
        return self._backoff_base

    def backoff_delay(self, attempts: int) -> float:
        """Seconds to wait before the next attempt: base ** attempts."""
        return float(self._backoff_base) ** attempts

    def decide(
        self,
        attempts: int,
        max_retries: int,
        now: datetime,
        error: Optional[str] = None,
        succeeded: bool = False,
    ) -> Outcome:
        """
        Args:
            attempts: attempt count after the claim's increment
            max_retries: how many times a failed job may be retried
            now: when the run finished
            error: failure message (ignored on success)
            succeeded: True when the command exited 0

        Returns:
            the Outcome to record
        """
        if succeeded:
            return Outcome(state=JobState.COMPLETED)

        # max_retries=2 allows three runs, dead at attempts=3;
        # max_retries=0 is dead on the first failure
        if attempts <= max_retries:
            try:
                delay = self.backoff_delay(attempts)
                run_at = now + timedelta(seconds=delay)
            except OverflowError:
                delay, run_at = float("inf"), _NEVER
            return Outcome(
                state=JobState.PENDING,
                last_error=error,
                run_at=run_at,
                delay_seconds=delay,
            )

        return Outcome(state=JobState.DEAD, last_error=error)
