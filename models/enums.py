"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("pending", not "JobState.PENDING")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters and click choices
"""

import enum


class JobState(str, enum.Enum):
    PENDING = "pending"        # waiting for run_at to pass and a worker to claim it
    PROCESSING = "processing"  # claimed by exactly one worker
    COMPLETED = "completed"    # command exited 0 (terminal)
    FAILED = "failed"          # transient; a job settles in pending/completed/dead
    DEAD = "dead"              # retries exhausted, sits in the dead-letter queue


class LogType(str, enum.Enum):
    STDOUT = "stdout"
    STDERR = "stderr"
    INFO = "info"
    ERROR = "error"


class WorkerStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
