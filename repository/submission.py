"""
Validation of enqueue payloads.

Both the CLI (JSON on the command line or stdin) and the HTTP API go through
JobSubmission, so a job is rejected the same way no matter how it arrives.
Pydantic's errors are converted into the queue's own ValidationError so
callers only need to know one exception type.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from repository.errors import ValidationError


class JobSubmission(BaseModel):
    """What a caller provides to enqueue a job. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    command: StrictStr = Field(..., examples=["echo hello"])
    id: Optional[StrictStr] = Field(default=None, min_length=1, max_length=255)
    priority: int = Field(default=0, description="Higher value runs first")
    run_at: Optional[datetime] = Field(
        default=None, description="ISO-8601 timestamp; defaults to now"
    )
    max_retries: Optional[int] = Field(
        default=None, ge=0, description="Defaults to the configured max-retries"
    )

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be empty")
        return value

    @field_validator("run_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def _describe(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ())) or "payload"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def parse_submission(payload: Any) -> JobSubmission:
    """Validate a raw payload (dict or JobSubmission). Raises ValidationError."""
    if isinstance(payload, JobSubmission):
        return payload
    if not isinstance(payload, dict):
        raise ValidationError("Job payload must be an object with a string 'command'")
    if "command" not in payload or payload["command"] is None:
        raise ValidationError("Job must include a string command")
    try:
        return JobSubmission.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid job: {_describe(e)}") from e
