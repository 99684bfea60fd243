"""Pydantic schemas for the /workers endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class WorkerResponse(BaseModel):
    id: str
    pid: int
    hostname: Optional[str] = None
    status: str
    stop_requested: bool
    started_at: datetime
    heartbeat_at: datetime

    model_config = {"from_attributes": True}


class StopResponse(BaseModel):
    """Returned by POST /workers/stop."""

    signaled: int   # workers whose stop flag went from false to true
