import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobState(str, Enum):
    queued = "queued"
    working = "working"
    complete = "complete"
    failed = "failed"
    stopped = "stopped"

    @property
    def terminal(self) -> bool:
        return self in (JobState.complete, JobState.failed, JobState.stopped)


class ScheduleEntry(BaseModel):
    """Any schedule member: only the identifier is required."""

    model_config = ConfigDict(extra="allow")

    job_id: str


class ScheduledJob(BaseModel):
    """Descriptor stored as a member of the schedule sorted set."""

    model_config = ConfigDict(extra="allow")

    job_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    at: float
    created_at: float = Field(default_factory=time.time)


class JobCreate(BaseModel):
    type: str
    payload: Dict[str, Any]
    schedule_at: float  # epoch seconds
    expiration: Optional[int] = Field(default=None, ge=1)


class JobResponse(BaseModel):
    job_id: str
    status: str
    at: float


class StatusUpdate(BaseModel):
    fields: Dict[str, Any]
    expiration: Optional[int] = Field(default=None, ge=1)


class StatusResponse(BaseModel):
    job_id: str
    status: Optional[str] = None
    update_time: Optional[int] = None
    fields: Dict[str, str]


class UnscheduleRequest(BaseModel):
    at: Optional[float] = None  # exact scheduled time, narrows the scan
