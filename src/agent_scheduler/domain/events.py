from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .task import Priority


class EventType(str, Enum):
    STARTED = "agent:started"
    PROGRESS = "agent:progress"
    COMPLETED = "agent:completed"
    FAILED = "agent:failed"
    PAUSED = "agent:paused"
    RESUMED = "agent:resumed"
    STATUS = "scheduler:status"


class SchedulerEvent(BaseModel):
    """
    Lifecycle notification handed to an event emitter. ``type`` doubles as the wire name.
    """
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AgentStartedEvent(SchedulerEvent):
    type: EventType = EventType.STARTED
    agent_id: str
    job_id: str
    priority: Priority


class AgentProgressEvent(SchedulerEvent):
    type: EventType = EventType.PROGRESS
    agent_id: str
    percent: float = Field(..., ge=0, le=100)
    message: str = ""


class AgentCompletedEvent(SchedulerEvent):
    type: EventType = EventType.COMPLETED
    agent_id: str
    duration_ms: int


class AgentFailedEvent(SchedulerEvent):
    type: EventType = EventType.FAILED
    agent_id: str
    error: str
    retry_count: int
    will_retry: bool
    next_attempt_at: Optional[datetime] = None


class AgentPausedEvent(SchedulerEvent):
    type: EventType = EventType.PAUSED
    agent_id: str
    job_id: str


class AgentResumedEvent(SchedulerEvent):
    type: EventType = EventType.RESUMED
    agent_id: str
    job_id: str
    next_run_time: datetime


class SchedulerStatusEvent(SchedulerEvent):
    type: EventType = EventType.STATUS
    scheduled_count: int
    running_count: int
    queued_count: int
    paused_count: int
    max_concurrent: int
    is_running: bool
