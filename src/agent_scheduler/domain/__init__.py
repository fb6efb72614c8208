from .task import ScheduledTask, Priority, TaskState, PausedJob, resolve_priority
from .events import (
    EventType,
    SchedulerEvent,
    AgentStartedEvent,
    AgentProgressEvent,
    AgentCompletedEvent,
    AgentFailedEvent,
    AgentPausedEvent,
    AgentResumedEvent,
    SchedulerStatusEvent,
)

__all__ = [
    "ScheduledTask", "Priority", "TaskState", "PausedJob", "resolve_priority",
    "EventType", "SchedulerEvent", "AgentStartedEvent", "AgentProgressEvent",
    "AgentCompletedEvent", "AgentFailedEvent", "AgentPausedEvent",
    "AgentResumedEvent", "SchedulerStatusEvent",
]
