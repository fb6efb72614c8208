from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union
import logging
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator


class Priority(IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: Union["Priority", int, str, None]) -> Optional["Priority"]:
        """
        Coerce a priority given as an enum member, an ordinal or a case-insensitive name.
        Returns None for missing or unrecognised values.
        """
        if value is None:
            return None
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError:
                return None
        if isinstance(value, str):
            name = value.strip().upper()
            if name.isdigit():
                return cls.parse(int(name))
            return cls.__members__.get(name)
        return None


# Fallback used when an agent has no explicit priority configured.
AGENT_TYPE_PRIORITIES: Dict[str, Priority] = {
    "CUSTOMER_SUPPORT": Priority.HIGH,
    "PERFORMANCE_OPTIMIZER": Priority.HIGH,
    "TREND_ANALYZER": Priority.LOW,
    "AUDIENCE_RESEARCHER": Priority.LOW,
    "SEO_SPECIALIST": Priority.LOW,
}


def resolve_priority(explicit: Any = None, agent_type: Optional[str] = None) -> Priority:
    """
    Explicit configuration wins; the agent-type heuristic is only a fallback.
    """
    priority = Priority.parse(explicit)
    if priority is not None:
        return priority
    if agent_type:
        return AGENT_TYPE_PRIORITIES.get(agent_type.upper(), Priority.NORMAL)
    return Priority.NORMAL


class TaskState(str, Enum):
    SCHEDULED = "scheduled"
    DISPATCHED = "dispatched"
    SUCCEEDED = "succeeded"
    FAILED_RETRYING = "failed_retrying"
    FAILED_TERMINAL = "failed_terminal"
    PAUSED = "paused"


class ScheduledTask(BaseModel):
    """
    Runtime view of one agent's recurring schedule. A task is identified by its agent id.
    """
    agent_id: str = Field(..., min_length=1, description="Identifier of the agent this schedule triggers")
    job_id: Optional[str] = Field(None, description="Label of the schedule entry, defaults to the agent id")
    cron_expression: str = Field(..., description="5-field cron expression defining the recurring execution pattern")
    priority: Priority = Priority.NORMAL
    agent_type: Optional[str] = Field(None, description="Job type used by the priority heuristic")
    next_run_time: datetime
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = None
    backoff_until: Optional[datetime] = None
    is_running: bool = False
    is_paused: bool = False
    paused_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    state: TaskState = TaskState.SCHEDULED

    @model_validator(mode="after")
    def default_job_id(self) -> "ScheduledTask":
        if not self.job_id:
            self.job_id = self.agent_id
        return self

    @field_validator("next_run_time", "backoff_until", "paused_at", "last_run_at")
    def check_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            logging.getLogger(__name__).debug("Naive datetime on scheduled task, assuming UTC")
            return v.replace(tzinfo=ZoneInfo("UTC"))
        return v

    def is_due(self, as_of: datetime) -> bool:
        return not self.is_paused and not self.is_running and self.next_run_time <= as_of

    def dispatch_order(self) -> tuple:
        return (-int(self.priority), self.next_run_time, self.agent_id)


class PausedJob(BaseModel):
    agent_id: str
    job_id: str
    paused_at: Optional[datetime] = None
