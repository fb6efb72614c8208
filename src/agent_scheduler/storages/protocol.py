from datetime import datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field


class ScheduleRecord(BaseModel):
    """
    A persisted, enabled schedule as loaded at startup.
    """
    agent_id: str
    cron_expression: str
    priority_hint: Optional[str] = Field(None, description="Explicitly configured priority, if any")
    is_paused: bool = False
    job_id: Optional[str] = None
    agent_type: Optional[str] = None
    next_run_at: Optional[datetime] = Field(None, description="Next run time stored by the previous process")
    paused_at: Optional[datetime] = None


class ScheduleStore(Protocol):
    async def load_enabled_schedules(self) -> List[ScheduleRecord]:
        """Return every enabled schedule with a cron expression."""
        ...

    async def save_schedule(
        self,
        agent_id: str,
        cron_expression: Optional[str],
        next_run_time: Optional[datetime],
        enabled: bool,
        priority: Optional[str] = None,
        job_id: Optional[str] = None,
        agent_type: Optional[str] = None,
    ) -> None:
        """
        Persist the schedule of an agent. ``priority``, ``job_id`` and ``agent_type``
        are stored when given and kept from the previous save when omitted.
        """
        ...

    async def clear_schedule(self, agent_id: str) -> None:
        """Disable the schedule of an agent and forget its next run."""
        ...

    async def mark_terminal_failure(self, agent_id: str) -> None:
        """Set the agent's status to the terminal error state."""
        ...

    async def save_pause_state(self, agent_id: str, is_paused: bool, paused_at: Optional[datetime]) -> None:
        """Persist the paused flag of an agent's schedule."""
        ...
