import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from agent_scheduler import cron
from agent_scheduler.domain.events import AgentPausedEvent, AgentResumedEvent, SchedulerEvent
from agent_scheduler.domain.task import PausedJob, ScheduledTask, TaskState
from agent_scheduler.errors import NotPaused, TaskNotFound, TaskRunning
from agent_scheduler.registry import TaskRegistry
from agent_scheduler.storages.protocol import ScheduleStore

logger = logging.getLogger(__name__)


class PauseController:
    """
    Holds individual tasks out of dispatch and releases them again.
    Rejections (unknown task, running task, task not paused) leave the registry untouched.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        store: ScheduleStore,
        emit: Callable[[SchedulerEvent], None],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.registry = registry
        self.store = store
        self.emit = emit
        self.clock = clock

    @staticmethod
    def _check_job(task: ScheduledTask, agent_id: str, job_id: Optional[str]) -> None:
        if job_id and job_id != task.job_id:
            raise TaskNotFound(agent_id, job_id)

    async def pause(self, agent_id: str, job_id: Optional[str] = None) -> ScheduledTask:
        now = self.clock()
        already_paused = False
        previous_state = TaskState.SCHEDULED

        def apply(task: ScheduledTask) -> None:
            nonlocal already_paused, previous_state
            self._check_job(task, agent_id, job_id)
            if task.is_running:
                raise TaskRunning(agent_id)
            if task.is_paused:
                already_paused = True
                return
            previous_state = task.state
            task.is_paused = True
            task.paused_at = now
            task.state = TaskState.PAUSED

        def revert(task: ScheduledTask) -> None:
            task.is_paused = False
            task.paused_at = None
            task.state = previous_state

        try:
            task = self.registry.update(agent_id, apply)
        except TaskNotFound as e:
            raise TaskNotFound(agent_id, job_id) from e
        if already_paused:
            return task

        try:
            await self.store.save_pause_state(agent_id, True, now)
        except Exception:
            self._rollback(agent_id, revert)
            raise
        logger.info("Paused agent %s (job %s)", agent_id, task.job_id)
        self.emit(AgentPausedEvent(agent_id=agent_id, job_id=task.job_id, timestamp=now))
        return task

    async def resume(self, agent_id: str, job_id: Optional[str] = None) -> ScheduledTask:
        now = self.clock()
        before: Optional[ScheduledTask] = None

        def apply(task: ScheduledTask) -> None:
            nonlocal before
            self._check_job(task, agent_id, job_id)
            if not task.is_paused:
                raise NotPaused(agent_id)
            before = task.model_copy()
            task.is_paused = False
            task.paused_at = None
            task.state = TaskState.SCHEDULED
            if task.next_run_time <= now:
                task.next_run_time = cron.next_run_time(task.cron_expression, now)
                task.backoff_until = None

        def revert(task: ScheduledTask) -> None:
            task.is_paused = True
            task.paused_at = before.paused_at
            task.state = before.state
            task.next_run_time = before.next_run_time
            task.backoff_until = before.backoff_until

        try:
            task = self.registry.update(agent_id, apply)
        except TaskNotFound as e:
            raise TaskNotFound(agent_id, job_id) from e

        try:
            await self.store.save_schedule(agent_id, task.cron_expression, task.next_run_time, True)
            await self.store.save_pause_state(agent_id, False, None)
        except Exception:
            self._rollback(agent_id, revert)
            raise
        logger.info("Resumed agent %s (job %s), next run at %s", agent_id, task.job_id, task.next_run_time)
        self.emit(AgentResumedEvent(
            agent_id=agent_id, job_id=task.job_id, next_run_time=task.next_run_time, timestamp=now
        ))
        return task

    def _rollback(self, agent_id: str, revert: Callable[[ScheduledTask], None]) -> None:
        logger.error("Failed to persist pause state of agent %s, rolling back", agent_id)
        try:
            self.registry.update(agent_id, revert)
        except TaskNotFound:
            logger.warning("Agent %s was unscheduled before its pause state could be rolled back", agent_id)

    def list_paused(self) -> List[PausedJob]:
        return [
            PausedJob(agent_id=task.agent_id, job_id=task.job_id, paused_at=task.paused_at)
            for task in self.registry.paused()
        ]
