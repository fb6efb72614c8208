import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, ConfigDict

from agent_scheduler.config import SchedulerConfig
from agent_scheduler.domain.task import ScheduledTask, TaskState
from agent_scheduler.errors import RetryExhausted
from agent_scheduler.registry import TaskRegistry
from agent_scheduler.storages.protocol import ScheduleStore

logger = logging.getLogger(__name__)


class RetryAction(str, Enum):
    RETRY = "retry"
    TERMINAL = "terminal"


class RetryDecision(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    action: RetryAction
    state: TaskState
    retry_count: int
    error: str
    delay: Optional[float] = None
    backoff_until: Optional[datetime] = None
    exhausted: Optional[RetryExhausted] = None

    @property
    def will_retry(self) -> bool:
        return self.action == RetryAction.RETRY


class BackoffManager:
    """
    Decides what happens to a task after a failed execution.

    The first retry waits ``backoff_base`` seconds and every further retry doubles the
    wait, capped at ``backoff_max``. Once ``max_retries`` retries have failed the task is
    dropped from the registry and its owner is marked as failed in persistence.
    """

    def __init__(
        self,
        config: SchedulerConfig,
        registry: TaskRegistry,
        store: ScheduleStore,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.config = config
        self.registry = registry
        self.store = store
        self.clock = clock

    def calculate_delay(self, retry_count: int) -> float:
        """
        Delay in seconds before the retry that follows ``retry_count`` earlier failures.
        """
        delay = self.config.backoff_base * (2 ** max(0, retry_count))
        return min(delay, self.config.backoff_max)

    async def on_failure(self, task: ScheduledTask, error: BaseException) -> RetryDecision:
        message = str(error) or error.__class__.__name__
        previous = task.retry_count
        retry_count = previous + 1

        if retry_count > self.config.max_retries:
            exhausted = RetryExhausted(task.agent_id, retry_count, message)
            self.registry.remove(task.agent_id)
            logger.error("Agent %s failed %d times, giving up: %s", task.agent_id, retry_count, message)
            await self.store.clear_schedule(task.agent_id)
            await self.store.mark_terminal_failure(task.agent_id)
            return RetryDecision(
                action=RetryAction.TERMINAL,
                state=TaskState.FAILED_TERMINAL,
                retry_count=retry_count,
                error=message,
                exhausted=exhausted,
            )

        delay = self.calculate_delay(previous)
        backoff_until = self.clock() + timedelta(seconds=delay)

        def apply(stored: ScheduledTask) -> None:
            stored.retry_count = retry_count
            stored.last_error = message
            stored.backoff_until = backoff_until
            stored.next_run_time = backoff_until
            stored.is_running = False
            stored.state = TaskState.FAILED_RETRYING

        self.registry.update(task.agent_id, apply)
        logger.warning(
            "Agent %s failed (attempt %d of %d), retrying in %.1fs: %s",
            task.agent_id, retry_count, self.config.max_retries + 1, delay, message,
        )
        return RetryDecision(
            action=RetryAction.RETRY,
            state=TaskState.FAILED_RETRYING,
            retry_count=retry_count,
            error=message,
            delay=delay,
            backoff_until=backoff_until,
        )
