import asyncio
import functools
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel

from agent_scheduler import cron
from agent_scheduler.config import SchedulerConfig
from agent_scheduler.domain.events import (
    AgentCompletedEvent,
    AgentFailedEvent,
    AgentProgressEvent,
    AgentStartedEvent,
    SchedulerEvent,
    SchedulerStatusEvent,
)
from agent_scheduler.domain.task import PausedJob, Priority, ScheduledTask, TaskState, resolve_priority
from agent_scheduler.emitters import EventEmitter, LoggingEventEmitter
from agent_scheduler.errors import ExecutionFailure, InvalidScheduleExpression, TaskNotFound
from agent_scheduler.executors.protocol import AgentExecutor
from agent_scheduler.pause import PauseController
from agent_scheduler.registry import TaskRegistry
from agent_scheduler.retry import BackoffManager
from agent_scheduler.storages.protocol import ScheduleStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SchedulerStats(BaseModel):
    is_running: bool
    scheduled_tasks_count: int
    running_agents_count: int
    queued_tasks_count: int
    paused_jobs_count: int
    max_concurrent_agents: int


class AgentScheduler:
    """
    Triggers agents on their cron schedules.

    Every ``check_interval`` seconds the tick loop takes the due tasks in priority order
    and starts as many as there are free slots. Each execution runs as its own asyncio
    task that the loop never awaits; when it finishes the registry is updated, failures
    are handed to the backoff manager, and an event is emitted.
    """

    def __init__(
        self,
        executor: AgentExecutor,
        store: ScheduleStore,
        emitter: Optional[EventEmitter] = None,
        config: Optional[SchedulerConfig] = None,
        registry: Optional[TaskRegistry] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.config: SchedulerConfig = config or SchedulerConfig()
        self.executor: AgentExecutor = executor
        self.store: ScheduleStore = store
        self.emitter: EventEmitter = emitter or LoggingEventEmitter()
        self.registry: TaskRegistry = registry or TaskRegistry()
        self.clock = clock
        self.backoff = BackoffManager(self.config, self.registry, self.store, clock)
        self.pauses = PauseController(self.registry, self.store, self._emit, clock)
        self.scheduler_task: Optional[asyncio.Task] = None
        self.is_running: bool = False
        self.job_futures: Dict[str, asyncio.Task] = {}

    @property
    def max_concurrent_agents(self) -> int:
        return self.config.max_concurrent

    def is_scheduler_running(self) -> bool:
        return self.is_running

    async def start(self):
        """
        Load persisted schedules and start the tick loop.
        """
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        await self.load_schedules()
        self.is_running = True
        if self.config.run_missed_on_startup:
            dispatched = await self.tick()
            if dispatched:
                logger.info("Dispatched %d missed run(s) on startup", len(dispatched))
        self.scheduler_task = asyncio.create_task(self._scheduler_loop())
        logger.info("Scheduler started, checking every %s seconds", self.config.check_interval)

    async def stop(self):
        """
        Stop the tick loop. Executions already in flight are left to finish.
        """
        if not self.is_running:
            logger.warning("Scheduler is not running")
            return

        self.is_running = False
        if self.scheduler_task:
            self.scheduler_task.cancel()
            try:
                await self.scheduler_task
            except asyncio.CancelledError:
                pass
            self.scheduler_task = None
        logger.info("Scheduler stopped, %d execution(s) still in flight", len(self.job_futures))

    async def wait_for_running(self):
        """
        Wait until every in-flight execution has finished and updated the registry.
        """
        while self.job_futures:
            await asyncio.gather(*list(self.job_futures.values()), return_exceptions=True)

    async def load_schedules(self) -> int:
        """
        Populate the registry from persisted schedules.

        Stored next runs that have already passed are kept when missed runs should be
        replayed, and recomputed from now otherwise.
        """
        now = self.clock()
        loaded = 0
        for record in await self.store.load_enabled_schedules():
            if record.agent_id in self.registry:
                continue
            try:
                expression = cron.validate(record.cron_expression)
            except InvalidScheduleExpression as e:
                logger.error("Skipping schedule of agent %s: %s", record.agent_id, e)
                continue

            next_run = record.next_run_at
            keep_stored = next_run is not None and (
                next_run > now or self.config.run_missed_on_startup or record.is_paused
            )
            if not keep_stored:
                next_run = cron.next_run_time(expression, now)

            self.registry.upsert(ScheduledTask(
                agent_id=record.agent_id,
                job_id=record.job_id,
                cron_expression=expression,
                priority=resolve_priority(record.priority_hint, record.agent_type),
                agent_type=record.agent_type,
                next_run_time=next_run,
                is_paused=record.is_paused,
                paused_at=record.paused_at if record.is_paused else None,
                state=TaskState.PAUSED if record.is_paused else TaskState.SCHEDULED,
            ))
            loaded += 1
        logger.info("Loaded %d scheduled agent(s)", loaded)
        return loaded

    async def _scheduler_loop(self):
        """
        Main scheduler loop that dispatches due tasks on every tick.
        """
        try:
            while self.is_running:
                await asyncio.sleep(self.config.check_interval)
                try:
                    await self.tick()
                except Exception:
                    logger.exception("Error in scheduler tick")
        except asyncio.CancelledError:
            pass

    async def tick(self) -> List[str]:
        """
        Run one dispatch cycle and return the ids of the agents it started.
        """
        now = self.clock()
        due = self.registry.all_due(now)
        slots = self.max_concurrent_agents - len(self.job_futures)
        dispatched: List[str] = []

        if due and slots <= 0:
            logger.debug("No free slots, %d due task(s) wait for the next tick", len(due))
        for task in due:
            if len(dispatched) >= slots:
                break
            if task.agent_id in self.job_futures:
                continue
            claimed = self.registry.claim(task.agent_id, now)
            if claimed is None:
                continue
            self._schedule_task_execution(claimed)
            dispatched.append(claimed.agent_id)

        self._emit(self._status_event())
        return dispatched

    def _schedule_task_execution(self, task: ScheduledTask):
        self._emit(AgentStartedEvent(
            agent_id=task.agent_id, job_id=task.job_id, priority=task.priority, timestamp=self.clock()
        ))
        logger.info("Starting agent %s (%s priority)", task.agent_id, task.priority.name)
        future = asyncio.create_task(self._execute_task(task))
        self.job_futures[task.agent_id] = future
        future.add_done_callback(functools.partial(self._handle_job_completion, task.agent_id))

    def _handle_job_completion(self, agent_id: str, future: asyncio.Future):
        if self.job_futures.get(agent_id) is future:
            del self.job_futures[agent_id]
        if future.cancelled():
            logger.warning("Execution of agent %s was cancelled", agent_id)
        elif future.exception() is not None:
            logger.error("Unhandled error after executing agent %s", agent_id, exc_info=future.exception())

    async def _execute_task(self, task: ScheduledTask):
        started = time.monotonic()
        try:
            if self.config.execution_timeout:
                await asyncio.wait_for(self.executor.execute(task.agent_id), self.config.execution_timeout)
            else:
                await self.executor.execute(task.agent_id)
        except asyncio.CancelledError:
            self._release(task.agent_id)
            raise
        except asyncio.TimeoutError:
            cause = TimeoutError(f"execution timed out after {self.config.execution_timeout}s")
            await self._handle_failure(task, ExecutionFailure(task.agent_id, cause))
        except Exception as e:
            await self._handle_failure(task, ExecutionFailure(task.agent_id, e))
        else:
            await self._handle_success(task, int((time.monotonic() - started) * 1000))

    async def _handle_success(self, task: ScheduledTask, duration_ms: int):
        now = self.clock()

        def apply(stored: ScheduledTask) -> None:
            stored.retry_count = 0
            stored.last_error = None
            stored.backoff_until = None
            stored.next_run_time = cron.next_run_time(stored.cron_expression, now)
            stored.is_running = False
            stored.last_run_at = now
            stored.state = TaskState.SUCCEEDED

        try:
            updated = self.registry.update(task.agent_id, apply)
        except TaskNotFound:
            logger.info("Agent %s completed after being unscheduled", task.agent_id)
        else:
            logger.info("Agent %s completed in %dms, next run at %s", task.agent_id, duration_ms, updated.next_run_time)
            await self._persist(self.store.save_schedule, task.agent_id, updated.cron_expression, updated.next_run_time, True)
        self._emit(AgentCompletedEvent(agent_id=task.agent_id, duration_ms=duration_ms, timestamp=now))

    async def _handle_failure(self, task: ScheduledTask, failure: ExecutionFailure):
        current = self.registry.get(task.agent_id)
        if current is None:
            logger.warning("Agent %s failed after being unscheduled: %s", task.agent_id, failure.cause)
            self._emit(AgentFailedEvent(
                agent_id=task.agent_id, error=str(failure.cause), retry_count=task.retry_count,
                will_retry=False, timestamp=self.clock(),
            ))
            return

        try:
            decision = await self.backoff.on_failure(current, failure.cause)
        except Exception:
            logger.exception("Failed to record failure of agent %s", task.agent_id)
            self._release(task.agent_id)
            self._emit(AgentFailedEvent(
                agent_id=task.agent_id, error=str(failure.cause), retry_count=current.retry_count + 1,
                will_retry=task.agent_id in self.registry, timestamp=self.clock(),
            ))
            return

        if decision.will_retry:
            await self._persist(self.store.save_schedule, task.agent_id, current.cron_expression, decision.backoff_until, True)
        self._emit(AgentFailedEvent(
            agent_id=task.agent_id,
            error=decision.error,
            retry_count=decision.retry_count,
            will_retry=decision.will_retry,
            next_attempt_at=decision.backoff_until,
            timestamp=self.clock(),
        ))

    def _release(self, agent_id: str):
        def apply(stored: ScheduledTask) -> None:
            stored.is_running = False
            if stored.state == TaskState.DISPATCHED:
                stored.state = TaskState.SCHEDULED

        try:
            self.registry.update(agent_id, apply)
        except TaskNotFound:
            pass

    async def _persist(self, operation: Callable[..., Any], *args: Any):
        try:
            await operation(*args)
        except Exception:
            logger.exception("Failed to persist %s for agent %s", operation.__name__, args[0])

    def _emit(self, event: SchedulerEvent):
        try:
            self.emitter.emit(event)
        except Exception:
            logger.exception("Failed to emit %s event", event.type.value)

    def _status_event(self) -> SchedulerStatusEvent:
        stats = self.get_stats()
        return SchedulerStatusEvent(
            scheduled_count=stats.scheduled_tasks_count,
            running_count=stats.running_agents_count,
            queued_count=stats.queued_tasks_count,
            paused_count=stats.paused_jobs_count,
            max_concurrent=stats.max_concurrent_agents,
            is_running=stats.is_running,
            timestamp=self.clock(),
        )

    def report_progress(self, agent_id: str, percent: float, message: str = ""):
        """
        Forward a progress update from an executor to observers.
        """
        self._emit(AgentProgressEvent(agent_id=agent_id, percent=percent, message=message, timestamp=self.clock()))

    async def schedule_agent(
        self,
        agent_id: str,
        cron_expression: str,
        priority: Union[Priority, int, str, None] = None,
        enabled: bool = True,
        job_id: Optional[str] = None,
        agent_type: Optional[str] = None,
    ) -> Optional[ScheduledTask]:
        """
        Create or replace the schedule of an agent. With ``enabled=False`` the agent is
        taken off the schedule and a disabled schedule is persisted.

        The store is written before the registry, so a failed write leaves the
        registry as it was.

        Raises:
            InvalidScheduleExpression: If the cron expression is malformed. Nothing is changed.
        """
        expression = cron.validate(cron_expression)

        if not enabled:
            await self.store.save_schedule(agent_id, expression, None, False)
            self.registry.remove(agent_id)
            logger.info("Disabled schedule of agent %s", agent_id)
            return None

        now = self.clock()
        next_run = cron.next_run_time(expression, now)
        explicit = Priority.parse(priority)

        await self.store.save_schedule(
            agent_id, expression, next_run, True,
            priority=explicit.name.lower() if explicit is not None else None,
            job_id=job_id,
            agent_type=agent_type,
        )

        def apply(stored: ScheduledTask) -> None:
            stored.cron_expression = expression
            stored.priority = resolve_priority(
                explicit if explicit is not None else stored.priority, agent_type
            )
            stored.agent_type = agent_type or stored.agent_type
            stored.job_id = job_id or stored.job_id
            stored.next_run_time = next_run
            stored.retry_count = 0
            stored.last_error = None
            stored.backoff_until = None

        try:
            task = self.registry.update(agent_id, apply)
        except TaskNotFound:
            # an execution started before an unschedule may still be running
            in_flight = agent_id in self.job_futures
            task = self.registry.upsert(ScheduledTask(
                agent_id=agent_id,
                job_id=job_id,
                cron_expression=expression,
                priority=resolve_priority(explicit, agent_type),
                agent_type=agent_type,
                next_run_time=next_run,
                is_running=in_flight,
                state=TaskState.DISPATCHED if in_flight else TaskState.SCHEDULED,
            ))

        logger.info("Scheduled agent %s with '%s' (%s priority), next run at %s",
                    agent_id, expression, task.priority.name, next_run)
        return task

    async def unschedule_agent(self, agent_id: str) -> ScheduledTask:
        if agent_id not in self.registry:
            raise TaskNotFound(agent_id)
        await self.store.clear_schedule(agent_id)
        removed = self.registry.remove(agent_id)
        if removed is None:
            raise TaskNotFound(agent_id)
        logger.info("Unscheduled agent %s", agent_id)
        return removed

    async def pause_job(self, agent_id: str, job_id: Optional[str] = None) -> ScheduledTask:
        return await self.pauses.pause(agent_id, job_id)

    async def resume_job(self, agent_id: str, job_id: Optional[str] = None) -> ScheduledTask:
        return await self.pauses.resume(agent_id, job_id)

    def list_paused_jobs(self) -> List[PausedJob]:
        return self.pauses.list_paused()

    def calculate_next_run_time(self, cron_expression: str) -> datetime:
        return cron.next_run_time(cron_expression, self.clock())

    def get_stats(self) -> SchedulerStats:
        return SchedulerStats(
            is_running=self.is_running,
            scheduled_tasks_count=len(self.registry),
            running_agents_count=len(self.job_futures),
            queued_tasks_count=len(self.registry.all_due(self.clock())),
            paused_jobs_count=len(self.registry.paused()),
            max_concurrent_agents=self.max_concurrent_agents,
        )

    def get_task_details(self) -> List[ScheduledTask]:
        return self.registry.all()
