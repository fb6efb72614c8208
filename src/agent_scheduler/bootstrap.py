import logging
from typing import Optional

from agent_scheduler.config import SchedulerConfig
from agent_scheduler.emitters import EventEmitter
from agent_scheduler.executors.protocol import AgentExecutor
from agent_scheduler.scheduler import AgentScheduler
from agent_scheduler.storages.protocol import ScheduleStore
from agent_scheduler.storages.sqlalchemy import SqlAlchemyScheduleStore

logger = logging.getLogger(__name__)


async def create_scheduler(
    executor: AgentExecutor,
    store: ScheduleStore,
    emitter: Optional[EventEmitter] = None,
    config: Optional[SchedulerConfig] = None,
) -> AgentScheduler:
    """
    Build the scheduler once at process start and hand it to whatever needs it.
    Starts it right away when ``config.auto_start`` is set.
    """
    config = config or SchedulerConfig()
    if isinstance(store, SqlAlchemyScheduleStore):
        await store.create_tables()

    scheduler = AgentScheduler(executor, store, emitter=emitter, config=config)
    if config.auto_start:
        await scheduler.start()
    logger.info(
        "Agent scheduler ready (max_concurrent=%d, max_retries=%d, auto_start=%s)",
        config.max_concurrent, config.max_retries, config.auto_start,
    )
    return scheduler
