import asyncio
import logging
import random

from agent_scheduler import AgentScheduler, Priority, SchedulerConfig, create_scheduler
from agent_scheduler.domain.events import SchedulerEvent
from agent_scheduler.emitters import InProcessEventEmitter
from agent_scheduler.storages.sqlalchemy import InMemoryScheduleStore

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")


class FlakyExecutor:
    """
    Pretends to run an agent, failing now and then so retries show up in the output.
    """

    def __init__(self):
        self.scheduler: AgentScheduler | None = None

    async def execute(self, agent_id: str) -> None:
        for percent in (25, 50, 75):
            await asyncio.sleep(0.5)
            if self.scheduler:
                self.scheduler.report_progress(agent_id, percent, "working")
        if random.random() < 0.3:
            raise RuntimeError("upstream model timed out")


def print_event(event: SchedulerEvent) -> None:
    print(f"[{event.type.value}] {event.model_dump(mode='json', exclude={'type', 'timestamp'})}")


async def main():
    emitter = InProcessEventEmitter()
    emitter.subscribe(print_event)
    executor = FlakyExecutor()
    store = InMemoryScheduleStore()

    config = SchedulerConfig(check_interval=5, max_concurrent=2, auto_start=True, backoff_base=5)
    scheduler = await create_scheduler(executor, store, emitter=emitter, config=config)
    executor.scheduler = scheduler

    await scheduler.schedule_agent("support-bot", "* * * * *", agent_type="CUSTOMER_SUPPORT")
    await scheduler.schedule_agent("weekly-report", "* * * * *", Priority.LOW)
    await scheduler.schedule_agent("trend-scan", "*/2 * * * *", "critical")

    try:
        await asyncio.sleep(180)
    finally:
        await scheduler.stop()
        await scheduler.wait_for_running()
        await store.dispose()


if __name__ == "__main__":
    asyncio.run(main())
