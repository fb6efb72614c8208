import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Set

import pytest
import pytest_asyncio

from agent_scheduler.config import SchedulerConfig
from agent_scheduler.emitters import InProcessEventEmitter
from agent_scheduler.scheduler import AgentScheduler
from agent_scheduler.storages.sqlalchemy import InMemoryScheduleStore


START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class ScriptedExecutor:
    """
    Records every call. Fails when ``fail`` is set and blocks on ``gate`` when one is given.
    """

    def __init__(self, fail: bool = False, gate: Optional[asyncio.Event] = None, delay: float = 0):
        self.calls: List[str] = []
        self.fail = fail
        self.gate = gate
        self.delay = delay

    async def execute(self, agent_id: str):
        self.calls.append(agent_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError(f"agent {agent_id} crashed")
        return {"agent_id": agent_id}


class FailingStore(InMemoryScheduleStore):
    """
    In-memory store whose operations named in ``fail_on`` raise ``OSError``.
    """

    def __init__(self):
        super().__init__()
        self.fail_on: Set[str] = set()

    def _check(self, operation: str):
        if operation in self.fail_on:
            raise OSError(f"{operation} failed: database is locked")

    async def save_schedule(self, agent_id, *args, **kwargs):
        self._check("save_schedule")
        await super().save_schedule(agent_id, *args, **kwargs)

    async def clear_schedule(self, agent_id):
        self._check("clear_schedule")
        await super().clear_schedule(agent_id)

    async def save_pause_state(self, agent_id, is_paused, paused_at):
        self._check("save_pause_state")
        await super().save_pause_state(agent_id, is_paused, paused_at)


async def run_tick(scheduler: AgentScheduler) -> List[str]:
    dispatched = await scheduler.tick()
    await scheduler.wait_for_running()
    return dispatched


@pytest.fixture(scope="function")
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="function")
def emitter() -> InProcessEventEmitter:
    return InProcessEventEmitter()


@pytest.fixture(scope="function")
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture(scope="function")
def config() -> SchedulerConfig:
    return SchedulerConfig(check_interval=1, max_concurrent=2, max_retries=3, backoff_base=1, backoff_max=300)


@pytest_asyncio.fixture(scope="function")
async def store():
    store = InMemoryScheduleStore()
    await store.create_tables()
    yield store
    await store.dispose()


@pytest.fixture(scope="function")
def scheduler(executor, store, emitter, config, clock) -> AgentScheduler:
    return AgentScheduler(executor, store, emitter=emitter, config=config, clock=clock)


@pytest_asyncio.fixture(scope="function")
async def failing_store():
    store = FailingStore()
    await store.create_tables()
    yield store
    await store.dispose()
