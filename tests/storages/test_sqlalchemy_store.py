from datetime import datetime, timedelta, timezone

import pytest

from agent_scheduler.storages.sqlalchemy import STATUS_ERROR, STATUS_IDLE, SqlAlchemyScheduleStore


NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_register_and_load_enabled_schedules(store: SqlAlchemyScheduleStore) -> None:
    await store.register_agent(
        "a", agent_type="CUSTOMER_SUPPORT", configuration={"priority": "high", "job_id": "a-job"},
        cron_expression="*/5 * * * *", enabled=True, next_run_at=NOW,
    )
    await store.register_agent("b", cron_expression="0 * * * *", enabled=False)
    await store.register_agent("c", enabled=True)

    records = await store.load_enabled_schedules()

    assert len(records) == 1
    record = records[0]
    assert record.agent_id == "a"
    assert record.cron_expression == "*/5 * * * *"
    assert record.priority_hint == "high"
    assert record.job_id == "a-job"
    assert record.agent_type == "CUSTOMER_SUPPORT"
    assert record.next_run_at == NOW
    assert record.is_paused is False


@pytest.mark.asyncio
async def test_save_schedule_creates_and_updates(store: SqlAlchemyScheduleStore) -> None:
    await store.save_schedule("a", "*/5 * * * *", NOW, True)
    db_agent = await store.get_agent("a")
    assert db_agent.schedule_enabled is True
    assert db_agent.status == STATUS_IDLE

    later = NOW + timedelta(minutes=5)
    await store.save_schedule("a", "*/5 * * * *", later, True)
    records = await store.load_enabled_schedules()
    assert [r.next_run_at for r in records] == [later]

    await store.save_schedule("a", "*/5 * * * *", later, False)
    db_agent = await store.get_agent("a")
    assert db_agent.schedule_enabled is False
    assert db_agent.next_run_at is None
    assert await store.load_enabled_schedules() == []


@pytest.mark.asyncio
async def test_clear_schedule(store: SqlAlchemyScheduleStore) -> None:
    await store.register_agent("a", cron_expression="*/5 * * * *", enabled=True, next_run_at=NOW, is_paused=True)

    await store.clear_schedule("a")

    db_agent = await store.get_agent("a")
    assert db_agent.schedule_enabled is False
    assert db_agent.next_run_at is None
    assert db_agent.is_paused is False
    assert db_agent.schedule_expression == "*/5 * * * *"


@pytest.mark.asyncio
async def test_mark_terminal_failure(store: SqlAlchemyScheduleStore) -> None:
    await store.register_agent("a", cron_expression="*/5 * * * *", enabled=True)

    await store.mark_terminal_failure("a")

    assert (await store.get_agent("a")).status == STATUS_ERROR


@pytest.mark.asyncio
async def test_save_pause_state(store: SqlAlchemyScheduleStore) -> None:
    await store.register_agent("a", cron_expression="*/5 * * * *", enabled=True)

    await store.save_pause_state("a", True, NOW)
    records = await store.load_enabled_schedules()
    assert records[0].is_paused is True
    assert records[0].paused_at == NOW

    await store.save_pause_state("a", False, None)
    records = await store.load_enabled_schedules()
    assert records[0].is_paused is False
    assert records[0].paused_at is None


@pytest.mark.asyncio
async def test_unknown_agent_operations_are_noops(store: SqlAlchemyScheduleStore) -> None:
    await store.clear_schedule("missing")
    await store.mark_terminal_failure("missing")
    await store.save_pause_state("missing", True, NOW)

    assert await store.get_agent("missing") is None


@pytest.mark.asyncio
async def test_save_schedule_keeps_priority_and_job_id(store: SqlAlchemyScheduleStore) -> None:
    await store.register_agent("a", configuration={"model": "gpt"})

    await store.save_schedule("a", "*/5 * * * *", NOW, True, priority="critical", job_id="nightly", agent_type="SEO_SPECIALIST")
    await store.save_schedule("a", "0 * * * *", NOW, True)

    record = (await store.load_enabled_schedules())[0]
    assert record.cron_expression == "0 * * * *"
    assert record.priority_hint == "critical"
    assert record.job_id == "nightly"
    assert record.agent_type == "SEO_SPECIALIST"
    assert (await store.get_agent("a")).configuration["model"] == "gpt"
