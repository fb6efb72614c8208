import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, DateTime, Boolean, JSON
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.future import select

from agent_scheduler.storages.protocol import ScheduleRecord, ScheduleStore

logger = logging.getLogger(__name__)

Base = declarative_base()

STATUS_IDLE = "IDLE"
STATUS_ERROR = "ERROR"


class AgentScheduleModel(Base):
    __tablename__ = 'agent_schedules'

    agent_id = Column(String, primary_key=True)
    agent_type = Column(String)
    configuration = Column(JSON)
    status = Column(String, nullable=False, default=STATUS_IDLE)
    schedule_expression = Column(String)
    schedule_enabled = Column(Boolean, nullable=False, default=False)
    next_run_at = Column(DateTime(timezone=True))
    is_paused = Column(Boolean, nullable=False, default=False)
    paused_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlAlchemyScheduleStore(ScheduleStore):
    def __init__(self, db_url: str):
        self.engine = create_async_engine(db_url)
        self.async_session = sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    async def create_tables(self):
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        await self.engine.dispose()

    async def register_agent(
        self,
        agent_id: str,
        agent_type: Optional[str] = None,
        configuration: Optional[Dict[str, Any]] = None,
        cron_expression: Optional[str] = None,
        enabled: bool = False,
        next_run_at: Optional[datetime] = None,
        is_paused: bool = False,
    ) -> str:
        """
        Insert or replace an agent row. Agents are normally owned by another service;
        this exists for seeding and tests.
        """
        async with self.async_session() as session:
            db_agent = await session.get(AgentScheduleModel, agent_id)
            if db_agent is None:
                db_agent = AgentScheduleModel(agent_id=agent_id)
                session.add(db_agent)
            db_agent.agent_type = agent_type
            db_agent.configuration = configuration
            db_agent.status = STATUS_IDLE
            db_agent.schedule_expression = cron_expression
            db_agent.schedule_enabled = enabled
            db_agent.next_run_at = next_run_at
            db_agent.is_paused = is_paused
            db_agent.updated_at = datetime.now(timezone.utc)
            await session.commit()
            return agent_id

    async def get_agent(self, agent_id: str) -> Optional[AgentScheduleModel]:
        async with self.async_session() as session:
            return await session.get(AgentScheduleModel, agent_id)

    async def load_enabled_schedules(self) -> List[ScheduleRecord]:
        async with self.async_session() as session:
            result = await session.execute(
                select(AgentScheduleModel)
                .filter(AgentScheduleModel.schedule_enabled.is_(True))
                .filter(AgentScheduleModel.schedule_expression.isnot(None))
                .order_by(AgentScheduleModel.agent_id)
            )
            return [self._db_to_record(db_agent) for db_agent in result.scalars()]

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
        async with self.async_session() as session:
            db_agent = await session.get(AgentScheduleModel, agent_id)
            if db_agent is None:
                db_agent = AgentScheduleModel(agent_id=agent_id, status=STATUS_IDLE)
                session.add(db_agent)
            db_agent.schedule_expression = cron_expression
            db_agent.schedule_enabled = enabled
            db_agent.next_run_at = next_run_time if enabled else None
            if not enabled:
                db_agent.is_paused = False
                db_agent.paused_at = None
            if agent_type is not None:
                db_agent.agent_type = agent_type
            overrides = {key: value for key, value in (("priority", priority), ("job_id", job_id)) if value is not None}
            if overrides:
                # JSON columns only notice reassignment, not in-place mutation
                db_agent.configuration = {**(db_agent.configuration or {}), **overrides}
            db_agent.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def clear_schedule(self, agent_id: str) -> None:
        async with self.async_session() as session:
            db_agent = await session.get(AgentScheduleModel, agent_id)
            if db_agent is None:
                logger.debug("clear_schedule: unknown agent %s", agent_id)
                return
            db_agent.schedule_enabled = False
            db_agent.next_run_at = None
            db_agent.is_paused = False
            db_agent.paused_at = None
            db_agent.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def mark_terminal_failure(self, agent_id: str) -> None:
        async with self.async_session() as session:
            db_agent = await session.get(AgentScheduleModel, agent_id)
            if db_agent is None:
                logger.debug("mark_terminal_failure: unknown agent %s", agent_id)
                return
            db_agent.status = STATUS_ERROR
            db_agent.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def save_pause_state(self, agent_id: str, is_paused: bool, paused_at: Optional[datetime]) -> None:
        async with self.async_session() as session:
            db_agent = await session.get(AgentScheduleModel, agent_id)
            if db_agent is None:
                logger.debug("save_pause_state: unknown agent %s", agent_id)
                return
            db_agent.is_paused = is_paused
            db_agent.paused_at = paused_at if is_paused else None
            db_agent.updated_at = datetime.now(timezone.utc)
            await session.commit()

    def _db_to_record(self, db_agent: AgentScheduleModel) -> ScheduleRecord:
        configuration = db_agent.configuration or {}
        priority_hint = configuration.get("priority") if isinstance(configuration, dict) else None
        return ScheduleRecord(
            agent_id=db_agent.agent_id,
            cron_expression=db_agent.schedule_expression,
            priority_hint=str(priority_hint) if priority_hint is not None else None,
            is_paused=bool(db_agent.is_paused),
            job_id=configuration.get("job_id") if isinstance(configuration, dict) else None,
            agent_type=db_agent.agent_type,
            next_run_at=_as_utc(db_agent.next_run_at),
            paused_at=_as_utc(db_agent.paused_at),
        )


class InMemoryScheduleStore(SqlAlchemyScheduleStore):
    def __init__(self):
        super().__init__("sqlite+aiosqlite:///:memory:")
