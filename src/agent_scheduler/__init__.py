"""
Agent Scheduling System

This module triggers long-running agents on cron cadences.

Core Concepts:

ScheduledTask:
    The recurring schedule of one agent: its cron expression, priority, next run time
    and retry/pause state. A task is identified by the agent it triggers.

Execution:
    A single run of an agent, started by the scheduler when the task is due and a
    concurrency slot is free. Executions run concurrently and report back when done.

Relationships:
    - A ScheduledTask produces one execution per due tick, never two at once.
    - Failed executions are retried with exponential backoff until the retry budget
      is spent, after which the task is removed from the schedule.
"""

from .config import SchedulerConfig
from .domain import ScheduledTask, Priority, TaskState, PausedJob
from .errors import (
    SchedulerError,
    InvalidScheduleExpression,
    TaskNotFound,
    TaskRunning,
    NotPaused,
    ExecutionFailure,
    RetryExhausted,
)
from .registry import TaskRegistry
from .scheduler import AgentScheduler, SchedulerStats
from .bootstrap import create_scheduler

__all__ = [
    "SchedulerConfig", "ScheduledTask", "Priority", "TaskState", "PausedJob",
    "SchedulerError", "InvalidScheduleExpression", "TaskNotFound", "TaskRunning",
    "NotPaused", "ExecutionFailure", "RetryExhausted", "TaskRegistry",
    "AgentScheduler", "SchedulerStats", "create_scheduler",
]
