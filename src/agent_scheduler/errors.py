from typing import Optional


class SchedulerError(Exception):
    """
    Base class for all scheduler errors.
    """


class InvalidScheduleExpression(SchedulerError, ValueError):
    def __init__(self, expression: str, reason: Optional[str] = None):
        self.expression = expression
        message = f"Invalid cron expression: {expression}"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class TaskNotFound(SchedulerError, LookupError):
    def __init__(self, agent_id: str, job_id: Optional[str] = None):
        self.agent_id = agent_id
        self.job_id = job_id
        if job_id and job_id != agent_id:
            message = f"No scheduled task for agent '{agent_id}' with job '{job_id}'"
        else:
            message = f"No scheduled task for agent '{agent_id}'"
        super().__init__(message)


class TaskRunning(SchedulerError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Cannot pause agent '{agent_id}' while it is running")


class NotPaused(SchedulerError):
    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' is not paused")


class ExecutionFailure(SchedulerError):
    """
    Raised inside the dispatcher when an executor call fails. Never escapes to
    callers of the management operations.
    """

    def __init__(self, agent_id: str, cause: BaseException):
        self.agent_id = agent_id
        self.cause = cause
        super().__init__(f"Execution of agent '{agent_id}' failed: {cause}")


class RetryExhausted(SchedulerError):
    def __init__(self, agent_id: str, attempts: int, last_error: Optional[str] = None):
        self.agent_id = agent_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Agent '{agent_id}' failed {attempts} times, giving up: {last_error}"
        )
