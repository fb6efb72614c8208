from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerConfig(BaseSettings):
    """
    Immutable scheduler settings. Every field can be overridden from the
    environment with the ``SCHEDULER_`` prefix, e.g. ``SCHEDULER_MAX_CONCURRENT=10``.
    Durations are in seconds.
    """
    model_config = SettingsConfigDict(env_prefix="SCHEDULER_", frozen=True, extra="ignore")

    check_interval: float = Field(default=60.0, ge=1.0, description="Seconds between dispatch ticks")
    max_concurrent: int = Field(default=5, ge=1, description="Maximum number of agents executing at once")
    max_retries: int = Field(default=3, ge=0, description="Retries allowed before a task fails terminally")
    backoff_base: float = Field(default=1.0, ge=0.0, description="Delay before the first retry")
    backoff_max: float = Field(default=300.0, ge=0.0, description="Upper bound on any retry delay")
    auto_start: bool = Field(default=False, description="Start the tick loop as soon as the scheduler is created")
    run_missed_on_startup: bool = Field(default=False, description="Dispatch runs missed while the process was down")
    execution_timeout: Optional[float] = Field(
        default=None, gt=0.0, description="Fail executions that run longer than this; unset means no limit"
    )

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "SchedulerConfig":
        if self.backoff_max < self.backoff_base:
            raise ValueError("backoff_max must be greater than or equal to backoff_base")
        return self
