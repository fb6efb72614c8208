from datetime import datetime, timezone
from typing import Optional

from croniter import croniter, CroniterError

from agent_scheduler.errors import InvalidScheduleExpression

CRON_FIELDS = 5


def _ensure_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def validate(cron_expression: str) -> str:
    """
    Check that the expression is standard 5-field cron syntax and return it stripped.

    Raises:
        InvalidScheduleExpression: If the expression cannot be parsed.
    """
    if not isinstance(cron_expression, str) or not cron_expression.strip():
        raise InvalidScheduleExpression(str(cron_expression), "empty expression")

    expression = cron_expression.strip()
    fields = expression.split()
    if len(fields) == 6:
        raise InvalidScheduleExpression(expression, "expressions with seconds are not supported")
    if len(fields) != CRON_FIELDS:
        raise InvalidScheduleExpression(expression, f"expected {CRON_FIELDS} fields, got {len(fields)}")
    if not croniter.is_valid(expression):
        raise InvalidScheduleExpression(expression)
    return expression


def next_run_time(cron_expression: str, from_instant: Optional[datetime] = None) -> datetime:
    """
    Compute the first trigger instant strictly after ``from_instant``.

    Naive datetimes are interpreted as UTC; the result is always timezone-aware UTC.
    """
    expression = validate(cron_expression)
    base = _ensure_utc(from_instant or datetime.now(timezone.utc))
    try:
        nxt = croniter(expression, base).get_next(datetime)
    except (CroniterError, ValueError, KeyError) as e:
        raise InvalidScheduleExpression(expression, str(e)) from e
    return _ensure_utc(nxt)
