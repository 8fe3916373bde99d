"""Task scheduling with durable, immediate and degraded execution."""

from .executors import (
    DBOSExecutor,
    DegradedTimerExecutor,
    Executor,
    ImmediateExecutor,
    dbos_available,
    detect_executor,
)
from .handlers import ActionHandlers
from .scheduler import DEFAULT_GROUP, Scheduler

__all__ = [
    "DEFAULT_GROUP",
    "ActionHandlers",
    "DBOSExecutor",
    "DegradedTimerExecutor",
    "Executor",
    "ImmediateExecutor",
    "Scheduler",
    "dbos_available",
    "detect_executor",
]
