"""Durable retry queue and the worker that replays it."""

from .backoff import DEFAULT_BACKOFF, BackoffPolicy, backoff
from .processor import ReplayOutcome, RetryProcessor, build_booking_equipment
from .queue import ActionStore

__all__ = [
    "DEFAULT_BACKOFF",
    "ActionStore",
    "BackoffPolicy",
    "ReplayOutcome",
    "RetryProcessor",
    "backoff",
    "build_booking_equipment",
]
