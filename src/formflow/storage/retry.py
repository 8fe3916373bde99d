"""Retry utilities for storage operations.

Provides exponential backoff retry for transient database failures
(lost connections, locked SQLite files). Constraint violations and other
programming errors are not retried.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from formflow.exceptions import StorageError

logger = logging.getLogger(__name__)


def is_transient(error: BaseException) -> bool:
    """Check whether a storage failure is worth retrying."""
    cause = error.__cause__ if isinstance(error, StorageError) else error
    if isinstance(cause, OperationalError):
        return True
    return isinstance(cause, DBAPIError) and cause.connection_invalidated


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Retrying database operation",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Decorator for retrying transient database errors
db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception(is_transient),
    before_sleep=_log_retry,
    reraise=True,
)

__all__ = ["db_retry", "is_transient"]
