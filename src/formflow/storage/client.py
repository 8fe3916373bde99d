"""SQL storage client for FormFlow.

This module provides the FormflowStorage class that combines all storage
operations through mixins.

Example:
    ```python
    from formflow.storage import FormflowStorage

    async with FormflowStorage("sqlite+aiosqlite:///formflow.sqlite") as storage:
        record = await storage.insert_retry(record)
        due = await storage.get_due_retries(limit=10, now=utcnow())
    ```
"""

from __future__ import annotations

from typing import Any

from .logs import LogMixin
from .records import RecordsMixin
from .retry_records import RetryRecordMixin
from .sql import StorageBase
from .webhook import WebhookMixin


class FormflowStorage(RetryRecordMixin, WebhookMixin, RecordsMixin, LogMixin, StorageBase):
    """Async SQL storage for FormFlow dispatch.

    This class combines functionality from multiple mixins:
    - RetryRecordMixin: insert_retry, get_due_retries, claim_retry, update_retry, ...
    - WebhookMixin: save_webhook, get_webhooks_for_event, record_delivery_outcome
    - RecordsMixin: get_instance, get_submission, update_submission, ...
    - LogMixin: append_log, get_logs

    Any SQLAlchemy async driver works; development uses SQLite via aiosqlite.
    """

    async def __aenter__(self) -> FormflowStorage:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()
