"""Storage interfaces consumed by the dispatch subsystem.

Two backends implement both protocols: ``FormflowStorage`` (SQLAlchemy,
any async driver) and ``InMemoryStorage`` (tests and single-process use).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from formflow.models import (
        Instance,
        LogEntry,
        LogLevel,
        RetryRecord,
        RetryStatus,
        Submission,
        WebhookEndpoint,
    )


@runtime_checkable
class RetryBackend(Protocol):
    """Persistence for retry records.

    ``claim_retry`` must be a conditional update: it succeeds only for a
    record that is still ``pending``, so two concurrent claimers cannot
    both win the same record.
    """

    @abstractmethod
    async def insert_retry(self, record: RetryRecord) -> RetryRecord:
        """Persist a new record and return it with its assigned ID."""
        ...

    @abstractmethod
    async def get_retry(self, record_id: str) -> RetryRecord | None: ...

    @abstractmethod
    async def get_due_retries(self, limit: int, now: datetime) -> list[RetryRecord]:
        """Pending records with ``next_retry_at <= now``, oldest due first."""
        ...

    @abstractmethod
    async def claim_retry(self, record_id: str, now: datetime) -> bool:
        """Move a pending record to processing. Returns False if it was not pending."""
        ...

    @abstractmethod
    async def update_retry(self, record_id: str, fields: dict[str, Any]) -> RetryRecord | None:
        """Apply field changes, refresh ``updated_at`` and return the new state."""
        ...

    @abstractmethod
    async def reclaim_stale_retries(self, cutoff: datetime, now: datetime) -> int:
        """Return processing records last updated before ``cutoff`` to pending."""
        ...

    @abstractmethod
    async def find_inflight(self, submission_ref: str) -> RetryRecord | None:
        """A pending or processing record for the submission, if any."""
        ...

    @abstractmethod
    async def count_retries_by_status(
        self, instance_ref: str | None = None
    ) -> dict[RetryStatus, int]: ...


@runtime_checkable
class Repository(Protocol):
    """Host platform records: instances, submissions, webhooks and logs."""

    @abstractmethod
    async def get_instance(self, instance_id: str) -> Instance | None: ...

    @abstractmethod
    async def save_instance(self, instance: Instance) -> str: ...

    @abstractmethod
    async def get_submission(self, submission_id: str) -> Submission | None: ...

    @abstractmethod
    async def save_submission(self, submission: Submission) -> str: ...

    @abstractmethod
    async def update_submission(self, submission_id: str, fields: dict[str, Any]) -> bool: ...

    @abstractmethod
    async def save_webhook(self, endpoint: WebhookEndpoint) -> str: ...

    @abstractmethod
    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None: ...

    @abstractmethod
    async def get_webhooks_for_event(
        self, event: str, instance_id: str | None = None
    ) -> list[WebhookEndpoint]:
        """Active endpoints subscribed to ``event`` for the instance or globally."""
        ...

    @abstractmethod
    async def record_delivery_outcome(self, webhook_id: str, success: bool) -> None:
        """Bump the success or failure counter and ``last_triggered_at``."""
        ...

    @abstractmethod
    async def append_log(
        self,
        level: LogLevel,
        message: str,
        context: dict[str, Any] | None = None,
        instance_id: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def get_logs(
        self, instance_id: str | None = None, limit: int = 100
    ) -> list[LogEntry]:
        """Most recent log entries first."""
        ...


class Storage(RetryBackend, Repository, Protocol):
    """A backend providing both retry persistence and repository access."""

    async def initialize(self) -> None: ...

    async def close(self) -> None: ...


__all__ = ["Repository", "RetryBackend", "Storage"]
