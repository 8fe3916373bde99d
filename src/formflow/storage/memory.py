"""In-memory storage backend.

Implements the same interface as FormflowStorage with plain dictionaries.
Suitable for tests and single-process use; nothing survives a restart.
Records are copied on the way in and out so callers never share state
with the store.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import TYPE_CHECKING, Any

from formflow.logging import redact
from formflow.models import (
    Instance,
    LogEntry,
    RetryRecord,
    RetryStatus,
    Submission,
    WebhookEndpoint,
    generate_id,
    utcnow,
)

if TYPE_CHECKING:
    from formflow.models import LogLevel


class InMemoryStorage:
    """Dictionary-backed storage with FormflowStorage's interface."""

    def __init__(self, max_logs: int = 10_000) -> None:
        self._retries: dict[str, RetryRecord] = {}
        self._instances: dict[str, Instance] = {}
        self._submissions: dict[str, Submission] = {}
        self._webhooks: dict[str, WebhookEndpoint] = {}
        self._logs: deque[LogEntry] = deque(maxlen=max_logs)

    async def initialize(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def __aenter__(self) -> InMemoryStorage:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # Retry records

    async def insert_retry(self, record: RetryRecord) -> RetryRecord:
        stored = record.model_copy(update={"id": record.id or generate_id("rty")})
        self._retries[stored.id] = stored  # type: ignore[index]
        return stored.model_copy()

    async def get_retry(self, record_id: str) -> RetryRecord | None:
        record = self._retries.get(record_id)
        return record.model_copy() if record else None

    async def get_due_retries(self, limit: int, now: datetime) -> list[RetryRecord]:
        due = [record for record in self._retries.values() if record.is_due(now)]
        due.sort(key=lambda record: (record.next_retry_at, record.created_at))
        return [record.model_copy() for record in due[:limit]]

    async def claim_retry(self, record_id: str, now: datetime) -> bool:
        record = self._retries.get(record_id)
        if record is None or record.status != RetryStatus.PENDING:
            return False
        self._retries[record_id] = record.model_copy(
            update={"status": RetryStatus.PROCESSING, "updated_at": now}
        )
        return True

    async def update_retry(self, record_id: str, fields: dict[str, Any]) -> RetryRecord | None:
        record = self._retries.get(record_id)
        if record is None:
            return None
        changes = {"updated_at": utcnow(), **fields}
        # Validate so a bad update cannot break the retry_count bound
        updated = RetryRecord.model_validate({**record.model_dump(), **changes})
        self._retries[record_id] = updated
        return updated.model_copy()

    async def reclaim_stale_retries(self, cutoff: datetime, now: datetime) -> int:
        reclaimed = 0
        for record_id, record in list(self._retries.items()):
            if record.status == RetryStatus.PROCESSING and record.updated_at < cutoff:
                self._retries[record_id] = record.model_copy(
                    update={
                        "status": RetryStatus.PENDING,
                        "next_retry_at": now,
                        "updated_at": now,
                    }
                )
                reclaimed += 1
        return reclaimed

    async def find_inflight(self, submission_ref: str) -> RetryRecord | None:
        for record in sorted(self._retries.values(), key=lambda r: r.created_at, reverse=True):
            if record.submission_ref == submission_ref and record.status in (
                RetryStatus.PENDING,
                RetryStatus.PROCESSING,
            ):
                return record.model_copy()
        return None

    async def count_retries_by_status(
        self, instance_ref: str | None = None
    ) -> dict[RetryStatus, int]:
        counts = {status: 0 for status in RetryStatus}
        for record in self._retries.values():
            if instance_ref is None or record.instance_ref == instance_ref:
                counts[record.status] += 1
        return counts

    # Instances and submissions

    async def get_instance(self, instance_id: str) -> Instance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def save_instance(self, instance: Instance) -> str:
        self._instances[instance.id] = instance.model_copy(deep=True)
        return instance.id

    async def get_submission(self, submission_id: str) -> Submission | None:
        submission = self._submissions.get(submission_id)
        return submission.model_copy(deep=True) if submission else None

    async def save_submission(self, submission: Submission) -> str:
        self._submissions[submission.id] = submission.model_copy(deep=True)
        return submission.id

    async def update_submission(self, submission_id: str, fields: dict[str, Any]) -> bool:
        submission = self._submissions.get(submission_id)
        if submission is None:
            return False
        self._submissions[submission_id] = Submission.model_validate(
            {**submission.model_dump(), **fields}
        )
        return True

    # Webhooks

    async def save_webhook(self, endpoint: WebhookEndpoint) -> str:
        self._webhooks[endpoint.id] = endpoint.model_copy(deep=True)
        return endpoint.id

    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None:
        endpoint = self._webhooks.get(webhook_id)
        return endpoint.model_copy(deep=True) if endpoint else None

    async def get_webhooks_for_event(
        self, event: str, instance_id: str | None = None
    ) -> list[WebhookEndpoint]:
        return [
            endpoint.model_copy(deep=True)
            for _, endpoint in sorted(self._webhooks.items())
            if endpoint.subscribes_to(event, instance_id)
        ]

    async def record_delivery_outcome(self, webhook_id: str, success: bool) -> None:
        endpoint = self._webhooks.get(webhook_id)
        if endpoint is None:
            return
        counter = "success_count" if success else "failure_count"
        self._webhooks[webhook_id] = endpoint.model_copy(
            update={counter: getattr(endpoint, counter) + 1, "last_triggered_at": utcnow()}
        )

    # Logs

    async def append_log(
        self,
        level: LogLevel,
        message: str,
        context: dict[str, Any] | None = None,
        instance_id: str | None = None,
    ) -> None:
        self._logs.append(
            LogEntry(
                level=level,
                message=message,
                context=redact(context or {}),
                instance_id=instance_id,
            )
        )

    async def get_logs(self, instance_id: str | None = None, limit: int = 100) -> list[LogEntry]:
        entries = [
            entry
            for entry in reversed(self._logs)
            if instance_id is None or entry.instance_id == instance_id
        ]
        return entries[:limit]


__all__ = ["InMemoryStorage"]
