"""Durable retry queue for failed submission operations.

Records move through ``pending -> processing -> {completed | pending | failed}``.
Claiming is a conditional update, so a record handed out by ``get_due`` is
never handed out again until its outcome is recorded or it goes stale.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from formflow.events import RETRY_PERMANENT_FAILURE, EventBus
from formflow.exceptions import NotFoundError
from formflow.models import RetryRecord, RetryStatus, utcnow

from .backoff import DEFAULT_BACKOFF, BackoffPolicy

if TYPE_CHECKING:
    from formflow.config import Settings
    from formflow.storage import RetryBackend

logger = logging.getLogger(__name__)


class ActionStore:
    """Retry record store with the retry state machine.

    Example:
        ```python
        store = ActionStore(storage, events=bus)
        await store.enqueue_retry("sub_1", "ins_1", "API timeout")

        for record in await store.get_due(limit=10):
            ok = await replay(record)
            await store.record_outcome(record, success=ok, error=None if ok else "boom")
        ```
    """

    def __init__(
        self,
        backend: RetryBackend,
        policy: BackoffPolicy = DEFAULT_BACKOFF,
        events: EventBus | None = None,
        default_max_retries: int = 3,
        initial_delay_seconds: float = 300,
        stale_after_seconds: float = 900,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Persistence for retry records.
            policy: Backoff applied after each failed replay.
            events: Bus receiving ``retry.permanent_failure``.
            default_max_retries: Used when enqueue_retry gets no explicit bound.
            initial_delay_seconds: Delay before the first replay of a new record.
            stale_after_seconds: Processing records idle this long are reclaimed.
            clock: Source of the current UTC time.
        """
        self._backend = backend
        self._policy = policy
        self._events = events
        self._default_max_retries = default_max_retries
        self._initial_delay = timedelta(seconds=initial_delay_seconds)
        self._stale_after = timedelta(seconds=stale_after_seconds)
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        backend: RetryBackend,
        settings: Settings,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> ActionStore:
        return cls(
            backend,
            policy=BackoffPolicy.from_settings(settings),
            events=events,
            default_max_retries=settings.retry_max_retries,
            initial_delay_seconds=settings.retry_initial_delay_seconds,
            stale_after_seconds=settings.retry_stale_after_seconds,
            clock=clock,
        )

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    async def enqueue_retry(
        self,
        submission_ref: str,
        instance_ref: str,
        error: str,
        max_retries: int | None = None,
    ) -> RetryRecord:
        """Persist a new pending record.

        No deduplication happens here; callers that must not double-enqueue
        check ``has_inflight`` first.
        """
        now = self._clock()
        record = RetryRecord(
            submission_ref=submission_ref,
            instance_ref=instance_ref,
            max_retries=self._default_max_retries if max_retries is None else max_retries,
            last_error=error,
            next_retry_at=now + self._initial_delay,
            status=RetryStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        stored = await self._backend.insert_retry(record)
        logger.info(
            "Enqueued retry %s for submission %s (first attempt at %s)",
            stored.id,
            submission_ref,
            record.next_retry_at.isoformat() if record.next_retry_at else None,
        )
        return stored

    async def has_inflight(self, submission_ref: str) -> bool:
        """Whether a pending or processing record exists for the submission."""
        return await self._backend.find_inflight(submission_ref) is not None

    async def get_due(self, limit: int = 10) -> list[RetryRecord]:
        """Claim up to ``limit`` due records, earliest ``next_retry_at`` first.

        Each returned record is already in ``processing``. Records another
        worker claimed first are skipped.
        """
        if limit <= 0:
            return []

        now = self._clock()
        candidates = await self._backend.get_due_retries(limit, now)
        claimed: list[RetryRecord] = []
        for record in candidates:
            assert record.id is not None
            if await self._backend.claim_retry(record.id, now):
                claimed.append(
                    record.model_copy(update={"status": RetryStatus.PROCESSING, "updated_at": now})
                )
            else:
                logger.debug("Retry %s was claimed elsewhere, skipping", record.id)
        return claimed

    async def record_outcome(
        self,
        record: RetryRecord,
        success: bool,
        error: str | None = None,
        permanent: bool = False,
    ) -> RetryRecord:
        """Apply the outcome of a replay.

        Success completes the record. A failure either reschedules it with
        backoff or, once the retry budget is spent (or the error is
        permanent), finalizes it as ``failed`` without bumping retry_count.
        Outcomes recorded against a terminal record change nothing.

        Args:
            record: The record that was replayed.
            success: Whether the replay succeeded.
            error: Error message for a failed replay.
            permanent: Finalize immediately regardless of remaining retries.

        Returns:
            The record's state after the update.

        Raises:
            NotFoundError: If the record no longer exists.
        """
        if record.id is None:
            raise ValueError("Cannot record an outcome for an unsaved retry record")

        current = await self._backend.get_retry(record.id)
        if current is None:
            raise NotFoundError("retry_record", record.id)
        if current.is_terminal:
            logger.debug("Retry %s already %s, ignoring outcome", current.id, current.status.value)
            return current

        now = self._clock()
        fields: dict[str, Any]
        if success:
            fields = {"status": RetryStatus.COMPLETED, "next_retry_at": None, "updated_at": now}
        elif permanent or current.retry_count + 1 > current.max_retries:
            fields = {
                "status": RetryStatus.FAILED,
                "next_retry_at": None,
                "last_error": error or current.last_error,
                "updated_at": now,
            }
        else:
            retry_count = current.retry_count + 1
            fields = {
                "status": RetryStatus.PENDING,
                "retry_count": retry_count,
                "next_retry_at": now + timedelta(seconds=self._policy.delay(retry_count)),
                "last_error": error or current.last_error,
                "updated_at": now,
            }

        updated = await self._backend.update_retry(current.id, fields)  # type: ignore[arg-type]
        if updated is None:
            raise NotFoundError("retry_record", record.id)

        if updated.status == RetryStatus.FAILED:
            logger.warning(
                "Retry %s for submission %s failed permanently after %d retries: %s",
                updated.id,
                updated.submission_ref,
                updated.retry_count,
                updated.last_error,
            )
            if self._events is not None:
                await self._events.publish(
                    RETRY_PERMANENT_FAILURE,
                    {
                        "record_id": updated.id,
                        "submission_id": updated.submission_ref,
                        "instance_id": updated.instance_ref,
                        "retry_count": updated.retry_count,
                        "error": updated.last_error,
                    },
                )
        return updated

    async def reclaim_stale(self) -> int:
        """Return records stuck in processing past the stale window to pending."""
        now = self._clock()
        reclaimed = await self._backend.reclaim_stale_retries(now - self._stale_after, now)
        if reclaimed:
            logger.warning("Reclaimed %d stale retry records", reclaimed)
        return reclaimed

    async def stats(self, instance_ref: str | None = None) -> dict[str, int]:
        """Record counts per status plus ``total``."""
        counts = await self._backend.count_retries_by_status(instance_ref)
        result = {status.value: counts.get(status, 0) for status in RetryStatus}
        result["total"] = sum(result.values())
        return result


__all__ = ["ActionStore"]
