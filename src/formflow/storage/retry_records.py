"""Retry record persistence for FormflowStorage."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, insert, select, update

from formflow.models import RetryRecord, RetryStatus, generate_id, utcnow

from .retry import db_retry
from .tables import RetryRow


def _to_record(row: RetryRow) -> RetryRecord:
    return RetryRecord.model_validate(row, from_attributes=True)


def _column_values(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}


class RetryRecordMixin:
    """Mixin providing retry queue operations for FormflowStorage.

    This mixin expects ``_session()`` from StorageBase.
    """

    _session: Any

    @db_retry
    async def insert_retry(self, record: RetryRecord) -> RetryRecord:
        stored = record.model_copy(update={"id": record.id or generate_id("rty")})
        async with self._session() as session:
            await session.execute(
                insert(RetryRow).values(**_column_values(stored.model_dump()))
            )
        return stored

    @db_retry
    async def get_retry(self, record_id: str) -> RetryRecord | None:
        async with self._session() as session:
            row = await session.get(RetryRow, record_id)
            return _to_record(row) if row is not None else None

    @db_retry
    async def get_due_retries(self, limit: int, now: datetime) -> list[RetryRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(RetryRow)
                .where(
                    RetryRow.status == RetryStatus.PENDING.value,
                    RetryRow.next_retry_at <= now,
                )
                .order_by(RetryRow.next_retry_at.asc(), RetryRow.created_at.asc())
                .limit(limit)
            )
            return [_to_record(row) for row in result.scalars()]

    @db_retry
    async def claim_retry(self, record_id: str, now: datetime) -> bool:
        async with self._session() as session:
            result = await session.execute(
                update(RetryRow)
                .where(
                    RetryRow.id == record_id,
                    RetryRow.status == RetryStatus.PENDING.value,
                )
                .values(status=RetryStatus.PROCESSING.value, updated_at=now)
            )
            return bool(result.rowcount and result.rowcount > 0)  # type: ignore[attr-defined]

    @db_retry
    async def update_retry(self, record_id: str, fields: dict[str, Any]) -> RetryRecord | None:
        values = _column_values(fields)
        values.setdefault("updated_at", utcnow())
        async with self._session() as session:
            await session.execute(update(RetryRow).where(RetryRow.id == record_id).values(**values))
            row = await session.get(RetryRow, record_id, populate_existing=True)
            return _to_record(row) if row is not None else None

    @db_retry
    async def reclaim_stale_retries(self, cutoff: datetime, now: datetime) -> int:
        async with self._session() as session:
            result = await session.execute(
                update(RetryRow)
                .where(
                    RetryRow.status == RetryStatus.PROCESSING.value,
                    RetryRow.updated_at < cutoff,
                )
                .values(status=RetryStatus.PENDING.value, next_retry_at=now, updated_at=now)
            )
            return result.rowcount or 0  # type: ignore[attr-defined]

    @db_retry
    async def find_inflight(self, submission_ref: str) -> RetryRecord | None:
        async with self._session() as session:
            result = await session.execute(
                select(RetryRow)
                .where(
                    RetryRow.submission_ref == submission_ref,
                    RetryRow.status.in_(
                        [RetryStatus.PENDING.value, RetryStatus.PROCESSING.value]
                    ),
                )
                .order_by(RetryRow.created_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
            return _to_record(row) if row is not None else None

    @db_retry
    async def count_retries_by_status(
        self, instance_ref: str | None = None
    ) -> dict[RetryStatus, int]:
        query = select(RetryRow.status, func.count()).group_by(RetryRow.status)
        if instance_ref is not None:
            query = query.where(RetryRow.instance_ref == instance_ref)
        async with self._session() as session:
            result = await session.execute(query)
            counts = {status: 0 for status in RetryStatus}
            for status, count in result.all():
                counts[RetryStatus(status)] = count
            return counts
