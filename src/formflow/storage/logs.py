"""Operational log persistence for FormflowStorage."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import insert, select

from formflow.logging import redact
from formflow.models import LogEntry, utcnow

from .retry import db_retry
from .tables import LogRow

if TYPE_CHECKING:
    from formflow.models import LogLevel


class LogMixin:
    """Mixin providing the operational log for FormflowStorage.

    This mixin expects ``_session()`` from StorageBase.
    """

    _session: Any

    @db_retry
    async def append_log(
        self,
        level: LogLevel,
        message: str,
        context: dict[str, Any] | None = None,
        instance_id: str | None = None,
    ) -> None:
        """Append a log entry. Credentials in ``context`` are redacted."""
        async with self._session() as session:
            await session.execute(
                insert(LogRow).values(
                    level=level,
                    message=message,
                    context=redact(context or {}),
                    instance_id=instance_id,
                    created_at=utcnow(),
                )
            )

    @db_retry
    async def get_logs(self, instance_id: str | None = None, limit: int = 100) -> list[LogEntry]:
        query = select(LogRow).order_by(LogRow.id.desc()).limit(limit)
        if instance_id is not None:
            query = query.where(LogRow.instance_id == instance_id)
        async with self._session() as session:
            result = await session.execute(query)
            return [
                LogEntry(
                    level=row.level,  # type: ignore[arg-type]
                    message=row.message,
                    context=row.context,
                    instance_id=row.instance_id,
                    created_at=row.created_at,
                )
                for row in result.scalars()
            ]
