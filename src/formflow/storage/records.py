"""Instance and submission operations for FormflowStorage."""

from __future__ import annotations

from typing import Any

from sqlalchemy import update

from formflow.models import Instance, Submission

from .retry import db_retry
from .tables import InstanceRow, SubmissionRow


class RecordsMixin:
    """Mixin providing instance and submission access for FormflowStorage.

    This mixin expects ``_session()`` from StorageBase.
    """

    _session: Any

    @db_retry
    async def get_instance(self, instance_id: str) -> Instance | None:
        async with self._session() as session:
            row = await session.get(InstanceRow, instance_id)
            return Instance.model_validate(row, from_attributes=True) if row else None

    @db_retry
    async def save_instance(self, instance: Instance) -> str:
        """Insert or replace an instance."""
        async with self._session() as session:
            await session.merge(InstanceRow(**instance.model_dump()))
        return instance.id

    @db_retry
    async def get_submission(self, submission_id: str) -> Submission | None:
        async with self._session() as session:
            row = await session.get(SubmissionRow, submission_id)
            return Submission.model_validate(row, from_attributes=True) if row else None

    @db_retry
    async def save_submission(self, submission: Submission) -> str:
        """Insert or replace a submission."""
        async with self._session() as session:
            await session.merge(SubmissionRow(**submission.model_dump()))
        return submission.id

    @db_retry
    async def update_submission(self, submission_id: str, fields: dict[str, Any]) -> bool:
        """Update submission columns. Returns False if the submission does not exist."""
        async with self._session() as session:
            result = await session.execute(
                update(SubmissionRow).where(SubmissionRow.id == submission_id).values(**fields)
            )
            return bool(result.rowcount)  # type: ignore[attr-defined]
