"""Webhook endpoint storage operations for FormflowStorage."""

from __future__ import annotations

from typing import Any

from sqlalchemy import or_, select, update

from formflow.models import WebhookEndpoint, utcnow

from .retry import db_retry
from .tables import WebhookRow


def _to_endpoint(row: WebhookRow) -> WebhookEndpoint:
    return WebhookEndpoint.model_validate(row, from_attributes=True)


class WebhookMixin:
    """Mixin providing webhook operations for FormflowStorage.

    This mixin expects ``_session()`` from StorageBase.
    """

    _session: Any

    @db_retry
    async def save_webhook(self, endpoint: WebhookEndpoint) -> str:
        """Insert or replace a webhook endpoint.

        Returns:
            The endpoint ID.
        """
        values = endpoint.model_dump()
        values["events"] = sorted(endpoint.events)
        async with self._session() as session:
            await session.merge(WebhookRow(**values))
        return endpoint.id

    @db_retry
    async def get_webhook(self, webhook_id: str) -> WebhookEndpoint | None:
        async with self._session() as session:
            row = await session.get(WebhookRow, webhook_id)
            return _to_endpoint(row) if row is not None else None

    @db_retry
    async def get_webhooks_for_event(
        self, event: str, instance_id: str | None = None
    ) -> list[WebhookEndpoint]:
        """Get active endpoints subscribed to an event.

        Endpoints bound to ``instance_id`` and global endpoints (no instance)
        both match. Event membership is checked after loading because the
        event list is stored as JSON.

        Args:
            event: Event name.
            instance_id: Instance the event belongs to.

        Returns:
            Matching endpoints ordered by ID.
        """
        scope = WebhookRow.instance_id.is_(None)
        if instance_id is not None:
            scope = or_(scope, WebhookRow.instance_id == instance_id)

        async with self._session() as session:
            result = await session.execute(
                select(WebhookRow)
                .where(WebhookRow.is_active.is_(True), scope)
                .order_by(WebhookRow.id)
            )
            endpoints = [_to_endpoint(row) for row in result.scalars()]

        return [endpoint for endpoint in endpoints if event in endpoint.events]

    @db_retry
    async def record_delivery_outcome(self, webhook_id: str, success: bool) -> None:
        """Count a delivery attempt against the endpoint."""
        counter = WebhookRow.success_count if success else WebhookRow.failure_count
        async with self._session() as session:
            await session.execute(
                update(WebhookRow)
                .where(WebhookRow.id == webhook_id)
                .values({counter: counter + 1, WebhookRow.last_triggered_at: utcnow()})
            )
