"""Dispatch service: one object that owns every collaborator.

Example:
    ```python
    from formflow.service import DispatchService

    async with DispatchService.create() as dispatch:
        dispatch.connectors.register("intellisource", MyConnector())

        await dispatch.schedule(
            "api_call",
            {"action": "enroll", "data": form, "instance_id": "ins_1", "submission_id": "sub_1"},
        )
        results = await dispatch.process_retries()
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from formflow.cache import ResultCache, api_result_key
from formflow.channels import Channels
from formflow.config import Settings
from formflow.connectors import ConnectorRegistry
from formflow.credentials import PlaintextSecrets, SecretsProvider
from formflow.events import EventBus
from formflow.models import ActionArgs, DeliveryResult, Hook, RetryRecord
from formflow.retry import ActionStore, BackoffPolicy, RetryProcessor
from formflow.scheduler import ActionHandlers, Executor, Scheduler, detect_executor
from formflow.storage import FormflowStorage, Storage
from formflow.webhooks import WebhookDeliveryEngine

logger = logging.getLogger(__name__)


@dataclass
class DispatchService:
    """Scheduling, durable retries and webhook delivery behind one interface.

    Collaborators are injected, which keeps tests free to swap in
    ``InMemoryStorage``, fake connectors and an ``httpx.MockTransport``.

    Attributes:
        settings: Configuration settings.
        storage: Repository and retry record backend.
        connectors: Domain connector registry.
        secrets: Decrypts stored instance credentials.
        channels: Email, SMS and CRM senders.
        events: Bus receiving dispatch and retry events.
        executor: Durable executor, or None to run in degraded mode.
    """

    settings: Settings
    storage: Storage
    connectors: ConnectorRegistry = field(default_factory=ConnectorRegistry)
    secrets: SecretsProvider = field(default_factory=PlaintextSecrets)
    channels: Channels = field(default_factory=Channels)
    events: EventBus = field(default_factory=EventBus)
    executor: Executor | None = None
    webhooks: WebhookDeliveryEngine | None = None

    store: ActionStore = field(init=False, repr=False)
    cache: ResultCache = field(init=False, repr=False)
    scheduler: Scheduler = field(init=False, repr=False)
    handlers: ActionHandlers = field(init=False, repr=False)
    processor: RetryProcessor = field(init=False, repr=False)

    def __post_init__(self) -> None:
        """Wire the scheduler, handlers and retry processor together."""
        settings = self.settings
        if self.webhooks is None:
            self.webhooks = WebhookDeliveryEngine.from_settings(self.storage, settings)

        self.store = ActionStore.from_settings(self.storage, settings, events=self.events)
        self.cache = ResultCache(
            ttl_seconds=settings.result_cache_ttl_seconds,
            max_size=settings.result_cache_size,
        )
        self.scheduler = Scheduler(durable=self.executor, group=settings.queue_group)
        self.handlers = ActionHandlers(
            self.scheduler,
            self.storage,
            self.store,
            self.connectors,
            self.secrets,
            self.webhooks,
            channels=self.channels,
            cache=self.cache,
            events=self.events,
            policy=BackoffPolicy.from_settings(settings),
            max_retries=settings.retry_max_retries,
        )
        self.scheduler.attach(self.handlers)
        self.processor = RetryProcessor(
            self.store,
            self.storage,
            self.connectors,
            self.secrets,
            self.webhooks,
            events=self.events,
        )

    @classmethod
    def create(cls, settings: Settings | None = None, **kwargs: Any) -> DispatchService:
        """Create a DispatchService with SQL storage and the detected executor.

        Args:
            settings: Optional settings. Uses defaults if None.
            **kwargs: Overrides for the other dataclass fields.

        Returns:
            Configured DispatchService instance.
        """
        if settings is None:
            settings = Settings()

        if "storage" not in kwargs:
            kwargs["storage"] = FormflowStorage(url=settings.database_url)
        if "executor" not in kwargs:
            kwargs["executor"] = detect_executor(settings)
        return cls(settings=settings, **kwargs)

    async def initialize(self) -> None:
        """Create storage tables and start the durable executor, if any."""
        await self.storage.initialize()
        await self.scheduler.start()
        logger.info(
            "Dispatch service ready (executor=%s)",
            self.executor.kind if self.executor is not None else "degraded",
        )

    async def close(self) -> None:
        """Stop the executors and release storage."""
        await self.scheduler.shutdown()
        await self.storage.close()

    async def __aenter__(self) -> DispatchService:
        """Async context manager entry."""
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def schedule(
        self,
        hook: Hook | str,
        args: ActionArgs | dict[str, Any],
        delay: float = 0,
        group: str | None = None,
    ) -> str:
        """Schedule a hook invocation. See ``Scheduler.schedule``."""
        return await self.scheduler.schedule(hook, args, delay, group)

    async def cancel_group(self, group: str | None = None) -> int:
        return await self.scheduler.cancel_group(group)

    async def enqueue_retry(
        self,
        submission_ref: str,
        instance_ref: str,
        error: str,
        max_retries: int | None = None,
    ) -> RetryRecord:
        return await self.store.enqueue_retry(submission_ref, instance_ref, error, max_retries)

    async def process_retries(self, limit: int | None = None) -> dict[str, int]:
        """Run one retry worker batch."""
        return await self.processor.process(
            self.settings.retry_batch_size if limit is None else limit
        )

    async def trigger(
        self, event: str, data: dict[str, Any], instance_id: str | None = None
    ) -> dict[str, DeliveryResult]:
        assert self.webhooks is not None
        return await self.webhooks.trigger(event, data, instance_id)

    def get_api_result(self, action_id: str) -> dict[str, Any] | None:
        """Cached result of an api_call action, if it has not expired."""
        return self.cache.get(api_result_key(action_id))

    async def stats(self) -> dict[str, Any]:
        """Scheduler, retry queue and cache statistics."""
        return {
            "scheduler": await self.scheduler.stats(),
            "retries": await self.store.stats(),
            "cache": self.cache.stats(),
        }


__all__ = ["DispatchService"]
