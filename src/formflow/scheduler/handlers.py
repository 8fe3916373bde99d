"""Hook handlers and the failure handler for scheduled actions.

Every handler either returns normally or raises. Raised errors are routed
by ``on_failure``: permanent errors are finalized at once, enrollment and
booking calls for a submission go to the durable retry store, and
everything else is retried through a queue-level ``retry`` action with
exponential backoff.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from formflow.cache import ResultCache, api_result_key
from formflow.channels import Channels
from formflow.connectors import ConnectorConfig
from formflow.events import API_COMPLETED, QUEUE_PERMANENT_FAILURE, EventBus
from formflow.exceptions import ConfigurationError, DeliveryError, NotFoundError, is_permanent
from formflow.logging import bind_action_context, clear_context, redact
from formflow.models import (
    ActionArgs,
    ApiCallArgs,
    CrmSyncArgs,
    Hook,
    QueuedAction,
    RetryArgs,
    SendEmailArgs,
    SendSmsArgs,
    WebhookArgs,
)
from formflow.retry.backoff import DEFAULT_BACKOFF, BackoffPolicy

if TYPE_CHECKING:
    from formflow.connectors import ConnectorRegistry, ConnectorResult
    from formflow.credentials import SecretsProvider
    from formflow.retry import ActionStore
    from formflow.storage import Repository
    from formflow.webhooks import WebhookDeliveryEngine

    from .scheduler import Scheduler

logger = logging.getLogger(__name__)

Handler = Callable[[Any, QueuedAction], Awaitable[None]]


class ActionHandlers:
    """Executes scheduled actions and routes their failures.

    Example:
        ```python
        handlers = ActionHandlers(scheduler, storage, store, registry, secrets, ...)
        scheduler.attach(handlers)
        ```
    """

    def __init__(
        self,
        scheduler: Scheduler,
        repository: Repository,
        store: ActionStore,
        connectors: ConnectorRegistry,
        secrets: SecretsProvider,
        webhooks: WebhookDeliveryEngine,
        channels: Channels | None = None,
        cache: ResultCache | None = None,
        events: EventBus | None = None,
        policy: BackoffPolicy = DEFAULT_BACKOFF,
        max_retries: int = 3,
    ) -> None:
        self.scheduler = scheduler
        self.repository = repository
        self.store = store
        self.connectors = connectors
        self.secrets = secrets
        self.webhooks = webhooks
        self.channels = channels or Channels()
        self.cache = cache if cache is not None else ResultCache()
        self.events = events
        self.policy = policy
        self.max_retries = max_retries
        self._handlers: dict[Hook, Handler] = {
            Hook.API_CALL: self.handle_api_call,
            Hook.SEND_EMAIL: self.handle_send_email,
            Hook.SEND_SMS: self.handle_send_sms,
            Hook.WEBHOOK: self.handle_webhook,
            Hook.CRM_SYNC: self.handle_crm_sync,
            Hook.RETRY: self.handle_retry,
        }

    async def run(self, action: QueuedAction) -> None:
        """Execute an action, sending any handler error to ``on_failure``."""
        bind_action_context(action.action_id, action.hook.value)
        try:
            await self._handlers[action.hook](action.args, action)
        except Exception as e:
            await self.on_failure(action, e)
        finally:
            clear_context()

    # Handlers

    async def handle_api_call(self, args: ApiCallArgs, action: QueuedAction) -> None:
        start = time.perf_counter()

        instance = await self.repository.get_instance(args.instance_id)
        if instance is None:
            raise NotFoundError("instance", args.instance_id)

        connector = self.connectors.get(instance.connector)
        config = ConnectorConfig(
            instance_id=instance.id,
            api_endpoint=instance.api_endpoint,
            api_password=(
                self.secrets.decrypt(instance.api_password) if instance.api_password else ""
            ),
            test_mode=instance.test_mode,
        )
        calls: dict[str, Callable[..., Awaitable[ConnectorResult]]] = {
            "validate": connector.validate_account,
            "enroll": connector.submit_enrollment,
            "schedule": connector.get_schedule_slots,
            "book": connector.book_appointment,
        }
        result = await calls[args.action](args.data, config)
        result_map = result.to_dict()
        self.cache.set(api_result_key(action.action_id), result_map)

        if args.is_submission_bound and not (result.success or result.confirmation_number):
            raise DeliveryError(result.message or f"API {args.action} was not accepted")

        elapsed_ms = round((time.perf_counter() - start) * 1000)
        await self.repository.append_log(
            "info",
            "Queue: API call completed",
            {
                "action": args.action,
                "instance_id": args.instance_id,
                "elapsed_ms": elapsed_ms,
                "action_id": action.action_id,
            },
            args.instance_id,
        )
        if self.events is not None:
            await self.events.publish(
                API_COMPLETED,
                {
                    "action_id": action.action_id,
                    "action": args.action,
                    "instance_id": args.instance_id,
                    "submission_id": args.submission_id,
                    "result": result_map,
                },
            )

    async def handle_send_email(self, args: SendEmailArgs, action: QueuedAction) -> None:
        if self.channels.email is None:
            raise ConfigurationError("Email channel not configured")
        sent = await self.channels.email.send(
            args.to, args.subject, args.message, args.headers, args.attachments
        )
        if not sent:
            raise DeliveryError("Email send failed")
        await self.repository.append_log(
            "info",
            "Queue: Email sent",
            {"to": args.to, "subject": args.subject, "action_id": action.action_id},
        )

    async def handle_send_sms(self, args: SendSmsArgs, action: QueuedAction) -> None:
        if self.channels.sms is None:
            raise ConfigurationError("SMS channel not configured")
        if not await self.channels.sms.send(args.to, args.message, args.instance_id):
            raise DeliveryError("SMS send failed")
        await self.repository.append_log(
            "info",
            "Queue: SMS sent",
            {"to": args.to, "action_id": action.action_id},
            args.instance_id,
        )

    async def handle_webhook(self, args: WebhookArgs, action: QueuedAction) -> None:
        if args.webhook_id is None:
            # Fan-out is fire-once; individual failures are only logged
            await self.webhooks.trigger(args.event, args.data, args.instance_id)
            return

        endpoint = await self.repository.get_webhook(args.webhook_id)
        if endpoint is None:
            raise NotFoundError("webhook", args.webhook_id)
        if not endpoint.is_active:
            raise ConfigurationError(f"Webhook {args.webhook_id} is inactive")

        result = await self.webhooks.deliver(endpoint, args.event, args.data)
        if not result.success:
            raise DeliveryError(result.error or "Webhook delivery failed", result.status_code)
        await self.repository.append_log(
            "info",
            "Queue: Webhook delivered",
            {
                "url": endpoint.url,
                "event": args.event,
                "status": result.status_code,
                "action_id": action.action_id,
            },
            args.instance_id,
        )

    async def handle_crm_sync(self, args: CrmSyncArgs, action: QueuedAction) -> None:
        if self.channels.crm is None:
            raise ConfigurationError("CRM channel not configured")
        if not await self.channels.crm.sync(args.submission_id, args.instance_id, args.crm_type):
            raise DeliveryError("CRM sync failed")
        await self.repository.append_log(
            "info",
            "Queue: CRM sync completed",
            {
                "submission_id": args.submission_id,
                "crm_type": args.crm_type,
                "action_id": action.action_id,
            },
            args.instance_id,
        )

    async def handle_retry(self, args: RetryArgs, action: QueuedAction) -> None:
        await self.repository.append_log(
            "info",
            "Queue: Retrying action",
            {
                "original_action": args.original_hook.value,
                "attempt": args.attempt,
                "action_id": action.action_id,
            },
        )
        await self.scheduler.schedule(
            args.original_hook,
            {**args.original_args, "retry_attempt": args.attempt},
            delay=0,
        )

    # Failure routing

    async def on_failure(self, action: QueuedAction, error: BaseException) -> None:
        """Route a failed action to finalization, the retry store or a queued retry."""
        args = action.args
        attempt = args.retry_attempt + 1
        instance_id = getattr(args, "instance_id", None)
        message = str(error) or type(error).__name__

        logger.warning(
            "Action %s (%s) failed on attempt %d: %s",
            action.action_id,
            action.hook.value,
            attempt,
            message,
        )
        await self.repository.append_log(
            "error",
            "Queue: Action failed",
            {
                "action": action.hook.value,
                "error": message,
                "attempt": attempt,
                "args": redact(args.model_dump(mode="json")),
            },
            instance_id,
        )

        if is_permanent(error):
            await self._finalize(action, message, attempt)
            return

        if isinstance(args, ApiCallArgs) and args.is_submission_bound:
            await self._enqueue_submission_retry(args, message)
            return

        if attempt <= self.max_retries:
            await self.scheduler.queue_retry(
                action.hook, args, attempt, self.max_retries, self.policy.delay(attempt)
            )
        else:
            await self._finalize(action, message, attempt)

    async def _enqueue_submission_retry(self, args: ApiCallArgs, message: str) -> None:
        assert args.submission_id is not None
        if await self.store.has_inflight(args.submission_id):
            logger.info("Submission %s already has a pending retry", args.submission_id)
            return
        await self.store.enqueue_retry(args.submission_id, args.instance_id, message)

    async def _finalize(self, action: QueuedAction, message: str, attempt: int) -> None:
        args: ActionArgs = action.args
        instance_id = getattr(args, "instance_id", None)
        await self.repository.append_log(
            "error",
            "Queue: Permanent failure",
            {"action": action.hook.value, "error": message, "attempt": attempt},
            instance_id,
        )
        if self.events is not None:
            await self.events.publish(
                QUEUE_PERMANENT_FAILURE,
                {
                    "action_id": action.action_id,
                    "action": action.hook.value,
                    "error": message,
                    "attempt": attempt,
                    "args": redact(args.model_dump(mode="json")),
                },
            )


__all__ = ["ActionHandlers"]
