"""Task scheduler: accepts actions and hands them to an executor.

The executor is chosen per call from strategies fixed at construction:
the durable executor when one exists, otherwise the immediate executor
for delay-zero actions and the degraded timer for delayed ones.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any, Protocol

from formflow.exceptions import FormflowError, SchedulingError, ValidationError
from formflow.models import (
    ActionArgs,
    ApiAction,
    ApiCallArgs,
    CrmSyncArgs,
    Hook,
    QueuedAction,
    RetryArgs,
    SendEmailArgs,
    SendSmsArgs,
    WebhookArgs,
    decode_args,
    utcnow,
)

from .executors import DegradedTimerExecutor, Executor, ImmediateExecutor

logger = logging.getLogger(__name__)

DEFAULT_GROUP = "formflow_queue"


class ActionRunner(Protocol):
    async def run(self, action: QueuedAction) -> None: ...


class Scheduler:
    """Schedules hook invocations with an optional delay.

    Example:
        ```python
        scheduler = Scheduler(durable=detect_executor(settings))
        scheduler.attach(handlers)

        action_id = await scheduler.schedule(
            Hook.SEND_EMAIL,
            {"to": "a@example.com", "subject": "Hi", "message": "Hello"},
            delay=60,
        )
        ```
    """

    def __init__(
        self,
        durable: Executor | None = None,
        group: str = DEFAULT_GROUP,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            durable: Durable executor, or None to run without durability.
            group: Group assigned to actions scheduled without one.
            clock: Source of the current UTC time.
        """
        self.durable = durable
        self.immediate = ImmediateExecutor()
        self.degraded = DegradedTimerExecutor()
        self.group = group
        self._clock = clock
        self._runner: ActionRunner | None = None

    def attach(self, runner: ActionRunner) -> None:
        """Set the component that executes actions when they come due."""
        self._runner = runner

    async def run(self, action: QueuedAction) -> None:
        if self._runner is None:
            raise SchedulingError("No action runner attached to the scheduler")
        await self._runner.run(action)

    def executor_for(self, delay: float) -> Executor:
        """The executor an action with this delay would be handed to."""
        if self.durable is not None:
            return self.durable
        if delay <= 0:
            return self.immediate
        return self.degraded

    @property
    def degraded_mode(self) -> bool:
        """Whether delayed actions run on best-effort timers."""
        return self.durable is None

    async def schedule(
        self,
        hook: Hook | str,
        args: ActionArgs | dict[str, Any],
        delay: float = 0,
        group: str | None = None,
    ) -> str:
        """Schedule ``hook`` to run with ``args`` after ``delay`` seconds.

        Args:
            hook: Handler to invoke.
            args: Typed arguments or a raw mapping decoded into them.
            delay: Seconds to wait before running.
            group: Cancellation group. Defaults to the scheduler's group.

        Returns:
            The generated action ID.

        Raises:
            ValidationError: If the hook is unknown, the arguments are
                malformed or the delay is negative.
            SchedulingError: If the executor refused the action.
        """
        if delay < 0:
            raise ValidationError("delay", "must not be negative")

        typed = decode_args(hook, args)
        action = QueuedAction(
            hook=Hook(hook),
            args=typed,
            scheduled_at=self._clock() + timedelta(seconds=delay),
            group=group or self.group,
        )
        executor = self.executor_for(delay)

        logger.debug(
            "Scheduling %s action %s via %s (delay %ss)",
            action.hook.value,
            action.action_id,
            executor.kind,
            delay,
        )
        try:
            await executor.submit(action, delay, self.run)
        except FormflowError:
            raise
        except Exception as e:
            raise SchedulingError(
                f"Failed to schedule {action.hook.value} via {executor.kind}: {e}"
            ) from e

        return action.action_id

    async def cancel_group(self, group: str | None = None) -> int:
        """Cancel not-yet-run actions of a group in the durable backend.

        Returns:
            Number of cancelled actions; always 0 without a durable backend.
        """
        if self.durable is None:
            return 0
        return await self.durable.cancel_group(group or self.group)

    async def stats(self) -> dict[str, Any]:
        """Executor kind, durability and pending counts where known."""
        if self.durable is not None:
            return {
                "executor": self.durable.kind,
                "durable": True,
                "pending": await self.durable.pending(),
            }
        return {
            "executor": f"{self.immediate.kind}+{self.degraded.kind}",
            "durable": False,
            "pending": await self.degraded.pending(),
        }

    async def start(self) -> None:
        """Start the durable executor so actions from a previous run resume."""
        if self.durable is not None:
            await self.durable.start(self.run)

    async def shutdown(self) -> None:
        await self.degraded.shutdown()
        if self.durable is not None:
            await self.durable.shutdown()

    # Convenience producers

    async def queue_api_call(
        self,
        action: ApiAction,
        data: dict[str, Any],
        instance_id: str,
        priority: int = 5,
        submission_id: str | None = None,
        delay: float = 0,
    ) -> str:
        return await self.schedule(
            Hook.API_CALL,
            ApiCallArgs(
                action=action,
                data=data,
                instance_id=instance_id,
                priority=priority,
                submission_id=submission_id,
            ),
            delay,
        )

    async def queue_email(
        self,
        to: str,
        subject: str,
        message: str,
        headers: list[str] | None = None,
        attachments: list[str] | None = None,
        delay: float = 0,
    ) -> str:
        return await self.schedule(
            Hook.SEND_EMAIL,
            SendEmailArgs(
                to=to,
                subject=subject,
                message=message,
                headers=headers or [],
                attachments=attachments or [],
            ),
            delay,
        )

    async def queue_sms(self, to: str, message: str, instance_id: str, delay: float = 0) -> str:
        return await self.schedule(
            Hook.SEND_SMS, SendSmsArgs(to=to, message=message, instance_id=instance_id), delay
        )

    async def queue_webhook(
        self,
        event: str,
        data: dict[str, Any],
        instance_id: str | None = None,
        webhook_id: str | None = None,
        delay: float = 0,
    ) -> str:
        return await self.schedule(
            Hook.WEBHOOK,
            WebhookArgs(event=event, data=data, instance_id=instance_id, webhook_id=webhook_id),
            delay,
        )

    async def queue_crm_sync(
        self, submission_id: str, instance_id: str, crm_type: str, delay: float = 0
    ) -> str:
        return await self.schedule(
            Hook.CRM_SYNC,
            CrmSyncArgs(submission_id=submission_id, instance_id=instance_id, crm_type=crm_type),
            delay,
        )

    async def queue_retry(
        self,
        original_hook: Hook,
        original_args: ActionArgs,
        attempt: int,
        max_attempts: int,
        delay: float,
    ) -> str | None:
        """Schedule a queue-level retry of another action.

        Returns:
            The retry's action ID, or None when ``attempt`` exceeds ``max_attempts``.
        """
        if attempt > max_attempts:
            logger.warning(
                "Not retrying %s: attempt %d exceeds %d", original_hook.value, attempt, max_attempts
            )
            return None

        retry_args = RetryArgs(
            original_hook=original_hook,
            original_args=original_args.model_dump(
                mode="json", exclude={"retry_attempt", "queued_at"}
            ),
            attempt=attempt,
            max_attempts=max_attempts,
        )
        return await self.schedule(Hook.RETRY, retry_args, delay)


__all__ = ["DEFAULT_GROUP", "ActionRunner", "Scheduler"]
