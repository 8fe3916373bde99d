"""Scheduled action models.

Every hook has a typed argument model. Producers may hand the scheduler
either a model instance or a plain mapping; ``decode_args`` turns the
mapping into the right model and rejects malformed input up front.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from formflow.exceptions import ValidationError

from .base import generate_id, utcnow

ApiAction = Literal["validate", "enroll", "schedule", "book"]


class Hook(str, Enum):
    """Named handlers a scheduled action can target."""

    API_CALL = "api_call"
    SEND_EMAIL = "send_email"
    SEND_SMS = "send_sms"
    WEBHOOK = "webhook"
    CRM_SYNC = "crm_sync"
    RETRY = "retry"


class ActionArgs(BaseModel):
    """Fields shared by every hook's arguments."""

    model_config = ConfigDict(extra="forbid")

    retry_attempt: int = Field(default=0, ge=0, description="Attempts already made")
    queued_at: datetime = Field(default_factory=utcnow)


class ApiCallArgs(ActionArgs):
    """Arguments for a domain API call."""

    action: ApiAction
    data: dict[str, Any] = Field(default_factory=dict)
    instance_id: str
    priority: int = Field(default=5, ge=1, le=10)
    submission_id: str | None = None

    @property
    def is_submission_bound(self) -> bool:
        """Enrollment and booking calls for a submission go through the retry store."""
        return self.submission_id is not None and self.action in ("enroll", "book")


class SendEmailArgs(ActionArgs):
    to: str
    subject: str
    message: str
    headers: list[str] = Field(default_factory=list)
    attachments: list[str] = Field(default_factory=list)


class SendSmsArgs(ActionArgs):
    to: str
    message: str
    instance_id: str


class WebhookArgs(ActionArgs):
    """Arguments for webhook delivery.

    With ``webhook_id`` set the action targets a single endpoint and a failed
    delivery is retried; otherwise the event fans out to every subscriber once.
    """

    event: str
    data: dict[str, Any] = Field(default_factory=dict)
    instance_id: str | None = None
    webhook_id: str | None = None


class CrmSyncArgs(ActionArgs):
    submission_id: str
    instance_id: str
    crm_type: str


class RetryArgs(ActionArgs):
    """Arguments of a queue-level retry wrapping another hook."""

    original_hook: Hook
    original_args: dict[str, Any] = Field(default_factory=dict)
    attempt: int = Field(ge=1)
    max_attempts: int = Field(ge=0)


HOOK_ARGS: dict[Hook, type[ActionArgs]] = {
    Hook.API_CALL: ApiCallArgs,
    Hook.SEND_EMAIL: SendEmailArgs,
    Hook.SEND_SMS: SendSmsArgs,
    Hook.WEBHOOK: WebhookArgs,
    Hook.CRM_SYNC: CrmSyncArgs,
    Hook.RETRY: RetryArgs,
}


def decode_args(hook: Hook | str, args: ActionArgs | dict[str, Any]) -> ActionArgs:
    """Validate ``args`` into the argument model registered for ``hook``.

    Args:
        hook: Hook the arguments belong to.
        args: An argument model or a raw mapping.

    Returns:
        The typed argument model.

    Raises:
        ValidationError: If the hook is unknown or the arguments are malformed.
    """
    try:
        hook = Hook(hook)
    except ValueError as e:
        raise ValidationError("hook", f"unknown hook {hook!r}") from e

    model = HOOK_ARGS[hook]
    if isinstance(args, model):
        return args
    if isinstance(args, ActionArgs):
        raise ValidationError("args", f"{type(args).__name__} does not belong to hook {hook.value}")

    try:
        return model.model_validate(args)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "args"
        raise ValidationError(field, first["msg"]) from e


class QueuedAction(BaseModel):
    """An action handed to an executor.

    Attributes:
        action_id: Unique identifier generated at schedule time.
        hook: Handler to invoke.
        args: Typed arguments for the handler.
        scheduled_at: When the action should run.
        group: Group used for bulk cancellation.
    """

    model_config = ConfigDict(extra="forbid")

    action_id: str = Field(default_factory=lambda: generate_id("act"))
    hook: Hook
    args: ActionArgs
    scheduled_at: datetime = Field(default_factory=utcnow)
    group: str = Field(default="formflow_queue")

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible mapping for durable backends."""
        return {
            "action_id": self.action_id,
            "hook": self.hook.value,
            "args": self.args.model_dump(mode="json"),
            "scheduled_at": self.scheduled_at.isoformat(),
            "group": self.group,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "QueuedAction":
        """Rebuild an action serialized with ``to_payload``."""
        hook = Hook(payload["hook"])
        return cls(
            action_id=payload["action_id"],
            hook=hook,
            args=decode_args(hook, payload["args"]),
            scheduled_at=datetime.fromisoformat(payload["scheduled_at"]),
            group=payload["group"],
        )


__all__ = [
    "HOOK_ARGS",
    "ActionArgs",
    "ApiAction",
    "ApiCallArgs",
    "CrmSyncArgs",
    "Hook",
    "QueuedAction",
    "RetryArgs",
    "SendEmailArgs",
    "SendSmsArgs",
    "WebhookArgs",
    "decode_args",
]
