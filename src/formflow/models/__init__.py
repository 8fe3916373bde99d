"""Record types for FormFlow dispatch.

Action Types:
    - Hook: Named handlers a scheduled action can target
    - QueuedAction: An action handed to an executor
    - ApiCallArgs, SendEmailArgs, SendSmsArgs, WebhookArgs, CrmSyncArgs,
      RetryArgs: Typed per-hook arguments

Retry Types:
    - RetryRecord: Durable record of a failed, retryable operation
    - RetryStatus: pending / processing / completed / failed

Webhook Types:
    - WebhookEndpoint: Registered endpoint
    - DeliveryResult: Outcome of one POST

Collaborator Types:
    - Instance, Submission, LogEntry
"""

from .actions import (
    HOOK_ARGS,
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
)
from .base import ensure_utc, generate_id, utcnow
from .domain import Instance, LogEntry, LogLevel, Submission
from .retry import RetryRecord, RetryStatus
from .webhook import ALL_EVENT_TYPES, EVENT_LABELS, DeliveryResult, EventType, WebhookEndpoint

__all__ = [
    # Base helpers
    "ensure_utc",
    "generate_id",
    "utcnow",
    # Actions
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
    # Retry
    "RetryRecord",
    "RetryStatus",
    # Webhooks
    "ALL_EVENT_TYPES",
    "EVENT_LABELS",
    "DeliveryResult",
    "EventType",
    "WebhookEndpoint",
    # Collaborators
    "Instance",
    "LogEntry",
    "LogLevel",
    "Submission",
]
