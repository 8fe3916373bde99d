"""FormFlow dispatch: scheduled actions, durable retries and signed webhooks.

Quick Start:
    from formflow.service import DispatchService

    async with DispatchService.create() as dispatch:
        # Send a confirmation email in ten minutes
        await dispatch.schedule(
            "send_email",
            {"to": "jane@example.com", "subject": "Thanks", "message": "We got it"},
            delay=600,
        )

        # Replay due retry records
        results = await dispatch.process_retries()

Components:
    - Scheduler: Runs hooks now or later on a durable or degraded executor
    - ActionStore / RetryProcessor: Durable retry records with backoff
    - WebhookDeliveryEngine: Masked, HMAC-signed webhook delivery
    - EventBus: Typed in-process notifications
"""

__version__ = "0.1.0"

# Configuration
from .config import Settings

# Events
from .events import (
    API_COMPLETED,
    QUEUE_PERMANENT_FAILURE,
    RETRY_COMPLETED,
    RETRY_PERMANENT_FAILURE,
    EventBus,
)

# Exceptions
from .exceptions import (
    ConfigurationError,
    DeliveryError,
    FormflowError,
    NotFoundError,
    PermanentError,
    SchedulingError,
    StorageError,
    ValidationError,
)

# Logging
from .logging import (
    bind_action_context,
    clear_context,
    configure_logging,
    get_logger,
)

# Models
from .models import (
    DeliveryResult,
    Hook,
    Instance,
    QueuedAction,
    RetryRecord,
    RetryStatus,
    Submission,
    WebhookEndpoint,
)

# Service
from .service import DispatchService

__all__ = [
    "__version__",
    # Configuration
    "Settings",
    # Events
    "API_COMPLETED",
    "QUEUE_PERMANENT_FAILURE",
    "RETRY_COMPLETED",
    "RETRY_PERMANENT_FAILURE",
    "EventBus",
    # Exceptions
    "ConfigurationError",
    "DeliveryError",
    "FormflowError",
    "NotFoundError",
    "PermanentError",
    "SchedulingError",
    "StorageError",
    "ValidationError",
    # Logging
    "bind_action_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    # Models
    "DeliveryResult",
    "Hook",
    "Instance",
    "QueuedAction",
    "RetryRecord",
    "RetryStatus",
    "Submission",
    "WebhookEndpoint",
    # Service
    "DispatchService",
]
