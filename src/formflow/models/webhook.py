"""Webhook models for outbound event notifications.

Endpoints are registered per form instance (or globally) and subscribe to a
set of named events. Deliveries are single attempts; their outcome is
summarized in a DeliveryResult and counted on the endpoint.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id

# Event types that can trigger webhooks
EventType = Literal[
    "form.viewed",
    "form.step_completed",
    "account.validated",
    "enrollment.submitted",
    "enrollment.completed",
    "enrollment.failed",
    "appointment.scheduled",
]

# Human-readable labels, in display order
EVENT_LABELS: dict[str, str] = {
    "form.viewed": "Form Viewed",
    "form.step_completed": "Form Step Completed",
    "account.validated": "Account Validated",
    "enrollment.submitted": "Enrollment Submitted to API",
    "enrollment.completed": "Enrollment Completed",
    "enrollment.failed": "Enrollment Failed",
    "appointment.scheduled": "Appointment Scheduled",
}

ALL_EVENT_TYPES: list[str] = list(EVENT_LABELS)


class WebhookEndpoint(BaseModel):
    """A registered webhook endpoint.

    Attributes:
        id: Unique identifier for this endpoint.
        name: Display name used in delivery logs.
        instance_id: Form instance the endpoint belongs to (None = all instances).
        url: Target URL receiving POST requests.
        secret: Shared secret for HMAC-SHA256 signatures (None = unsigned).
        events: Event names this endpoint subscribes to.
        is_active: Whether deliveries are attempted.
        success_count: Successful deliveries so far.
        failure_count: Failed deliveries so far.
        last_triggered_at: When a delivery was last attempted.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("whk"))
    name: str = Field(default="", description="Display name")
    instance_id: str | None = Field(default=None, description="Owning instance (None = global)")
    url: str = Field(description="Endpoint receiving events")
    secret: str | None = Field(default=None, description="Shared secret for signatures")
    events: set[str] = Field(default_factory=set, description="Subscribed event names")
    is_active: bool = Field(default=True, description="Whether the endpoint is active")
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_triggered_at: datetime | None = Field(default=None)

    def subscribes_to(self, event: str, instance_id: str | None = None) -> bool:
        """Check if this endpoint should receive ``event`` for ``instance_id``."""
        if not self.is_active or event not in self.events:
            return False
        return self.instance_id is None or self.instance_id == instance_id


class DeliveryResult(BaseModel):
    """Outcome of a single webhook POST.

    Attributes:
        success: True only for a 2xx response.
        status_code: HTTP status code, when a response was received.
        body: Response body truncated to 1000 characters.
        error: Transport or HTTP error description.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    status_code: int | None = None
    body: str | None = None
    error: str | None = None


__all__ = [
    "ALL_EVENT_TYPES",
    "DeliveryResult",
    "EVENT_LABELS",
    "EventType",
    "WebhookEndpoint",
]
