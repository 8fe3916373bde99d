"""Retry record model.

A RetryRecord tracks one failed, retryable operation (an enrollment or
booking submission that did not reach the domain API) until it either
succeeds or is finalized as a permanent failure.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .base import utcnow


class RetryStatus(str, Enum):
    """State of a retry record.

    Transitions: pending -> processing -> {completed | pending | failed}.
    ``completed`` and ``failed`` are terminal.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transition may occur."""
        return self in (RetryStatus.COMPLETED, RetryStatus.FAILED)


class RetryRecord(BaseModel):
    """Durable record of a retryable failed operation.

    Attributes:
        id: Storage-assigned identifier (None until inserted).
        submission_ref: Submission the failed operation belongs to.
        instance_ref: Form instance the submission belongs to.
        retry_count: Replays already attempted and failed.
        max_retries: Upper bound for retry_count.
        last_error: Last error message encountered.
        next_retry_at: When the record becomes due (None once terminal).
        status: Current state machine status.
        created_at: When the record was enqueued.
        updated_at: When the record last changed.
    """

    model_config = ConfigDict(extra="forbid")

    id: str | None = Field(default=None, description="Storage-assigned identifier")
    submission_ref: str = Field(description="Referenced submission ID")
    instance_ref: str = Field(description="Referenced instance ID")
    retry_count: int = Field(default=0, ge=0, description="Failed replay count")
    max_retries: int = Field(default=3, ge=0, description="Maximum retries")
    last_error: str = Field(default="", description="Last error message")
    next_retry_at: datetime | None = Field(default=None, description="When the record is due")
    status: RetryStatus = Field(default=RetryStatus.PENDING, description="State machine status")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_retry_bounds(self) -> "RetryRecord":
        """Enforce ``retry_count <= max_retries``."""
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count ({self.retry_count}) exceeds max_retries ({self.max_retries})"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        """Whether the record reached completed or failed."""
        return self.status.is_terminal

    def is_due(self, now: datetime) -> bool:
        """Whether the record is pending and its retry time has passed."""
        return (
            self.status == RetryStatus.PENDING
            and self.next_retry_at is not None
            and self.next_retry_at <= now
        )


__all__ = ["RetryRecord", "RetryStatus"]
