"""Collaborator records owned by the host platform.

Only the fields the dispatch subsystem reads or writes are modelled.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .base import generate_id, utcnow

LogLevel = Literal["debug", "info", "warning", "error"]


class Instance(BaseModel):
    """A configured form instance (one utility program)."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("ins"))
    slug: str = Field(default="")
    utility: str = Field(default="")
    connector: str = Field(default="intellisource", description="Connector registry key")
    api_endpoint: str = Field(default="")
    api_password: str | None = Field(default=None, description="Encrypted API credential")
    test_mode: bool = False
    demo_mode: bool = False


class Submission(BaseModel):
    """A user's form submission."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: generate_id("sub"))
    instance_id: str
    status: str = Field(default="pending")
    form_data: dict[str, Any] = Field(default_factory=dict)
    account_number: str = Field(default="")
    customer_name: str = Field(default="")
    device_type: str = Field(default="")


class LogEntry(BaseModel):
    """Operational log line persisted through the repository."""

    model_config = ConfigDict(extra="forbid")

    level: LogLevel = "info"
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    instance_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


__all__ = ["Instance", "LogEntry", "LogLevel", "Submission"]
