"""Domain connector interface.

A connector talks to a utility program's enrollment API. The dispatch
subsystem only needs the four operations below; field mapping and
transport details stay inside each connector.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class ConnectorConfig(BaseModel):
    """Per-instance connector settings with decrypted credentials."""

    model_config = ConfigDict(extra="forbid")

    instance_id: str
    api_endpoint: str = ""
    api_password: str = Field(default="", repr=False)
    test_mode: bool = False


class ConnectorResult(BaseModel):
    """Outcome of a connector call.

    Attributes:
        success: Whether the remote operation succeeded.
        confirmation_number: Confirmation issued by the remote system, if any.
        message: Human-readable status or error message.
        data: Operation-specific response fields.
    """

    model_config = ConfigDict(extra="forbid")

    success: bool
    confirmation_number: str | None = None
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


@runtime_checkable
class DomainConnector(Protocol):
    """Protocol for utility API connectors."""

    @abstractmethod
    async def validate_account(
        self, data: dict[str, Any], config: ConnectorConfig
    ) -> ConnectorResult: ...

    @abstractmethod
    async def submit_enrollment(
        self, data: dict[str, Any], config: ConnectorConfig
    ) -> ConnectorResult: ...

    @abstractmethod
    async def get_schedule_slots(
        self, data: dict[str, Any], config: ConnectorConfig
    ) -> ConnectorResult: ...

    @abstractmethod
    async def book_appointment(
        self, data: dict[str, Any], config: ConnectorConfig
    ) -> ConnectorResult: ...


__all__ = ["ConnectorConfig", "ConnectorResult", "DomainConnector"]
