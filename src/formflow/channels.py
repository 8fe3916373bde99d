"""Outbound delivery channels used by the email, SMS and CRM hooks.

Implementations are supplied by the host platform. Each returns a truthy
value on success; a falsy result is treated as a transient failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@runtime_checkable
class EmailSender(Protocol):
    async def send(
        self,
        to: str,
        subject: str,
        message: str,
        headers: list[str],
        attachments: list[str],
    ) -> bool: ...


@runtime_checkable
class SmsSender(Protocol):
    async def send(self, to: str, message: str, instance_id: str) -> bool: ...


@runtime_checkable
class CrmSyncer(Protocol):
    async def sync(self, submission_id: str, instance_id: str, crm_type: str) -> bool: ...


@dataclass
class Channels:
    """The set of configured delivery channels. ``None`` means not configured."""

    email: EmailSender | None = None
    sms: SmsSender | None = None
    crm: CrmSyncer | None = None


__all__ = ["Channels", "CrmSyncer", "EmailSender", "SmsSender"]
