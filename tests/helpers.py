"""Test doubles shared across the test suite."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

from formflow.connectors import ConnectorConfig, ConnectorResult
from formflow.events import EventBus


class FrozenClock:
    """Settable UTC clock for code that takes a ``clock`` callable."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeConnector:
    """Domain connector returning scripted results and recording calls.

    Each operation pops the next scripted result (or exception) from its
    queue and falls back to ``default`` once the queue is empty.
    """

    def __init__(self, default: ConnectorResult | None = None) -> None:
        self.default = default or ConnectorResult(success=True, confirmation_number="CONF-1")
        self.scripts: dict[str, list[ConnectorResult | Exception]] = {}
        self.calls: list[tuple[str, dict[str, Any], ConnectorConfig]] = []

    def script(self, operation: str, *outcomes: ConnectorResult | Exception) -> None:
        self.scripts.setdefault(operation, []).extend(outcomes)

    async def _call(
        self, operation: str, data: dict[str, Any], config: ConnectorConfig
    ) -> ConnectorResult:
        self.calls.append((operation, data, config))
        queue = self.scripts.get(operation) or []
        outcome = queue.pop(0) if queue else self.default
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def validate_account(self, data, config):
        return await self._call("validate_account", data, config)

    async def submit_enrollment(self, data, config):
        return await self._call("submit_enrollment", data, config)

    async def get_schedule_slots(self, data, config):
        return await self._call("get_schedule_slots", data, config)

    async def book_appointment(self, data, config):
        return await self._call("book_appointment", data, config)


class RecordingSender:
    """Email/SMS/CRM channel that records calls and returns ``result``."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.calls: list[tuple[Any, ...]] = []

    async def send(self, *args: Any) -> bool:
        self.calls.append(args)
        return self.result

    async def sync(self, *args: Any) -> bool:
        self.calls.append(args)
        return self.result


class EventRecorder:
    """Subscribes to bus events and keeps their payloads."""

    def __init__(self, bus: EventBus, *events: str) -> None:
        self.received: dict[str, list[dict[str, Any]]] = {event: [] for event in events}
        for event in events:
            bus.subscribe(event, self.received[event].append)

    def __getitem__(self, event: str) -> list[dict[str, Any]]:
        return self.received[event]


async def wait_for(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it is true or fail after ``timeout`` seconds."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.01)


