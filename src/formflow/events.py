"""In-process event bus.

Lets the host platform react to dispatch outcomes (API call completed,
permanent failure) without the dispatch code knowing who listens.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

# Published event names
API_COMPLETED = "queue.api_completed"
QUEUE_PERMANENT_FAILURE = "queue.permanent_failure"
RETRY_COMPLETED = "retry.completed"
RETRY_PERMANENT_FAILURE = "retry.permanent_failure"

Handler = Callable[[dict[str, Any]], Awaitable[None] | None]


class EventBus:
    """Publish/subscribe dispatcher for named events.

    Subscribers may be sync or async callables taking the payload mapping.
    A failing subscriber is logged and does not prevent the others from
    running.

    Example:
        ```python
        bus = EventBus()

        async def on_failure(payload: dict[str, Any]) -> None:
            await notify_admin(payload["error"])

        bus.subscribe("retry.permanent_failure", on_failure)
        await bus.publish("retry.permanent_failure", {"error": "timeout"})
        ```
    """

    def __init__(self) -> None:
        self._handlers: defaultdict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> None:
        if handler not in self._handlers[event]:
            self._handlers[event].append(handler)

    def unsubscribe(self, event: str, handler: Handler) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    def subscribers(self, event: str) -> list[Handler]:
        return list(self._handlers.get(event, []))

    async def publish(self, event: str, payload: dict[str, Any]) -> int:
        """Invoke every subscriber of ``event`` in subscription order.

        Returns:
            Number of subscribers that completed without raising.
        """
        delivered = 0
        for handler in self.subscribers(event):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:
                logger.exception("Event subscriber failed for %s", event)
        return delivered


__all__ = [
    "API_COMPLETED",
    "QUEUE_PERMANENT_FAILURE",
    "RETRY_COMPLETED",
    "RETRY_PERMANENT_FAILURE",
    "EventBus",
    "Handler",
]
