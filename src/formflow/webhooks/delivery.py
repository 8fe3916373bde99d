"""Webhook delivery with HMAC signatures.

Each delivery is a single POST. There is no retry inside this module:
single-endpoint deliveries that must be retried go through the scheduler,
and fan-out deliveries are fire-once.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any

import httpx

from formflow.models import DeliveryResult, WebhookEndpoint, utcnow

from .payload import build_payload, compute_signature, encode_payload

if TYPE_CHECKING:
    from formflow.config import Settings
    from formflow.storage import Repository

logger = logging.getLogger(__name__)

MAX_BODY_CHARS = 1000


class WebhookDeliveryEngine:
    """Delivers webhook events to registered endpoints.

    Handles:
    - Building the canonical, masked payload
    - Signing the exact body bytes with the endpoint secret
    - Posting with a bounded timeout and TLS verification
    - Recording the outcome on the endpoint

    Example:
        ```python
        engine = WebhookDeliveryEngine(storage)

        # Fan out an event to every subscribed endpoint
        results = await engine.trigger("enrollment.completed", data, instance_id="ins_1")

        # Deliver to one endpoint
        result = await engine.deliver(endpoint, "enrollment.completed", data)
        ```
    """

    def __init__(
        self,
        repository: Repository,
        source: str = "formflow",
        timeout_seconds: float = 15.0,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the delivery engine.

        Args:
            repository: Storage for endpoint lookup, outcome counters and logs.
            source: Value of the ``X-Source`` header and payload ``source``.
            timeout_seconds: HTTP request timeout.
            verify_tls: Verify endpoint TLS certificates.
            transport: Custom httpx transport (tests use httpx.MockTransport).
            clock: Source of the current UTC time.
        """
        self._repository = repository
        self._source = source
        self._timeout = timeout_seconds
        self._verify_tls = verify_tls
        self._transport = transport
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        repository: Repository,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> WebhookDeliveryEngine:
        return cls(
            repository,
            source=settings.webhook_source,
            timeout_seconds=settings.webhook_timeout_seconds,
            verify_tls=settings.webhook_verify_tls,
            transport=transport,
        )

    def _sign(self, endpoint: WebhookEndpoint, body: bytes) -> str | None:
        if not endpoint.secret:
            logger.warning("Webhook %s has no secret, sending unsigned", endpoint.id)
            return None
        try:
            return compute_signature(body, endpoint.secret)
        except (UnicodeError, TypeError, ValueError) as e:
            logger.warning("Failed to sign webhook %s, sending unsigned: %s", endpoint.id, e)
            return None

    async def deliver(
        self,
        endpoint: WebhookEndpoint,
        event: str,
        data: Mapping[str, Any],
    ) -> DeliveryResult:
        """Deliver one event to one endpoint.

        HTTP-level failures never raise: a non-2xx status or a transport
        error (timeout, DNS, refused connection) is reported in the result.
        The endpoint's counters are updated either way.

        Args:
            endpoint: Target endpoint.
            event: Event name.
            data: Raw event data.

        Returns:
            DeliveryResult with status code, truncated body or error.
        """
        now = self._clock()
        payload = build_payload(event, data, source=self._source, now=now)
        body = encode_payload(payload)

        headers = {
            "Content-Type": "application/json",
            "X-Event": event,
            "X-Timestamp": str(int(now.timestamp())),
            "X-Source": self._source,
        }
        signature = self._sign(endpoint, body)
        if signature is not None:
            headers["X-Signature"] = signature

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                verify=self._verify_tls,
                transport=self._transport,
            ) as client:
                response = await client.post(endpoint.url, content=body, headers=headers)

            success = 200 <= response.status_code < 300
            result = DeliveryResult(
                success=success,
                status_code=response.status_code,
                body=response.text[:MAX_BODY_CHARS] if response.text else None,
                error=None if success else f"HTTP {response.status_code}",
            )
        except httpx.TimeoutException:
            result = DeliveryResult(success=False, error="Request timeout")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            result = DeliveryResult(success=False, error=str(e) or type(e).__name__)

        if result.success:
            logger.info(
                "Webhook delivered: %s to %s (status %d)", event, endpoint.url, result.status_code
            )
        else:
            logger.warning("Webhook failed: %s to %s (%s)", event, endpoint.url, result.error)

        await self._repository.record_delivery_outcome(endpoint.id, result.success)
        return result

    async def trigger(
        self,
        event: str,
        data: Mapping[str, Any],
        instance_id: str | None = None,
    ) -> dict[str, DeliveryResult]:
        """Deliver an event to every active endpoint subscribed to it.

        Endpoints are called one after another. Each outcome is appended to
        the operational log.

        Args:
            event: Event name.
            data: Raw event data.
            instance_id: Instance the event belongs to. Global endpoints always match.

        Returns:
            Mapping of endpoint ID to its delivery result.
        """
        endpoints = await self._repository.get_webhooks_for_event(event, instance_id)
        if not endpoints:
            logger.debug("No webhooks subscribed to %s for instance %s", event, instance_id)
            return {}

        results: dict[str, DeliveryResult] = {}
        for endpoint in endpoints:
            result = await self.deliver(endpoint, event, data)
            results[endpoint.id] = result
            outcome = "Success" if result.success else "Failed"
            await self._repository.append_log(
                "info" if result.success else "warning",
                f"Webhook {endpoint.name or endpoint.id}: {outcome}",
                {
                    "webhook_id": endpoint.id,
                    "event": event,
                    "status_code": result.status_code,
                    "error": result.error,
                },
                instance_id,
            )
        return results


__all__ = ["MAX_BODY_CHARS", "WebhookDeliveryEngine"]
