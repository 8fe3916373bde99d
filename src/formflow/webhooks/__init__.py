"""Webhook delivery for FormFlow.

Provides canonical payloads with privacy masking, HMAC-signed delivery and
fan-out to subscribed endpoints.

Example:
    ```python
    from formflow.webhooks import WebhookDeliveryEngine

    engine = WebhookDeliveryEngine(storage)
    await engine.trigger("enrollment.completed", data, instance_id="ins_1")
    ```
"""

from .delivery import MAX_BODY_CHARS, WebhookDeliveryEngine
from .payload import (
    HANDLED_KEYS,
    build_payload,
    compute_signature,
    encode_payload,
    mask_account,
    mask_email,
    verify_signature,
)

__all__ = [
    "HANDLED_KEYS",
    "MAX_BODY_CHARS",
    "WebhookDeliveryEngine",
    "build_payload",
    "compute_signature",
    "encode_payload",
    "mask_account",
    "mask_email",
    "verify_signature",
]
