"""Canonical webhook payloads, privacy masking and HMAC signatures.

Raw event data is sorted into known buckets (instance, submission,
customer, scheduling, step, visitor, attribution). Anything not
recognized lands in ``metadata`` so new event shapes never lose data.
Customer email and account numbers are masked before leaving the system.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from email_validator import EmailNotValidError, validate_email

from formflow.models import utcnow

# Top-level keys consumed by a bucket; everything else goes to metadata
HANDLED_KEYS = frozenset(
    {
        "instance_id",
        "instance_slug",
        "instance",
        "utility",
        "submission_id",
        "submission",
        "session_id",
        "status",
        "confirmation_number",
        "form_data",
        "customer",
        "device_type",
        "appointment",
        "schedule",
        "step",
        "step_name",
        "visitor_id",
        "attribution",
    }
)


def mask_email(email: str | None) -> str | None:
    """Mask an email address for privacy.

    Keeps the first and last character of the local part:
    ``john.doe@example.com`` becomes ``j*******e@example.com``. Local parts
    of two characters or fewer keep only their first character.

    Returns:
        The masked address, or None when ``email`` is missing or invalid.
    """
    if not email:
        return None
    try:
        parsed = validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return None

    local, domain = parsed.local_part, parsed.domain
    if len(local) <= 2:
        return f"{local[0]}*@{domain}"
    return f"{local[0]}{'*' * (len(local) - 1)}{local[-1]}@{domain}"


def mask_account(account: str) -> str:
    """Mask all but the last four characters: ``1234567890`` -> ``******7890``."""
    if len(account) <= 4:
        return "*" * len(account)
    return "*" * (len(account) - 4) + account[-4:]


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def build_payload(
    event: str,
    data: Mapping[str, Any],
    *,
    source: str = "formflow",
    version: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the canonical payload for a webhook event.

    Args:
        event: Event name, e.g. ``enrollment.completed``.
        data: Raw event data from the caller.
        source: System identifier placed in the payload.
        version: Payload producer version. Defaults to the package version.
        now: Event time. Defaults to the current UTC time.

    Returns:
        JSON-compatible payload mapping.
    """
    if version is None:
        from formflow import __version__ as version

    payload: dict[str, Any] = {
        "event": event,
        "timestamp": (now or utcnow()).isoformat(timespec="seconds"),
        "source": source,
        "version": version,
    }

    instance = _mapping(data.get("instance"))
    if data.get("instance_id") is not None or "instance" in data:
        payload["instance"] = {
            "id": _first(data.get("instance_id"), instance.get("id")),
            "slug": _first(data.get("instance_slug"), instance.get("slug")),
            "utility": _first(data.get("utility"), instance.get("utility")),
        }

    submission = _mapping(data.get("submission"))
    if data.get("submission_id") is not None or "submission" in data:
        payload["submission"] = {
            "id": _first(data.get("submission_id"), submission.get("id")),
            "session_id": data.get("session_id"),
            "status": data.get("status"),
            "confirmation_number": data.get("confirmation_number"),
        }

    if "form_data" in data or "customer" in data:
        form_data = _mapping(_first(data.get("form_data"), data.get("customer")))
        customer: dict[str, Any] = {
            "email": mask_email(form_data.get("email")),
            "zip": _first(form_data.get("zip"), form_data.get("zipcode")),
            "device_type": _first(data.get("device_type"), form_data.get("device_type")),
        }
        account = form_data.get("account_number")
        if account:
            customer["account_masked"] = mask_account(str(account))
        payload["customer"] = customer

    if "appointment" in data or "schedule" in data:
        schedule = _mapping(_first(data.get("appointment"), data.get("schedule")))
        payload["scheduling"] = {
            "date": schedule.get("date"),
            "time_slot": _first(schedule.get("time"), schedule.get("time_slot")),
            "fsr_number": _first(schedule.get("fsr"), schedule.get("fsr_number")),
        }

    if data.get("step") is not None:
        payload["step"] = {
            "number": data["step"],
            "name": data.get("step_name") or f"step_{data['step']}",
        }

    if data.get("visitor_id"):
        payload["visitor_id"] = data["visitor_id"]

    attribution = {
        key: value for key, value in _mapping(data.get("attribution")).items() if value is not None
    }
    if attribution:
        payload["attribution"] = attribution

    metadata = {key: value for key, value in data.items() if key not in HANDLED_KEYS}
    if metadata:
        payload["metadata"] = metadata

    return payload


def encode_payload(payload: Mapping[str, Any]) -> bytes:
    """Serialize a payload once into the exact bytes that are signed and sent."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode(
        "utf-8"
    )


def compute_signature(body: bytes, secret: str) -> str:
    """Compute the HMAC-SHA256 hex digest of ``body``.

    Args:
        body: Exact request body bytes.
        secret: Shared secret for HMAC.

    Returns:
        Lowercase hex digest (no prefix).
    """
    return hmac.new(
        key=secret.encode("utf-8"),
        msg=body,
        digestmod=hashlib.sha256,
    ).hexdigest()


def verify_signature(body: bytes, secret: str, signature: str) -> bool:
    """Verify an HMAC-SHA256 signature in constant time."""
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature)


__all__ = [
    "HANDLED_KEYS",
    "build_payload",
    "compute_signature",
    "encode_payload",
    "mask_account",
    "mask_email",
    "verify_signature",
]
