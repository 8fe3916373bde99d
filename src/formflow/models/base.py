"""Base helpers shared by FormFlow models."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("act") -> "act_a1b2c3d4e5f6a7b8"
        generate_id("rty") -> "rty_a1b2c3d4e5f6a7b8"
    """
    return f"{prefix}_{uuid4().hex[:16]}"


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
