"""Exponential backoff policy shared by the retry store and the scheduler."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from formflow.config import Settings


class BackoffPolicy(BaseModel):
    """Delay before retry ``n`` is ``base * growth ** (n - 1)``, capped at ``max_delay``.

    With the defaults the first three retries wait 30s, 120s and 480s.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    base_seconds: float = Field(default=30, gt=0)
    growth: float = Field(default=4.0, ge=1)
    max_delay_seconds: float = Field(default=3600, gt=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> BackoffPolicy:
        return cls(
            base_seconds=settings.retry_base_delay_seconds,
            growth=settings.retry_growth_factor,
            max_delay_seconds=settings.retry_max_delay_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-indexed)."""
        exponent = max(attempt, 1) - 1
        return float(min(self.base_seconds * self.growth**exponent, self.max_delay_seconds))


DEFAULT_BACKOFF = BackoffPolicy()


def backoff(attempt: int) -> float:
    """Delay for ``attempt`` under the default policy."""
    return DEFAULT_BACKOFF.delay(attempt)


__all__ = ["DEFAULT_BACKOFF", "BackoffPolicy", "backoff"]
