"""
Retry backoff policy.

    delay(n) = min(base * 2^(n-1), max)

With the defaults (base=15 min, max=360 min):

    attempt   1    2    3     4     5     6+
    delay    15   30   60   120   240   360   (minutes)

Pure: the caller supplies ``now``; nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from paperflow.core.config import Settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RetryPolicy:
    base:         timedelta = timedelta(minutes=15)
    maximum:      timedelta = timedelta(minutes=360)
    max_attempts: int       = 5

    def __post_init__(self) -> None:
        if self.base <= timedelta(0):
            raise ValueError("base backoff must be positive")
        if self.maximum < self.base:
            raise ValueError("maximum backoff must be >= base backoff")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            base=timedelta(minutes=settings.recovery_retry_backoff_base_minutes),
            maximum=timedelta(minutes=settings.recovery_retry_backoff_max_minutes),
            max_attempts=settings.recovery_retry_max_attempts,
        )

    def delay_for(self, retry_count: int) -> timedelta:
        """Backoff window after the ``retry_count``-th failure (1-based)."""
        exponent = max(0, retry_count - 1)
        # Past this exponent the doubled base is certainly above the cap;
        # stops 2**n from growing without bound for large counts.
        if exponent >= 32:
            return self.maximum
        return min(self.base * (2 ** exponent), self.maximum)

    def next_retry_at(self, retry_count: int, now: datetime | None = None) -> datetime:
        return (now or utcnow()) + self.delay_for(retry_count)

    def is_exhausted(self, retry_count: int) -> bool:
        """True once the document must no longer be retried automatically."""
        return retry_count >= self.max_attempts
