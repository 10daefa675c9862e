"""
Retry policies for failed delivery batches.

The uploader asks the policy after each consecutive failure whether the batch
goes back to the front of the queue and how long to hold off before the next
drain. ``RequeueForever`` retries on every tick with no ceiling.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol


class RetryPolicy(Protocol):
    def should_retry(self, attempts: int) -> bool:
        """Return False to drop a batch after ``attempts`` consecutive failures."""
        ...

    def delay(self, attempts: int) -> float:
        """Seconds to wait before the next drain after ``attempts`` failures."""
        ...


class RequeueForever:
    """Requeue every failed batch and retry it on the next tick."""

    def should_retry(self, attempts: int) -> bool:
        return True

    def delay(self, attempts: int) -> float:
        return 0.0


@dataclass(frozen=True)
class ExponentialBackoff:
    """Doubling delay between retries, optionally giving up after ``max_attempts``."""

    base: float = 10.0
    cap: float = 600.0
    max_attempts: Optional[int] = None

    def should_retry(self, attempts: int) -> bool:
        return self.max_attempts is None or attempts < self.max_attempts

    def delay(self, attempts: int) -> float:
        if attempts <= 0:
            return 0.0
        return min(self.cap, self.base * (2 ** (attempts - 1)))
