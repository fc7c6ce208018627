"""
Exponential backoff with jitter

Shared by the client (transport retries) and the job queue (job retries).
"""
import random
from typing import Optional


class BackoffPolicy:
    """Capped exponential backoff.

    delay(attempt) = min(base * factor ** (attempt - 1), cap), then scaled
    by a random factor in [1 - jitter, 1] so the cap is never exceeded.

    Example:
        >>> policy = BackoffPolicy(base=1.0, cap=30.0, jitter=0.2)
        >>> policy.delay(1)   # ~0.8-1.0s
        >>> policy.delay(4)   # ~6.4-8.0s
    """

    def __init__(
        self,
        base: float = 1.0,
        cap: float = 60.0,
        factor: float = 2.0,
        jitter: float = 0.2,
        rng: Optional[random.Random] = None
    ):
        if not 0 <= jitter <= 1:
            raise ValueError('jitter must be within [0, 1]')
        self.base = base
        self.cap = cap
        self.factor = factor
        self.jitter = jitter
        self._rng = rng or random.Random()

    def raw_delay(self, attempt: int) -> float:
        """Delay before jitter for the given 1-based attempt."""
        attempt = max(1, attempt)
        return min(self.base * (self.factor ** (attempt - 1)), self.cap)

    def delay(self, attempt: int) -> float:
        raw = self.raw_delay(attempt)
        if self.jitter == 0 or raw == 0:
            return raw
        return raw * self._rng.uniform(1 - self.jitter, 1)
