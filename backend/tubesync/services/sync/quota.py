"""
Quota buckets - token bucket rate limiting per credential

Every upstream request spends one token. Buckets refill continuously and
are shared by all workers using the same credential.
"""
import threading
from typing import Dict, Optional

from ...utils.logger import get_logger
from .clock import Clock, get_clock
from .errors import QuotaExceeded

logger = get_logger('quota')


class TokenBucket:
    """Thread-safe token bucket.

    Example:
        >>> bucket = TokenBucket(capacity=10, refill_per_second=2.0)
        >>> bucket.acquire(timeout=5.0)   # waits for a token or raises QuotaExceeded
        >>> bucket.get_stats()
    """

    def __init__(self, capacity: int, refill_per_second: float, clock: Optional[Clock] = None, name: str = ''):
        if capacity < 1:
            raise ValueError('capacity must be at least 1')
        if refill_per_second <= 0:
            raise ValueError('refill_per_second must be positive')

        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self.name = name
        self._clock = clock or get_clock()
        self._tokens = float(capacity)
        self._last_refill = self._clock.monotonic()
        self._lock = threading.Lock()
        self._stats = {'acquired': 0, 'waited': 0, 'rejected': 0}

    def _refill(self) -> None:
        now = self._clock.monotonic()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
            self._last_refill = now

    def try_acquire(self) -> bool:
        """Take a token without waiting."""
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                self._stats['acquired'] += 1
                return True
            return False

    def acquire(self, timeout: Optional[float] = None) -> float:
        """Take one token, waiting up to ``timeout`` seconds for a refill.

        Args:
            timeout: Maximum wait in seconds; None waits indefinitely

        Returns:
            Seconds spent waiting

        Raises:
            QuotaExceeded: No token became available within the timeout
        """
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    self._stats['acquired'] += 1
                    if waited > 0:
                        self._stats['waited'] += 1
                    return waited
                wait = (1 - self._tokens) / self.refill_per_second

                if timeout is not None and waited + wait > timeout:
                    self._stats['rejected'] += 1
                    logger.warning(
                        f"[Quota] Bucket '{self.name}' empty, next token in {wait:.2f}s "
                        f"exceeds timeout {timeout:.2f}s"
                    )
                    raise QuotaExceeded(
                        f"Quota exhausted for credential '{self.name}' "
                        f"(no token within {timeout:.2f}s)"
                    )

            logger.debug(f"[Quota] Bucket '{self.name}' empty, waiting {wait:.2f}s")
            self._clock.sleep(wait)
            waited += wait

    def get_stats(self) -> Dict:
        with self._lock:
            self._refill()
            return {
                'tokens': self._tokens,
                'capacity': self.capacity,
                **self._stats,
            }


class QuotaRegistry:
    """One TokenBucket per credential reference, created on first use."""

    def __init__(self, capacity: int, refill_per_second: float, clock: Optional[Clock] = None):
        self.capacity = capacity
        self.refill_per_second = refill_per_second
        self._clock = clock or get_clock()
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def get(self, credential_ref: str) -> TokenBucket:
        with self._lock:
            bucket = self._buckets.get(credential_ref)
            if bucket is None:
                bucket = TokenBucket(
                    self.capacity, self.refill_per_second,
                    clock=self._clock, name=credential_ref
                )
                self._buckets[credential_ref] = bucket
                logger.info(
                    f"[Quota] Bucket created for '{credential_ref}': "
                    f"capacity={self.capacity}, refill={self.refill_per_second}/s"
                )
            return bucket

    def get_stats(self) -> Dict[str, Dict]:
        with self._lock:
            buckets = dict(self._buckets)
        return {name: bucket.get_stats() for name, bucket in buckets.items()}
