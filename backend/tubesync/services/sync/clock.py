"""
Clock abstraction

Everything time-dependent in the sync pipeline (bucket refill, cache TTL,
backoff sleeps, job scheduling) goes through a Clock so tests can drive
time explicitly instead of sleeping.
"""
import threading
import time
from datetime import datetime, timedelta


class Clock:
    """Wall clock for production use."""

    def now(self) -> datetime:
        """Naive UTC datetime, matching the DateTime columns."""
        return datetime.utcnow()

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class FakeClock(Clock):
    """Manually advanced clock.

    sleep() advances time instead of blocking, which makes backoff and
    quota waits instantaneous and observable in tests.
    """

    def __init__(self, start: datetime = None):
        self._start = start or datetime(2024, 1, 1)
        self._elapsed = 0.0
        self._lock = threading.Lock()
        self.sleeps = []

    def now(self) -> datetime:
        with self._lock:
            return self._start + timedelta(seconds=self._elapsed)

    def monotonic(self) -> float:
        with self._lock:
            return self._elapsed

    def sleep(self, seconds: float) -> None:
        with self._lock:
            self.sleeps.append(seconds)
            if seconds > 0:
                self._elapsed += seconds

    def advance(self, seconds: float) -> None:
        with self._lock:
            self._elapsed += seconds


_system_clock = Clock()


def get_clock() -> Clock:
    return _system_clock
