"""
Time sources used by vaults and the certificate registry
"""

import threading
import time
from typing import Protocol

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR
WEEK = 7 * DAY
YEAR = 365 * DAY


class Clock(Protocol):
    def now(self) -> int:
        ...


class SystemClock:
    """Wall clock in whole seconds that never goes backwards"""

    def __init__(self):
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            self._last = max(self._last, int(time.time()))
            return self._last


class ManualClock:
    """Deterministic clock for tests and simulations"""

    def __init__(self, start: int = 1_700_000_000):
        if start < 0:
            raise ValueError("Clock cannot start before the epoch")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError(f"Cannot move clock backwards by {-seconds}s")
        self._now += seconds
        return self._now

    def set(self, timestamp: int) -> int:
        if timestamp < self._now:
            raise ValueError(f"Cannot rewind clock from {self._now} to {timestamp}")
        self._now = timestamp
        return self._now
