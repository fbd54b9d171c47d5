import threading
import time
from dataclasses import dataclass
from typing import Callable, Protocol


class RateLimiter(Protocol):
    def hit(self, key: str) -> bool:
        """Record one request for `key`; False when it exceeds the limit."""
        ...


@dataclass
class WindowRecord:
    count: int
    window_start: float


class FixedWindowRateLimiter:
    """In-process fixed-window counter. Swap for a shared store when running several instances."""

    def __init__(
        self,
        limit: int,
        window_secs: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("Rate limit must allow at least one request")
        self.limit = limit
        self.window_secs = window_secs
        self.clock = clock
        self._records: dict[str, WindowRecord] = {}
        self._lock = threading.Lock()

    def hit(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            self._prune(now)
            record = self._records.get(key)
            if record is None:
                record = WindowRecord(count=0, window_start=now)
                self._records[key] = record
            record.count += 1
            return record.count <= self.limit

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, record in self._records.items()
            if now - record.window_start >= self.window_secs
        ]
        for key in expired:
            del self._records[key]
