"""Short-lived cache for external calendar busy intervals."""

import logging
import threading
import time
from datetime import datetime
from typing import Callable, NamedTuple, Protocol

from booking_service.scheduling.intervals import Interval

logger = logging.getLogger(__name__)


class BusyCacheKey(NamedTuple):
    person_id: str
    window_start: datetime
    window_end: datetime


class BusyCache(Protocol):
    def get(self, key: BusyCacheKey) -> list[Interval] | None: ...

    def set(self, key: BusyCacheKey, intervals: list[Interval]) -> None: ...

    def sweep(self) -> int: ...


class InMemoryBusyCache:
    """Per-entry expiry over a plain dict; entries are independent, so one lock suffices."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[BusyCacheKey, tuple[float, list[Interval]]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: BusyCacheKey) -> list[Interval] | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, intervals = entry
            if expires_at <= now:
                del self._entries[key]
                return None
            return intervals

    def set(self, key: BusyCacheKey, intervals: list[Interval]) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, list(intervals))

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
            for key in expired:
                del self._entries[key]
            remaining = len(self._entries)

        if expired:
            logger.debug('Evicted %d expired busy-cache entries, %d remaining', len(expired), remaining)
        return len(expired)


class CacheSweeper:
    """Background thread that periodically evicts expired cache entries until stopped."""

    def __init__(self, cache: BusyCache, interval_seconds: float):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='busy-cache-sweeper', daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.cache.sweep()
            except Exception:
                logger.exception('Busy-cache sweep failed')
