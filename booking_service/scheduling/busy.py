"""Busy-interval aggregation from bookings and external calendars.

Booking-sourced intervals come from one bulk query per call. External
intervals come from chunked free/busy queries that run concurrently, are
cached briefly, and fail open: a chunk that errors or times out contributes
no busy time for its people instead of failing the aggregation.
"""

import logging
import math
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from booking_service import repository
from booking_service.core import config
from booking_service.integrations.google_calendar import CalendarBinding, CalendarProvider, binding_for
from booking_service.scheduling.cache import BusyCache, BusyCacheKey
from booking_service.scheduling.intervals import Interval

logger = logging.getLogger(__name__)


def chunked(items: list, size: int) -> list[list]:
    return [items[index:index + size] for index in range(0, len(items), size)]


def intervals_from_bookings(bookings: Iterable) -> list[Interval]:
    return [Interval(booking.start_time, booking.end_time) for booking in bookings]


class BusyIntervalAggregator:
    def __init__(
        self,
        calendar: CalendarProvider | None,
        cache: BusyCache | None = None,
        chunk_size: int = config.FREE_BUSY_CHUNK_SIZE,
        chunk_timeout_seconds: float = config.CALENDAR_CHUNK_TIMEOUT_SECONDS,
        max_workers: int = config.CALENDAR_MAX_WORKERS,
    ):
        if not 1 <= chunk_size <= config.MAX_FREE_BUSY_CHUNK_SIZE:
            raise ValueError(f'chunk_size must be between 1 and {config.MAX_FREE_BUSY_CHUNK_SIZE}.')
        self.calendar = calendar
        self.cache = cache
        self.chunk_size = chunk_size
        self.chunk_timeout_seconds = chunk_timeout_seconds
        self.max_workers = max(1, max_workers)

    def busy_for_people(
        self,
        db: Session,
        people: list,
        window_start: datetime,
        window_end: datetime,
        bookings_by_person: dict[str, list] | None = None,
    ) -> dict[str, list[Interval]]:
        """Busy intervals per person id for ``[window_start, window_end)`` from both sources."""
        if bookings_by_person is None:
            bookings_by_person = repository.confirmed_bookings_by_person(
                db, [person.id for person in people], window_start, window_end
            )
        external = self.external_busy(people, window_start, window_end)

        return {
            person.id: intervals_from_bookings(bookings_by_person.get(person.id, ())) + external.get(person.id, [])
            for person in people
        }

    def external_busy(self, people: Iterable, window_start: datetime, window_end: datetime) -> dict[str, list[Interval]]:
        bindings = [binding for binding in (binding_for(person) for person in people) if binding is not None]
        result: dict[str, list[Interval]] = {}
        if not bindings or self.calendar is None:
            return result

        to_fetch: list[CalendarBinding] = []
        for binding in bindings:
            cached = self.cache.get(self._cache_key(binding.person_id, window_start, window_end)) if self.cache else None
            if cached is None:
                to_fetch.append(binding)
            else:
                result[binding.person_id] = cached

        cache_hits = len(bindings) - len(to_fetch)
        if not to_fetch:
            logger.debug('All external busy time for %d people served from cache', cache_hits)
            return result

        fetched = self._fetch_chunks(to_fetch, window_start, window_end)
        for person_id, intervals in fetched.items():
            result[person_id] = intervals
            if self.cache is not None:
                self.cache.set(self._cache_key(person_id, window_start, window_end), intervals)

        logger.debug(
            'External busy time: %d people, %d cache hits, %d fetched, %d degraded',
            len(bindings),
            cache_hits,
            len(fetched),
            len(to_fetch) - len(fetched),
        )
        return result

    def external_busy_for_person(self, person, start: datetime, end: datetime) -> list[Interval]:
        """Uncached busy events for one person; an upstream failure yields no busy time."""
        binding = binding_for(person)
        if binding is None or self.calendar is None:
            return []
        try:
            return self.calendar.list_busy_intervals(binding, start, end)
        except Exception:
            logger.warning('Calendar lookup failed for person %s; treating as free', person.id, exc_info=True)
            return []

    def _fetch_chunks(
        self, bindings: list[CalendarBinding], window_start: datetime, window_end: datetime
    ) -> dict[str, list[Interval]]:
        """Query every chunk concurrently; each chunk's timeout starts when a worker picks it up.

        Chunks still queued when every worker is stuck are abandoned once the
        whole batch has had one extra round. Abandoned workers are not
        interrupted; the client's per-request socket timeout bounds how long
        they linger.
        """
        chunks = chunked(bindings, self.chunk_size)
        workers = min(self.max_workers, len(chunks))
        rounds = math.ceil(len(chunks) / workers)
        started_at: dict[int, float] = {}

        def query(index: int, chunk: list[CalendarBinding]) -> dict[str, list[Interval]]:
            started_at[index] = time.monotonic()
            return self.calendar.query_free_busy(chunk, window_start, window_end)

        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='freebusy')
        batch_deadline = time.monotonic() + self.chunk_timeout_seconds * (rounds + 1)
        futures = {executor.submit(query, index, chunk): index for index, chunk in enumerate(chunks)}
        pending = set(futures)
        done = set()
        try:
            while pending:
                now = time.monotonic()
                running = [future for future in pending if futures[future] in started_at and not future.done()]
                expired = [future for future in running if now - started_at[futures[future]] >= self.chunk_timeout_seconds]
                pending.difference_update(expired)
                running = [future for future in running if future not in expired]
                if not pending or now >= batch_deadline:
                    break

                next_expiry = min(
                    (started_at[futures[future]] + self.chunk_timeout_seconds for future in running),
                    default=batch_deadline,
                )
                finished, _ = wait(pending, timeout=min(next_expiry, batch_deadline) - now, return_when=FIRST_COMPLETED)
                done |= finished
                pending -= finished
            done |= {future for future in pending if future.done()}
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        result: dict[str, list[Interval]] = {}
        for future, index in futures.items():
            chunk = chunks[index]
            if future not in done:
                logger.warning(
                    'Free/busy chunk of %d calendars timed out after %ss; treating as free',
                    len(chunk),
                    self.chunk_timeout_seconds,
                )
                continue
            error = future.exception()
            if error is not None:
                logger.warning(
                    'Free/busy chunk of %d calendars failed; treating as free: %s',
                    len(chunk),
                    error,
                )
                continue
            busy_by_person = future.result()
            for binding in chunk:
                result[binding.person_id] = busy_by_person.get(binding.person_id, [])
        return result

    @staticmethod
    def _cache_key(person_id: str, window_start: datetime, window_end: datetime) -> BusyCacheKey:
        return BusyCacheKey(person_id, window_start, window_end)
