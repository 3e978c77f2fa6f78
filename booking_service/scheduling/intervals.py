"""Interval types and the slot filter.

Every interval is half-open, ``[start, end)``, in naive UTC.
"""

from datetime import datetime, timedelta
from typing import Iterable, NamedTuple


class Interval(NamedTuple):
    start: datetime
    end: datetime


class AvailableSlot(NamedTuple):
    start: datetime
    end: datetime
    person_id: str
    person_name: str
    person_email: str


def times_overlap(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    return start1 < end2 and end1 > start2


def conflicts_with_any(start: datetime, end: datetime, busy: Iterable[Interval]) -> bool:
    return any(times_overlap(start, end, interval.start, interval.end) for interval in busy)


def filter_free_slots(
    candidates: Iterable[Interval],
    busy: list[Interval],
    buffer_minutes: int = 0,
) -> list[Interval]:
    """Keep the candidates that overlap no busy interval once padded by the buffer on both ends."""
    buffer = timedelta(minutes=buffer_minutes)
    return [
        candidate
        for candidate in candidates
        if not conflicts_with_any(candidate.start - buffer, candidate.end + buffer, busy)
    ]


def attribute_slots(slots: Iterable[Interval], person) -> list[AvailableSlot]:
    return [
        AvailableSlot(
            start=slot.start,
            end=slot.end,
            person_id=person.id,
            person_name=person.display_name,
            person_email=person.email,
        )
        for slot in slots
    ]
