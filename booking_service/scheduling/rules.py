"""Weekly availability rule expansion.

Rules are stored as ``day_of_week`` (0 = Sunday .. 6 = Saturday) plus a
``"HH:mm"`` window read as UTC wall-clock time.
"""

import re
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator

from booking_service.core.exceptions import RuleValidationError
from booking_service.scheduling.intervals import Interval

PAST_GRACE = timedelta(minutes=1)

_HHMM_PATTERN = re.compile(r'^(\d{2}):(\d{2})$')


def day_of_week(day: date) -> int:
    # date.weekday() counts from Monday; rules count from Sunday.
    return (day.weekday() + 1) % 7


def parse_rule_time(value: str) -> time:
    match = _HHMM_PATTERN.match(value.strip()) if isinstance(value, str) else None
    if not match:
        raise RuleValidationError(f'Invalid time {value!r}; expected HH:mm.')

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        raise RuleValidationError(f'Invalid time {value!r}; expected HH:mm.')

    return time(hour, minute)


def validate_rule_window(day: int, start_time: str, end_time: str) -> tuple[time, time]:
    if not 0 <= day <= 6:
        raise RuleValidationError('day_of_week must be between 0 (Sunday) and 6 (Saturday).')

    start = parse_rule_time(start_time)
    end = parse_rule_time(end_time)
    if start >= end:
        raise RuleValidationError(f'Rule start {start_time} must be before end {end_time}.')

    return start, end


def rule_minutes(rule) -> int:
    start = parse_rule_time(rule.start_time)
    end = parse_rule_time(rule.end_time)
    return (end.hour * 60 + end.minute) - (start.hour * 60 + start.minute)


def group_rules_by_day(rules: Iterable) -> dict[int, list]:
    rules_by_day: dict[int, list] = defaultdict(list)
    for rule in rules:
        rules_by_day[rule.day_of_week].append(rule)
    return rules_by_day


def expand_rule_window(
    day: date,
    start_time: str,
    end_time: str,
    duration_minutes: int,
    now: datetime,
) -> Iterator[Interval]:
    duration = timedelta(minutes=duration_minutes)
    slot_start = datetime.combine(day, parse_rule_time(start_time))
    window_end = datetime.combine(day, parse_rule_time(end_time))
    earliest_start = now + PAST_GRACE

    while slot_start + duration <= window_end:
        if slot_start > earliest_start:
            yield Interval(slot_start, slot_start + duration)
        slot_start += duration


def generate_candidate_slots(
    rules: Iterable,
    start_date: date,
    end_date: date,
    duration_minutes: int,
    now: datetime,
) -> Iterator[Interval]:
    """Yield back-to-back slots for every rule on every day of ``[start_date, end_date]``.

    Days are walked in ascending order; slots of overlapping rules are not
    merged here, the slot filter deals with them. Slots that do not start
    more than a minute after ``now`` are dropped.
    """
    if duration_minutes <= 0:
        raise RuleValidationError('Slot duration must be a positive number of minutes.')

    rules_by_day = group_rules_by_day(rules)
    if not rules_by_day:
        return

    current_day = start_date
    while current_day <= end_date:
        for rule in rules_by_day.get(day_of_week(current_day), ()):
            yield from expand_rule_window(current_day, rule.start_time, rule.end_time, duration_minutes, now)
        current_day += timedelta(days=1)


def theoretical_slot_counts(rules: Iterable, duration_minutes: int) -> dict[int, int]:
    """Maximum slots per day of week implied by the rules, ignoring bookings and calendars."""
    counts: dict[int, int] = defaultdict(int)
    for rule in rules:
        counts[rule.day_of_week] += rule_minutes(rule) // duration_minutes
    return dict(counts)
