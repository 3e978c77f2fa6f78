"""Availability orchestration across every active person of an organization.

Loads people, rules and bookings with one bulk query each, asks the busy
aggregator for calendar busy time, then runs each person's pure pipeline
(rule expansion, then slot filtering) independently before merging.
"""

import logging
import time
from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from booking_service import repository
from booking_service.core import config
from booking_service.core.clock import utcnow
from booking_service.core.exceptions import AvailabilityQueryError, PersonNotFoundError
from booking_service.scheduling.busy import BusyIntervalAggregator
from booking_service.scheduling.intervals import (
    AvailableSlot,
    Interval,
    attribute_slots,
    conflicts_with_any,
    filter_free_slots,
)
from booking_service.scheduling.rules import day_of_week, generate_candidate_slots, theoretical_slot_counts

logger = logging.getLogger(__name__)


def compute_person_slots(
    rules: list,
    busy: list[Interval],
    start_date: date,
    end_date: date,
    duration_minutes: int,
    buffer_minutes: int,
    now: datetime,
) -> list[Interval]:
    candidates = generate_candidate_slots(rules, start_date, end_date, duration_minutes, now)
    return filter_free_slots(candidates, busy, buffer_minutes)


def query_window(start_date: date, end_date: date) -> tuple[datetime, datetime]:
    return datetime.combine(start_date, datetime.min.time()), datetime.combine(end_date + timedelta(days=1), datetime.min.time())


class AvailabilityService:
    def __init__(self, aggregator: BusyIntervalAggregator, clock: Callable[[], datetime] = utcnow):
        self.aggregator = aggregator
        self.clock = clock

    def resolve_settings(self, org_config, duration_minutes: int | None) -> tuple[int, int, int]:
        duration = (
            duration_minutes
            or (org_config.booking_duration_minutes if org_config else None)
            or config.DEFAULT_BOOKING_DURATION_MINUTES
        )
        buffer_minutes = (org_config.buffer_minutes if org_config else None) or 0
        advance_days = (
            (org_config.advance_booking_days if org_config else None)
            or config.DEFAULT_ADVANCE_BOOKING_DAYS
        )
        if duration <= 0:
            raise AvailabilityQueryError('Slot duration must be a positive number of minutes.')
        return duration, buffer_minutes, advance_days

    def _clamp_range(self, start_date: date, end_date: date, advance_days: int) -> tuple[date, date]:
        if start_date > end_date:
            raise AvailabilityQueryError('start_date must not be after end_date.')
        last_bookable_day = self.clock().date() + timedelta(days=advance_days)
        return start_date, min(end_date, last_bookable_day)

    def compute_slots(
        self,
        db: Session,
        organization_id: str,
        start_date: date,
        end_date: date,
        duration_minutes: int | None = None,
    ) -> list[AvailableSlot]:
        started = time.perf_counter()
        org_config = repository.get_organization_config(db, organization_id)
        duration, buffer_minutes, advance_days = self.resolve_settings(org_config, duration_minutes)
        start_date, end_date = self._clamp_range(start_date, end_date, advance_days)
        if start_date > end_date:
            return []

        people = repository.list_active_people(db, organization_id)
        if not people:
            logger.warning('No active people found for organization %s', organization_id)
            return []

        person_ids = [person.id for person in people]
        window_start, window_end = query_window(start_date, end_date)
        rules_by_person = repository.rules_by_person(db, person_ids)
        bookings_by_person = repository.confirmed_bookings_by_person(db, person_ids, window_start, window_end)

        # Only people who could produce slots need their calendars queried.
        people_with_rules = [person for person in people if rules_by_person.get(person.id)]
        busy_by_person = self.aggregator.busy_for_people(
            db, people_with_rules, window_start, window_end, bookings_by_person=bookings_by_person
        )

        now = self.clock()
        all_slots: list[AvailableSlot] = []
        for person in people_with_rules:
            try:
                free = compute_person_slots(
                    rules_by_person[person.id],
                    busy_by_person.get(person.id, []),
                    start_date,
                    end_date,
                    duration,
                    buffer_minutes,
                    now,
                )
            except Exception:
                logger.exception('Failed to calculate availability for person %s', person.id)
                continue
            all_slots.extend(attribute_slots(free, person))

        all_slots.sort(key=lambda slot: slot.start)

        logger.debug(
            'Availability for %s: %d people, %d bookings, %d slots in %.1fms',
            organization_id,
            len(people),
            sum(len(bookings) for bookings in bookings_by_person.values()),
            len(all_slots),
            (time.perf_counter() - started) * 1000,
        )
        return all_slots

    def compute_available_dates(
        self,
        db: Session,
        organization_id: str,
        start_date: date,
        end_date: date,
        duration_minutes: int | None = None,
    ) -> list[date]:
        """Days with at least one likely opening, by comparing booking counts to rule capacity.

        A day counts as open when some person has fewer confirmed bookings that
        day than their rules can hold. Calendar busy time is not consulted, and
        bookings that exhaust the capacity unevenly can leave a full day marked
        open; both keep this cheap enough for calendar rendering.
        """
        started = time.perf_counter()
        org_config = repository.get_organization_config(db, organization_id)
        duration, _, advance_days = self.resolve_settings(org_config, duration_minutes)
        start_date, end_date = self._clamp_range(start_date, end_date, advance_days)
        if start_date > end_date:
            return []

        people = repository.list_active_people(db, organization_id)
        if not people:
            return []

        person_ids = [person.id for person in people]
        rules_by_person = repository.rules_by_person(db, person_ids)
        capacity_by_person = {
            person_id: theoretical_slot_counts(rules, duration)
            for person_id, rules in rules_by_person.items()
        }
        open_weekdays = {dow for capacity in capacity_by_person.values() for dow, count in capacity.items() if count > 0}

        today = self.clock().date()
        candidate_dates = []
        current_day = max(start_date, today)
        while current_day <= end_date:
            if day_of_week(current_day) in open_weekdays:
                candidate_dates.append(current_day)
            current_day += timedelta(days=1)

        if not candidate_dates:
            return []

        window_start, window_end = query_window(start_date, end_date)
        bookings_by_person = repository.confirmed_bookings_by_person(db, person_ids, window_start, window_end)
        booking_counts: dict[tuple[str, date], int] = defaultdict(int)
        for person_id, bookings in bookings_by_person.items():
            for booking in bookings:
                booking_counts[(person_id, booking.start_time.date())] += 1

        available_dates = []
        for candidate in candidate_dates:
            weekday = day_of_week(candidate)
            for person_id in person_ids:
                capacity = capacity_by_person.get(person_id, {}).get(weekday, 0)
                if capacity and booking_counts[(person_id, candidate)] < capacity:
                    available_dates.append(candidate)
                    break

        logger.debug(
            'Available dates for %s: %d of %d candidate days in %.1fms',
            organization_id,
            len(available_dates),
            len(candidate_dates),
            (time.perf_counter() - started) * 1000,
        )
        return available_dates

    def is_slot_available(self, db: Session, person_id: str, start: datetime, end: datetime) -> bool:
        person = repository.get_person(db, person_id)
        if person is None:
            raise PersonNotFoundError(f'Person {person_id} not found.')

        conflicting = repository.first_conflicting_booking(db, person_id, start, end)
        if conflicting is not None:
            logger.warning(
                'Slot %s-%s for person %s conflicts with booking %s (%s-%s)',
                start.isoformat(),
                end.isoformat(),
                person_id,
                conflicting.id,
                conflicting.start_time.isoformat(),
                conflicting.end_time.isoformat(),
            )
            return False

        external_busy = self.aggregator.external_busy_for_person(person, start, end)
        if conflicts_with_any(start, end, external_busy):
            logger.warning(
                'Slot %s-%s for person %s conflicts with a calendar event',
                start.isoformat(),
                end.isoformat(),
                person_id,
            )
            return False

        return True
