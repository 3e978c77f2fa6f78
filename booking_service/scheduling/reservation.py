"""Reservation of a single slot.

Availability is listed optimistically, so a slot shown as free may be taken
by the time it is booked. ``ReservationGuard.reserve`` re-checks both busy
sources while holding a per-person lock and a row lock on the person. On
PostgreSQL the exclusion constraint on confirmed bookings also rejects
overlaps written by other processes.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Callable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking_service import repository
from booking_service.core.clock import to_utc_naive, utcnow
from booking_service.core.exceptions import (
    BookingServiceError,
    BookingValidationError,
    PersonInactiveError,
    PersonNotFoundError,
    SlotConflictError,
)
from booking_service.database import BOOKING_OVERLAP_CONSTRAINT
from booking_service.integrations.google_calendar import (
    CalendarEvent,
    CalendarProvider,
    CreatedEvent,
    binding_for,
)
from booking_service.models.booking import STATUS_CONFIRMED, Booking
from booking_service.scheduling.availability import AvailabilityService

logger = logging.getLogger(__name__)


class ReservationState(str, Enum):
    REQUESTED = 'requested'
    VALIDATING = 'validating'
    COMMITTED = 'committed'
    REJECTED = 'rejected'


@dataclass
class ReservationRequest:
    person_id: str
    start: datetime
    end: datetime
    visitor_data: dict = field(default_factory=dict)
    notes: str | None = None

    def __post_init__(self):
        self.start = to_utc_naive(self.start)
        self.end = to_utc_naive(self.end)


@dataclass
class ReservationAttempt:
    request: ReservationRequest
    state: ReservationState = ReservationState.REQUESTED
    booking: Booking | None = None

    def transition(self, state: ReservationState) -> None:
        logger.debug('Reservation for person %s: %s -> %s', self.request.person_id, self.state.value, state.value)
        self.state = state


def describe_booking(request: ReservationRequest) -> CalendarEvent:
    visitor_data, notes = request.visitor_data, request.notes
    name = visitor_data.get('name') or 'Visitor'
    lines = [
        'Booking Details:',
        f"- Visitor: {visitor_data.get('name') or 'N/A'}",
        f"- Email: {visitor_data.get('email') or 'N/A'}",
        f"- Phone: {visitor_data.get('phone') or 'N/A'}",
    ]
    if notes:
        lines.append(f'\nNotes: {notes}')
    return CalendarEvent(
        summary=f'Booking with {name}',
        description='\n'.join(lines),
        start=request.start,
        end=request.end,
        attendees=[visitor_data['email']] if visitor_data.get('email') else [],
    )


class ReservationGuard:
    def __init__(
        self,
        availability: AvailabilityService,
        calendar: CalendarProvider | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.availability = availability
        self.calendar = calendar
        self.clock = clock
        self._locks_guard = Lock()
        self._person_locks: dict[str, Lock] = {}

    def validate(self, request: ReservationRequest) -> None:
        if request.start >= request.end:
            raise BookingValidationError('Booking start must be before its end.')
        if request.start <= self.clock():
            raise BookingValidationError('Bookings must be scheduled in the future.')
        if not request.person_id:
            raise BookingValidationError('person_id is required.')

    def person_lock(self, person_id: str) -> Lock:
        with self._locks_guard:
            lock = self._person_locks.get(person_id)
            if lock is None:
                lock = self._person_locks[person_id] = Lock()
            return lock

    def reserve(
        self,
        db: Session,
        request: ReservationRequest,
        on_committed: Callable[[Booking], None] | None = None,
    ) -> Booking:
        """Commit a confirmed booking for the request or raise ``SlotConflictError``.

        The re-check and the commit run under a per-person lock, so two
        reservations for one person in this process never interleave. The
        calendar event is created once the booking is committed.
        ``on_committed`` runs last; its failures are logged and never undo or
        fail the booking.
        """
        attempt = ReservationAttempt(request)
        self.validate(request)

        logger.info(
            'Reserving %s-%s for person %s',
            request.start.isoformat(),
            request.end.isoformat(),
            request.person_id,
        )
        attempt.transition(ReservationState.VALIDATING)
        try:
            with self.person_lock(request.person_id):
                booking = self._validate_and_insert(db, attempt)
        except SlotConflictError:
            attempt.transition(ReservationState.REJECTED)
            raise
        except BookingServiceError:
            db.rollback()
            attempt.transition(ReservationState.REJECTED)
            raise

        attempt.booking = booking
        attempt.transition(ReservationState.COMMITTED)
        logger.info('Booking %s confirmed for person %s', booking.id, booking.person_id)

        self._attach_calendar_event(db, booking, request)

        if on_committed is not None:
            try:
                on_committed(booking)
            except Exception:
                logger.exception('Post-booking hook failed for booking %s', booking.id)

        return booking

    def _validate_and_insert(self, db: Session, attempt: ReservationAttempt) -> Booking:
        request = attempt.request
        person = repository.lock_person(db, request.person_id)
        if person is None:
            raise PersonNotFoundError(f'Person {request.person_id} not found.')
        if not person.is_active:
            raise PersonInactiveError(f'Person {request.person_id} is not accepting bookings.')

        if not self.availability.is_slot_available(db, person.id, request.start, request.end):
            db.rollback()
            raise SlotConflictError(person.id, request.start, request.end)

        booking = Booking(
            person_id=person.id,
            organization_id=person.organization_id,
            start_time=request.start,
            end_time=request.end,
            status=STATUS_CONFIRMED,
            visitor_data=request.visitor_data,
            notes=request.notes,
        )
        db.add(booking)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if BOOKING_OVERLAP_CONSTRAINT not in str(exc.orig):
                raise
            logger.warning(
                'Booking for person %s at %s lost a concurrent race: %s',
                person.id,
                request.start.isoformat(),
                exc.orig,
            )
            raise SlotConflictError(person.id, request.start, request.end) from exc

        db.refresh(booking)
        return booking

    def _attach_calendar_event(self, db: Session, booking: Booking, request: ReservationRequest) -> None:
        binding = binding_for(booking.person)
        if binding is None or self.calendar is None:
            return

        try:
            created = self.calendar.create_event(binding, describe_booking(request))
        except Exception:
            # The booking stands without a calendar event; it can be added by hand.
            logger.exception('Failed to create calendar event for booking %s', booking.id)
            return

        booking.external_event_id = created.event_id
        booking.meeting_link = created.meeting_link
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception('Failed to store calendar event %s on booking %s', created.event_id, booking.id)
            self._discard_calendar_event(binding, created)
            return
        db.refresh(booking)

    def _discard_calendar_event(self, binding, created: CreatedEvent) -> None:
        try:
            self.calendar.delete_event(binding, created.event_id)
        except Exception:
            logger.exception('Failed to remove orphaned calendar event %s', created.event_id)
