import logging
from datetime import datetime

from sqlalchemy.orm import Session

from booking_service.core.clock import utcnow
from booking_service.core.exceptions import BookingNotFoundError, BookingValidationError
from booking_service.integrations.google_calendar import CalendarProvider, binding_for
from booking_service.models.booking import (
    BOOKING_STATUSES,
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    Booking,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500


def get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.query(Booking).filter(Booking.id == booking_id).first()
    if booking is None:
        raise BookingNotFoundError(f'Booking {booking_id} not found.')
    return booking


def list_organization_bookings(
    db: Session,
    organization_id: str,
    status: str | None = None,
    person_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Booking]:
    if status is not None and status not in BOOKING_STATUSES:
        raise BookingValidationError(f'Unknown booking status {status!r}.')

    query = db.query(Booking).filter(Booking.organization_id == organization_id)
    if status:
        query = query.filter(Booking.status == status)
    if person_id:
        query = query.filter(Booking.person_id == person_id)
    if start_date:
        query = query.filter(Booking.start_time >= start_date)
    if end_date:
        query = query.filter(Booking.end_time <= end_date)

    return query.order_by(Booking.start_time.desc()).offset(offset).limit(min(limit, MAX_PAGE_SIZE)).all()


def update_booking(
    db: Session,
    booking_id: str,
    notes: str | None = None,
    visitor_data: dict | None = None,
) -> Booking:
    booking = get_booking(db, booking_id)
    if notes is not None:
        booking.notes = notes
    if visitor_data is not None:
        booking.visitor_data = visitor_data
    db.commit()
    db.refresh(booking)

    logger.info('Booking %s updated', booking_id)
    return booking


def cancel_booking(
    db: Session,
    booking_id: str,
    reason: str | None = None,
    calendar: CalendarProvider | None = None,
) -> Booking:
    """Mark a booking cancelled; the row is kept for audit and its calendar event removed if possible."""
    booking = get_booking(db, booking_id)
    if booking.status == STATUS_CANCELLED:
        return booking

    binding = binding_for(booking.person)
    if booking.external_event_id and binding is not None and calendar is not None:
        try:
            calendar.delete_event(binding, booking.external_event_id)
        except Exception:
            logger.exception('Failed to delete calendar event %s', booking.external_event_id)

    booking.status = STATUS_CANCELLED
    booking.cancellation_reason = reason
    db.commit()
    db.refresh(booking)

    logger.info('Booking %s cancelled', booking_id)
    return booking


def booking_stats(db: Session, organization_id: str) -> dict[str, int]:
    now = utcnow()
    rows = db.query(Booking.status, Booking.start_time).filter(Booking.organization_id == organization_id).all()

    return {
        'total': len(rows),
        'confirmed': sum(1 for status, _ in rows if status == STATUS_CONFIRMED),
        'cancelled': sum(1 for status, _ in rows if status == STATUS_CANCELLED),
        'upcoming': sum(1 for status, start in rows if status == STATUS_CONFIRMED and start > now),
    }
