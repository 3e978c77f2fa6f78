from datetime import datetime
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_service import bookings, repository
from booking_service.core.exceptions import BookingServiceError
from booking_service.database import get_db
from booking_service.integrations.google_calendar import CalendarProvider
from booking_service.models.booking import Booking
from booking_service.notifications import mailer
from booking_service.routes import common
from booking_service.scheduling.reservation import ReservationGuard, ReservationRequest
from booking_service.services import get_calendar_client, get_reservation_guard

router = APIRouter(tags=['bookings'])

MAX_BOOKING_NOTES_LENGTH = 600


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_BOOKING_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_BOOKING_NOTES_LENGTH} characters or fewer.')

    return normalized


def _normalize_visitor_data(value: dict[str, Any]) -> dict[str, Any]:
    normalized = dict(value)
    email = normalized.get('email')
    if isinstance(email, str):
        email = email.strip().lower()
        if email and '@' not in email:
            raise ValueError('Visitor email is invalid.')
        normalized['email'] = email or None
    return normalized


class CreateBookingRequest(BaseModel):
    person_id: str
    start_time: datetime
    end_time: datetime
    visitor_data: dict[str, Any] = {}
    notes: str | None = None

    @field_validator('person_id')
    @classmethod
    def validate_person_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('person_id is required.')
        return normalized

    @field_validator('visitor_data')
    @classmethod
    def validate_visitor_data(cls, value: dict[str, Any]) -> dict[str, Any]:
        return _normalize_visitor_data(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class UpdateBookingRequest(BaseModel):
    notes: str | None = None
    visitor_data: dict[str, Any] | None = None

    @field_validator('visitor_data')
    @classmethod
    def validate_visitor_data(cls, value: dict[str, Any] | None) -> dict[str, Any] | None:
        return None if value is None else _normalize_visitor_data(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)


class CancelBookingRequest(BaseModel):
    reason: str | None = None


class BookingResponse(BaseModel):
    id: str
    person_id: str
    organization_id: str
    start_time: datetime
    end_time: datetime
    status: str
    visitor_data: dict[str, Any]
    external_event_id: str | None = None
    meeting_link: str | None = None
    notes: str | None = None
    cancellation_reason: str | None = None

    class Config:
        from_attributes = True


class BookingStatsResponse(BaseModel):
    total: int
    confirmed: int
    cancelled: int
    upcoming: int


def _email_enabled(db: Session, booking: Booking) -> bool:
    org_config = repository.get_organization_config(db, booking.organization_id)
    return org_config is None or bool(org_config.email_enabled)


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: CreateBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    guard: ReservationGuard = Depends(get_reservation_guard),
):
    common.ensure_database_ready()

    request = ReservationRequest(
        person_id=data.person_id,
        start=data.start_time,
        end=data.end_time,
        visitor_data=data.visitor_data,
        notes=data.notes,
    )

    def schedule_notifications(booking: Booking) -> None:
        if _email_enabled(db, booking):
            notice = mailer.BookingNotice.from_booking(booking, booking.person)
            background_tasks.add_task(mailer.send_booking_notifications, notice)

    try:
        booking = guard.reserve(db, request, on_committed=schedule_notifications)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc

    return booking


@router.get('', response_model=list[BookingResponse])
def list_bookings(
    organization_id: str = Query(...),
    status_filter: str | None = Query(default=None, alias='status'),
    person_id: str | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=bookings.MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    common.ensure_database_ready()

    try:
        return bookings.list_organization_bookings(
            db,
            organization_id,
            status=status_filter,
            person_id=person_id,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            offset=offset,
        )
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc


@router.get('/stats/{organization_id}', response_model=BookingStatsResponse)
def get_booking_stats(organization_id: str, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        return BookingStatsResponse(**bookings.booking_stats(db, organization_id))
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        return bookings.get_booking(db, booking_id)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise common.database_unavailable() from exc


@router.patch('/{booking_id}', response_model=BookingResponse)
def update_booking(booking_id: str, data: UpdateBookingRequest, db: Session = Depends(get_db)):
    common.ensure_database_ready()

    try:
        return bookings.update_booking(db, booking_id, notes=data.notes, visitor_data=data.visitor_data)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    data: CancelBookingRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    calendar: CalendarProvider | None = Depends(get_calendar_client),
):
    common.ensure_database_ready()

    try:
        booking = bookings.cancel_booking(db, booking_id, reason=data.reason, calendar=calendar)
        if _email_enabled(db, booking):
            notice = mailer.BookingNotice.from_booking(booking, booking.person)
            background_tasks.add_task(mailer.send_cancellation_notifications, notice)
    except BookingServiceError as exc:
        raise common.http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise common.database_unavailable() from exc

    return booking
