from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from booking_service.core.exceptions import (
    AvailabilityQueryError,
    BookingNotFoundError,
    BookingServiceError,
    BookingValidationError,
    PersonInactiveError,
    PersonNotFoundError,
    RuleValidationError,
    SlotConflictError,
)
from booking_service.database import ensure_booking_schema

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_STATUS_BY_ERROR = (
    (SlotConflictError, status.HTTP_409_CONFLICT),
    (PersonInactiveError, status.HTTP_409_CONFLICT),
    (PersonNotFoundError, status.HTTP_404_NOT_FOUND),
    (BookingNotFoundError, status.HTTP_404_NOT_FOUND),
    (RuleValidationError, status.HTTP_400_BAD_REQUEST),
    (BookingValidationError, status.HTTP_400_BAD_REQUEST),
    (AvailabilityQueryError, status.HTTP_400_BAD_REQUEST),
)


def http_error(exc: BookingServiceError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc
