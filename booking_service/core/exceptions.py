"""Domain errors raised by the scheduling core.

Routes translate these into HTTP responses; nothing below the route layer
knows about status codes.
"""


class BookingServiceError(Exception):
    """Base class for every error the booking core raises on purpose."""


class RuleValidationError(BookingServiceError, ValueError):
    pass


class BookingValidationError(BookingServiceError, ValueError):
    pass


class AvailabilityQueryError(BookingServiceError, ValueError):
    """Invalid date range or slot duration."""


class PersonNotFoundError(BookingServiceError):
    pass


class PersonInactiveError(BookingServiceError):
    pass


class BookingNotFoundError(BookingServiceError):
    pass


class SlotConflictError(BookingServiceError):
    """The requested interval is no longer free; the caller should pick another slot."""

    def __init__(self, person_id: str, start, end, reason: str = 'This time is no longer available.'):
        super().__init__(reason)
        self.person_id = person_id
        self.start = start
        self.end = end
        self.reason = reason
