"""Person model definitions."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, String
from sqlalchemy.orm import relationship

from booking_service.core.clock import utcnow
from booking_service.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Person(Base):
    """A bookable member of an organization."""
    __tablename__ = "people"

    id = Column(String(36), primary_key=True, default=_new_id)
    organization_id = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    calendar_id = Column(String, nullable=True)
    calendar_credential = Column(String, nullable=True)  # OAuth refresh token
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    rules = relationship(
        "AvailabilityRule",
        back_populates="person",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    bookings = relationship(
        "Booking",
        back_populates="person",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def has_calendar(self) -> bool:
        return bool(self.calendar_id and self.calendar_credential)
