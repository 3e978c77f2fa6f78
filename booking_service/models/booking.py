"""Booking model definitions."""

import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from booking_service.core.clock import utcnow
from booking_service.database import Base

STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"
STATUS_COMPLETED = "completed"
BOOKING_STATUSES = (STATUS_CONFIRMED, STATUS_CANCELLED, STATUS_COMPLETED)


def _new_id() -> str:
    return str(uuid.uuid4())


class Booking(Base):
    """A reservation of one person for one interval."""
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_new_id)
    person_id = Column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(String, nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=STATUS_CONFIRMED)
    visitor_data = Column(JSON, nullable=False, default=dict)
    external_event_id = Column(String, nullable=True)
    meeting_link = Column(String, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    person = relationship("Person", back_populates="bookings")
