"""Availability rule model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from booking_service.database import Base


class AvailabilityRule(Base):
    """A weekly window, "HH:mm" to "HH:mm" in UTC, on one day of the week (0 = Sunday)."""
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True)
    person_id = Column(String(36), ForeignKey("people.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    person = relationship("Person", back_populates="rules")
