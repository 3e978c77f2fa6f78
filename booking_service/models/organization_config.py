"""Organization booking configuration."""

from sqlalchemy import Boolean, Column, Integer, String

from booking_service.database import Base


class OrganizationConfig(Base):
    __tablename__ = "organization_configs"

    organization_id = Column(String, primary_key=True)
    booking_slug = Column(String, unique=True, nullable=False)
    booking_duration_minutes = Column(Integer, default=30)
    buffer_minutes = Column(Integer, default=0)
    advance_booking_days = Column(Integer, default=30)
    email_enabled = Column(Boolean, default=True)
