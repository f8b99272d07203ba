"""Provider schedule model definitions."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from backend.database import Base


class ProviderSchedule(Base):
    """Weekly working hours and blocked dates owned by one provider."""
    __tablename__ = "provider_schedules"

    user_id = Column(String, primary_key=True)
    weekly_schedule = Column(JSON, nullable=False, default=list)
    blocked_dates = Column(JSON, nullable=False, default=list)
    instant_booking = Column(Boolean, nullable=False, default=True)
    max_bookings_per_day = Column(Integer, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.now)
