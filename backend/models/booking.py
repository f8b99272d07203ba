"""Booking model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from backend.database import Base


class BookingStatus(str, enum.Enum):
    INQUIRY = "INQUIRY"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    CANCELED_BY_GUEST = "CANCELED_BY_GUEST"
    CANCELED_BY_HOST = "CANCELED_BY_HOST"
    EXPIRED = "EXPIRED"


# Statuses that hold time on the provider's calendar.
OCCUPYING_STATUSES = frozenset({
    BookingStatus.PENDING_PAYMENT,
    BookingStatus.CONFIRMED,
    BookingStatus.ACTIVE,
})
OCCUPYING_STATUS_VALUES = frozenset(status.value for status in OCCUPYING_STATUSES)

_CANCELS = [BookingStatus.CANCELED, BookingStatus.CANCELED_BY_GUEST, BookingStatus.CANCELED_BY_HOST]

VALID_STATUS_TRANSITIONS: dict[BookingStatus, list[BookingStatus]] = {
    BookingStatus.INQUIRY: [
        BookingStatus.PENDING_APPROVAL,
        BookingStatus.PENDING_PAYMENT,
        BookingStatus.CANCELED,
        BookingStatus.CANCELED_BY_GUEST,
    ],
    BookingStatus.PENDING_APPROVAL: [BookingStatus.PENDING_PAYMENT, BookingStatus.EXPIRED, *_CANCELS],
    BookingStatus.PENDING_PAYMENT: [
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELED,
        BookingStatus.CANCELED_BY_GUEST,
    ],
    BookingStatus.CONFIRMED: [BookingStatus.ACTIVE, *_CANCELS],
    BookingStatus.ACTIVE: [BookingStatus.COMPLETED],
    BookingStatus.COMPLETED: [],
    BookingStatus.CANCELED: [],
    BookingStatus.CANCELED_BY_GUEST: [],
    BookingStatus.CANCELED_BY_HOST: [],
    BookingStatus.EXPIRED: [],
}


class Booking(Base):
    """Represents a requested or committed appointment with a provider."""
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True)
    host_id = Column(String, nullable=False, index=True)
    client_id = Column(String)
    scheduled_date = Column(DateTime, nullable=False)
    estimated_duration = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=BookingStatus.PENDING_PAYMENT.value)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class BookingStatusChange(Base):
    """Audit entry written whenever a booking changes status."""
    __tablename__ = "booking_status_changes"

    id = Column(Integer, primary_key=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    status = Column(String, nullable=False)
    changed_at = Column(DateTime, nullable=False, default=datetime.now)
    changed_by = Column(String, nullable=False)
    reason = Column(String)
