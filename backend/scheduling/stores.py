"""
Schedule and booking stores backed by SQLAlchemy sessions.

Both stores translate database failures into StoreUnavailable so callers can
tell "nothing is free" apart from "could not check".
"""

import logging
from datetime import datetime
from typing import Iterable

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.booking import Booking, BookingStatus, BookingStatusChange
from backend.models.schedule import ProviderSchedule
from backend.scheduling.errors import InvalidSchedule, StoreUnavailable
from backend.scheduling.timeslots import BookingSnapshot, ProviderScheduleSnapshot, WeeklyScheduleEntry

logger = logging.getLogger(__name__)

SCHEDULE_FIELDS = {
    'weeklySchedule': 'weekly_schedule',
    'blockedDates': 'blocked_dates',
    'instantBooking': 'instant_booking',
    'maxBookingsPerDay': 'max_bookings_per_day',
}


def _read_weekly_schedule(user_id: str, raw_entries: list | None) -> list[WeeklyScheduleEntry]:
    entries = []
    for raw_entry in raw_entries or []:
        try:
            entries.append(WeeklyScheduleEntry.model_validate(raw_entry))
        except ValidationError:
            logger.warning('Ignoring malformed weekly schedule entry for provider %s: %r', user_id, raw_entry)
    return entries


def to_schedule_snapshot(row: ProviderSchedule) -> ProviderScheduleSnapshot:
    return ProviderScheduleSnapshot(
        user_id=row.user_id,
        weekly_schedule=_read_weekly_schedule(row.user_id, row.weekly_schedule),
        blocked_dates=[str(blocked) for blocked in row.blocked_dates or []],
        instant_booking=True if row.instant_booking is None else row.instant_booking,
        max_bookings_per_day=row.max_bookings_per_day,
        updated_at=row.updated_at,
    )


def _normalize_weekly_schedule(raw_entries: list) -> list[dict]:
    seen_days: set[int] = set()
    normalized = []

    for raw_entry in raw_entries:
        if isinstance(raw_entry, WeeklyScheduleEntry):
            entry = raw_entry
        else:
            try:
                entry = WeeklyScheduleEntry.model_validate(raw_entry)
            except ValidationError as exc:
                raise InvalidSchedule(f'Invalid weekly schedule entry: {raw_entry!r}') from exc

        if entry.day_of_week in seen_days:
            raise InvalidSchedule(f'Duplicate weekly schedule entry for day {entry.day_of_week}.')
        seen_days.add(entry.day_of_week)
        normalized.append(entry.model_dump(by_alias=True))

    return normalized


class ScheduleStore:
    """One ProviderSchedule record per provider with merge-upsert saves."""

    def __init__(self, db: Session):
        self.db = db

    def get_schedule(self, provider_id: str, for_update: bool = False) -> ProviderScheduleSnapshot | None:
        try:
            query = self.db.query(ProviderSchedule).filter(ProviderSchedule.user_id == provider_id)
            if for_update:
                query = query.with_for_update()
            row = query.first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not load provider schedule.') from exc

        if row is None:
            return None
        return to_schedule_snapshot(row)

    def save_schedule(self, provider_id: str, partial_schedule: dict) -> ProviderScheduleSnapshot:
        """Merge the given fields into the provider's schedule, creating it if absent.

        Keys may use either the camelCase wire names or the snake_case column
        names. Fields not present are left untouched.
        """
        updates = {}
        for key, value in partial_schedule.items():
            column = SCHEDULE_FIELDS.get(key, key)
            if column not in SCHEDULE_FIELDS.values():
                continue
            if column == 'instant_booking' and value is None:
                continue
            if column == 'weekly_schedule':
                value = _normalize_weekly_schedule(value or [])
            elif column == 'blocked_dates':
                value = sorted({str(blocked) for blocked in value or []})
            updates[column] = value

        try:
            row = self.db.query(ProviderSchedule).filter(ProviderSchedule.user_id == provider_id).first()
            if row is None:
                row = ProviderSchedule(
                    user_id=provider_id,
                    weekly_schedule=[],
                    blocked_dates=[],
                    instant_booking=True,
                )
                self.db.add(row)

            for column, value in updates.items():
                setattr(row, column, value)
            row.updated_at = datetime.now()

            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not save provider schedule.') from exc

        return to_schedule_snapshot(row)


class BookingStore:
    def __init__(self, db: Session):
        self.db = db

    def find_bookings(
        self,
        provider_id: str,
        range_start: datetime,
        range_end: datetime,
        statuses: Iterable[BookingStatus | str],
    ) -> list[BookingSnapshot]:
        status_values = [BookingStatus(status).value for status in statuses]
        if not status_values:
            return []

        try:
            rows = self.db.query(Booking).filter(
                Booking.host_id == provider_id,
                Booking.scheduled_date >= range_start,
                Booking.scheduled_date <= range_end,
                Booking.status.in_(status_values),
            ).order_by(Booking.scheduled_date.asc()).all()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not load bookings.') from exc

        return [BookingSnapshot.model_validate(row) for row in rows]

    def get_booking(self, booking_id: int, for_update: bool = False) -> Booking | None:
        """Load a booking. With for_update the row is locked and re-read from the database."""
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id)
            if for_update:
                query = query.with_for_update().populate_existing()
            return query.first()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not load booking.') from exc

    def add_booking(
        self,
        host_id: str,
        client_id: str | None,
        scheduled_date: datetime,
        estimated_duration: int,
        status: BookingStatus,
        changed_by: str,
    ) -> Booking:
        """Stage a booking and its first status entry. The caller commits."""
        booking = Booking(
            host_id=host_id,
            client_id=client_id,
            scheduled_date=scheduled_date,
            estimated_duration=estimated_duration,
            status=status.value,
        )
        try:
            self.db.add(booking)
            self.db.flush()
            self.db.add(BookingStatusChange(booking_id=booking.id, status=status.value, changed_by=changed_by))
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not save booking.') from exc
        return booking

    def set_status(self, booking: Booking, status: BookingStatus, changed_by: str, reason: str | None = None) -> None:
        """Stage a status change and its audit entry. The caller commits."""
        try:
            booking.status = status.value
            self.db.add(
                BookingStatusChange(booking_id=booking.id, status=status.value, changed_by=changed_by, reason=reason)
            )
            self.db.flush()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not update booking status.') from exc

    def status_history(self, booking_id: int) -> list[BookingStatusChange]:
        try:
            return self.db.query(BookingStatusChange).filter(
                BookingStatusChange.booking_id == booking_id,
            ).order_by(BookingStatusChange.id.asc()).all()
        except SQLAlchemyError as exc:
            raise StoreUnavailable('Could not load booking history.') from exc
