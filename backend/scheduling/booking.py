"""
Booking Orchestrator

Commits bookings on top of the availability engine. The engine only reports
whether an interval was free; this module makes check-then-insert atomic per
provider by holding a process lock for the provider and a row lock on the
provider's schedule while it re-checks and writes in one transaction.

Status changes are limited to the booking's participants: only the host
approves, checks in and checks out, cancellations are recorded against the
side that cancels, and the system account confirms payments and expires
requests.
"""

import logging
import zlib
from datetime import datetime
from threading import Lock
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.models.booking import (
    OCCUPYING_STATUS_VALUES,
    VALID_STATUS_TRANSITIONS,
    Booking,
    BookingStatus,
)
from backend.scheduling.engine import AvailabilityEngine
from backend.scheduling.errors import (
    ActionNotAllowed,
    BookingNotFound,
    InvalidTransition,
    SlotUnavailable,
    StoreUnavailable,
)
from backend.scheduling.stores import BookingStore, ScheduleStore
from backend.scheduling.timeslots import to_local

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system'
SYSTEM_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.EXPIRED})
HOST_ONLY_TRANSITIONS = frozenset({
    (BookingStatus.PENDING_APPROVAL, BookingStatus.PENDING_PAYMENT),
    (BookingStatus.CONFIRMED, BookingStatus.ACTIVE),
    (BookingStatus.ACTIVE, BookingStatus.COMPLETED),
})

PROVIDER_LOCK_STRIPES = 64
_provider_locks = tuple(Lock() for _ in range(PROVIDER_LOCK_STRIPES))


def provider_lock(provider_id: str) -> Lock:
    # Fixed pool of locks; providers that hash to the same stripe share one.
    return _provider_locks[zlib.crc32(provider_id.encode('utf-8')) % PROVIDER_LOCK_STRIPES]


def is_valid_transition(current: BookingStatus | str, requested: BookingStatus | str) -> bool:
    return BookingStatus(requested) in VALID_STATUS_TRANSITIONS[BookingStatus(current)]


def resolve_cancel_status(user_id: str, booking: Booking, requested: BookingStatus | str) -> BookingStatus:
    """Turn a generic cancel into the guest or host variant for the cancelling participant."""
    requested = BookingStatus(requested)
    if requested != BookingStatus.CANCELED:
        return requested
    if user_id == booking.client_id:
        return BookingStatus.CANCELED_BY_GUEST
    if user_id == booking.host_id:
        return BookingStatus.CANCELED_BY_HOST
    return requested


def authorize_action(user_id: str, booking: Booking, new_status: BookingStatus | str) -> None:
    """Raise ActionNotAllowed when user_id may not move booking to new_status."""
    new_status = BookingStatus(new_status)

    if user_id == SYSTEM_ACTOR:
        if new_status not in SYSTEM_STATUSES:
            raise ActionNotAllowed(f'The system account cannot move a booking to {new_status.value}.')
        return

    if new_status in SYSTEM_STATUSES:
        raise ActionNotAllowed(f'Only the system account can move a booking to {new_status.value}.')

    is_client = user_id == booking.client_id
    is_host = user_id == booking.host_id
    if not is_client and not is_host:
        raise ActionNotAllowed('Only participants of this booking can change it.')

    if (BookingStatus(booking.status), new_status) in HOST_ONLY_TRANSITIONS and not is_host:
        raise ActionNotAllowed(f'Only the provider can move a booking to {new_status.value}.')
    if new_status == BookingStatus.CANCELED_BY_HOST and not is_host:
        raise ActionNotAllowed('Only the provider can cancel on the provider side.')
    if new_status == BookingStatus.CANCELED_BY_GUEST and not is_client:
        raise ActionNotAllowed('Only the client can cancel on the client side.')


def can_user_perform_action(user_id: str, booking: Booking, new_status: BookingStatus | str) -> bool:
    try:
        authorize_action(user_id, booking, new_status)
    except ActionNotAllowed:
        return False
    return True


EngineFactory = Callable[[ScheduleStore, BookingStore], AvailabilityEngine]


class BookingOrchestrator:
    def __init__(self, db: Session, engine_factory: EngineFactory = AvailabilityEngine):
        self.db = db
        self.schedule_store = ScheduleStore(db)
        self.booking_store = BookingStore(db)
        self.engine = engine_factory(self.schedule_store, self.booking_store)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            raise StoreUnavailable('Could not commit booking.') from exc

    def _reserve_check(self, host_id: str, scheduled_date: datetime, duration_minutes: int):
        schedule = self.schedule_store.get_schedule(host_id, for_update=True)
        if not self.engine.check(host_id, schedule, scheduled_date, duration_minutes):
            self.db.rollback()
            raise SlotUnavailable(f'Provider {host_id} is not available at {scheduled_date.isoformat()}.')
        return schedule

    def request_booking(
        self,
        host_id: str,
        client_id: str,
        scheduled_date: datetime,
        duration_minutes: int,
    ) -> Booking:
        scheduled_date = to_local(scheduled_date)
        if scheduled_date.second or scheduled_date.microsecond:
            raise ValueError('Bookings must start on a whole minute.')
        if scheduled_date < self.engine.clock():
            raise SlotUnavailable('Bookings must be scheduled in the future.')

        with provider_lock(host_id):
            schedule = self._reserve_check(host_id, scheduled_date, duration_minutes)

            instant = schedule is None or schedule.instant_booking
            status = BookingStatus.PENDING_PAYMENT if instant else BookingStatus.PENDING_APPROVAL
            booking = self.booking_store.add_booking(
                host_id=host_id,
                client_id=client_id,
                scheduled_date=scheduled_date,
                estimated_duration=duration_minutes,
                status=status,
                changed_by=client_id,
            )
            booking_id = booking.id
            self._commit()

        logger.info('Booking %s created for provider %s at %s (%s)', booking_id, host_id, scheduled_date, status.value)
        return booking

    def _permitted_status(self, booking: Booking, requested: BookingStatus, changed_by: str) -> BookingStatus:
        new_status = resolve_cancel_status(changed_by, booking, requested)
        authorize_action(changed_by, booking, new_status)
        if not is_valid_transition(booking.status, new_status):
            raise InvalidTransition(booking.status, new_status.value)
        return new_status

    def transition(
        self,
        booking_id: int,
        new_status: BookingStatus | str,
        changed_by: str,
        reason: str | None = None,
    ) -> Booking:
        requested = BookingStatus(new_status)
        booking = self.booking_store.get_booking(booking_id)
        if booking is None:
            raise BookingNotFound(f'Booking {booking_id} not found.')
        host_id = booking.host_id

        with provider_lock(host_id):
            # Validate against the locked, freshly read row rather than the copy loaded above.
            booking = self.booking_store.get_booking(booking_id, for_update=True)
            if booking is None:
                self.db.rollback()
                raise BookingNotFound(f'Booking {booking_id} not found.')

            try:
                new_status = self._permitted_status(booking, requested, changed_by)
            except (ActionNotAllowed, InvalidTransition):
                self.db.rollback()
                raise

            if new_status.value in OCCUPYING_STATUS_VALUES and booking.status not in OCCUPYING_STATUS_VALUES:
                # The booking did not hold its interval, so someone else may have taken it.
                self._reserve_check(host_id, booking.scheduled_date, booking.estimated_duration)

            self.booking_store.set_status(booking, new_status, changed_by, reason)
            self._commit()

        logger.info('Booking %s moved to %s by %s', booking_id, new_status.value, changed_by)
        return booking
