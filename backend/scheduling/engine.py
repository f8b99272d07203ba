"""
Availability Engine

Decides whether a provider can take a booking at a given time and lists the
next free slot starts, considering:
- the provider's weekly schedule
- blocked calendar dates
- bookings that currently occupy the calendar

The engine only reads. It answers "was it free as of this snapshot" and never
reserves anything; exclusivity is enforced by the booking orchestrator.
"""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Sequence

from backend.core import config
from backend.models.booking import OCCUPYING_STATUS_VALUES
from backend.scheduling.stores import BookingStore, ScheduleStore
from backend.scheduling.timeslots import (
    MINUTES_PER_DAY,
    BookingSnapshot,
    ProviderScheduleSnapshot,
    day_bounds,
    day_of_week,
    merge_intervals,
    slot_intervals,
    to_local,
)

logger = logging.getLogger(__name__)

# Open hours for a provider without a schedule when unconfigured providers are bookable.
ALL_DAY = [(0, MINUTES_PER_DAY)]


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Half-open overlap test: [a, b) and [c, d) overlap iff a < d and b > c."""
    return start_a < end_b and end_a > start_b


def open_intervals_for_day(
    schedule: ProviderScheduleSnapshot | None,
    day: date,
) -> list[tuple[int, int]]:
    """
    Return the day's open (start, end) intervals in minutes since midnight.

    An empty list means the provider is closed that day: the date is blocked,
    there is no active weekly entry for the weekday, or the entry's slots
    cannot be parsed. A missing schedule yields the whole day.
    """
    if schedule is None:
        return list(ALL_DAY)

    if day.isoformat() in schedule.blocked_dates:
        return []

    entry = schedule.entry_for(day_of_week(day))
    if entry is None or not entry.is_active:
        return []

    try:
        return slot_intervals(entry)
    except ValueError as exc:
        logger.warning(
            'Treating %s as closed for provider %s: %s',
            day.isoformat(), schedule.user_id, exc,
        )
        return []


def fits_in_slots(
    intervals: Sequence[tuple[int, int]],
    candidate_start: datetime,
    duration_minutes: int,
    slot_fit_mode: str,
) -> bool:
    if slot_fit_mode == config.SLOT_FIT_START_ONLY:
        # Compares the "HH:MM" clock time only; the duration is not checked.
        start_minute = candidate_start.hour * 60 + candidate_start.minute
        return any(start <= start_minute < end for start, end in intervals)

    start_offset = candidate_start - datetime.combine(candidate_start.date(), time.min)
    end_offset = start_offset + timedelta(minutes=duration_minutes)
    return any(
        timedelta(minutes=start) <= start_offset and end_offset <= timedelta(minutes=end)
        for start, end in merge_intervals(list(intervals))
    )


def conflicts_with_bookings(
    schedule: ProviderScheduleSnapshot | None,
    bookings: Sequence[BookingSnapshot],
    candidate_start: datetime,
    duration_minutes: int,
) -> bool:
    occupying = [booking for booking in bookings if booking.status in OCCUPYING_STATUS_VALUES]

    if schedule is not None and schedule.max_bookings_per_day is not None:
        if len(occupying) >= schedule.max_bookings_per_day:
            return True

    candidate_end = candidate_start + timedelta(minutes=duration_minutes)
    return any(
        intervals_overlap(candidate_start, candidate_end, to_local(booking.scheduled_date), to_local(booking.end))
        for booking in occupying
    )


def evaluate_availability(
    schedule: ProviderScheduleSnapshot | None,
    bookings: Sequence[BookingSnapshot],
    candidate_start: datetime,
    duration_minutes: int,
    slot_fit_mode: str = config.SLOT_FIT_FULL,
    open_when_unconfigured: bool = False,
) -> bool:
    """Availability decision over an already loaded schedule and the day's bookings.

    A missing schedule is closed unless open_when_unconfigured is set.
    """
    if duration_minutes <= 0:
        raise ValueError('duration_minutes must be positive.')
    if schedule is None and not open_when_unconfigured:
        return False

    candidate_start = to_local(candidate_start)
    intervals = open_intervals_for_day(schedule, candidate_start.date())
    if not intervals or not fits_in_slots(intervals, candidate_start, duration_minutes, slot_fit_mode):
        return False

    return not conflicts_with_bookings(schedule, bookings, candidate_start, duration_minutes)


class AvailabilityEngine:
    def __init__(
        self,
        schedule_store: ScheduleStore,
        booking_store: BookingStore,
        *,
        slot_fit_mode: str | None = None,
        open_when_unconfigured: bool | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.schedule_store = schedule_store
        self.booking_store = booking_store
        self.slot_fit_mode = slot_fit_mode or config.AVAILABILITY_SLOT_FIT_MODE
        if open_when_unconfigured is None:
            open_when_unconfigured = config.AVAILABILITY_OPEN_WHEN_UNCONFIGURED
        self.open_when_unconfigured = open_when_unconfigured
        self.clock = clock or (lambda: to_local(datetime.now(config.get_schedule_timezone())))

    def _bookings_for_day(self, provider_id: str, day: date) -> list[BookingSnapshot]:
        day_start, day_end = day_bounds(day)
        return self.booking_store.find_bookings(provider_id, day_start, day_end, OCCUPYING_STATUS_VALUES)

    def check(
        self,
        provider_id: str,
        schedule: ProviderScheduleSnapshot | None,
        candidate_start: datetime,
        duration_minutes: int,
    ) -> bool:
        """Run the availability decision for an already loaded schedule.

        Bookings are only fetched once the candidate passes the schedule checks.
        """
        schedule_allows = evaluate_availability(
            schedule,
            [],
            candidate_start,
            duration_minutes,
            self.slot_fit_mode,
            self.open_when_unconfigured,
        )
        if not schedule_allows:
            return False

        bookings = self._bookings_for_day(provider_id, to_local(candidate_start).date())
        return evaluate_availability(
            schedule,
            bookings,
            candidate_start,
            duration_minutes,
            self.slot_fit_mode,
            self.open_when_unconfigured,
        )

    def is_available(
        self,
        provider_id: str,
        candidate_start: datetime,
        duration_minutes: int = config.AVAILABILITY_DEFAULT_DURATION_MINUTES,
    ) -> bool:
        schedule = self.schedule_store.get_schedule(provider_id)
        return self.check(provider_id, schedule, candidate_start, duration_minutes)

    def next_available_slots(
        self,
        provider_id: str,
        horizon_days: int = config.AVAILABILITY_HORIZON_DAYS,
        max_results: int = config.AVAILABILITY_MAX_RESULTS,
        duration_minutes: int = config.AVAILABILITY_DEFAULT_DURATION_MINUTES,
    ) -> list[datetime]:
        if duration_minutes <= 0:
            raise ValueError('duration_minutes must be positive.')
        if horizon_days <= 0 or max_results <= 0:
            return []

        schedule = self.schedule_store.get_schedule(provider_id)
        if schedule is None and not self.open_when_unconfigured:
            return []

        now = self.clock()
        available: list[datetime] = []

        for offset in range(horizon_days):
            day = now.date() + timedelta(days=offset)
            intervals = open_intervals_for_day(schedule, day)
            if not intervals:
                continue

            bookings = None
            for slot_start in sorted({start for start, _ in intervals}):
                candidate = datetime.combine(day, time.min) + timedelta(minutes=slot_start)
                if candidate < now:
                    continue
                if not fits_in_slots(intervals, candidate, duration_minutes, self.slot_fit_mode):
                    continue

                if bookings is None:
                    bookings = self._bookings_for_day(provider_id, day)
                if conflicts_with_bookings(schedule, bookings, candidate, duration_minutes):
                    continue

                available.append(candidate)
                if len(available) >= max_results:
                    return available

        return available
