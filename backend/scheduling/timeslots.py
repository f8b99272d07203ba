"""
Snapshot types for schedules and bookings.

The availability engine works on these read-only values rather than on ORM
rows, so a schedule or booking list can be evaluated without a session.
Clock times are kept as "HH:MM" strings on the wire and converted to minutes
since midnight for arithmetic.
"""

from datetime import date, datetime, time, timedelta

from pydantic import BaseModel, ConfigDict, Field

from backend.core import config

MINUTES_PER_DAY = 24 * 60


class TimeSlot(BaseModel):
    start: str
    end: str


class WeeklyScheduleEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    day_of_week: int = Field(alias='dayOfWeek', ge=0, le=6)
    is_active: bool = Field(default=True, alias='isActive')
    slots: list[TimeSlot] = Field(default_factory=list)


class ProviderScheduleSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    user_id: str = Field(alias='userId')
    weekly_schedule: list[WeeklyScheduleEntry] = Field(default_factory=list, alias='weeklySchedule')
    blocked_dates: list[str] = Field(default_factory=list, alias='blockedDates')
    instant_booking: bool = Field(default=True, alias='instantBooking')
    max_bookings_per_day: int | None = Field(default=None, alias='maxBookingsPerDay')
    updated_at: datetime | None = Field(default=None, alias='updatedAt')

    def entry_for(self, day_of_week: int) -> WeeklyScheduleEntry | None:
        # First match wins; duplicates are rejected when the schedule is saved.
        for entry in self.weekly_schedule:
            if entry.day_of_week == day_of_week:
                return entry
        return None


class BookingSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int | None = None
    host_id: str
    client_id: str | None = None
    scheduled_date: datetime
    estimated_duration: int
    status: str

    @property
    def end(self) -> datetime:
        return self.scheduled_date + timedelta(minutes=self.estimated_duration)


def parse_clock(value: str) -> int:
    """Convert "HH:MM" to minutes since midnight. "24:00" is accepted as end of day."""
    if not isinstance(value, str):
        raise ValueError(f'Clock time must be a string, got {type(value).__name__}.')

    hours_text, separator, minutes_text = value.strip().partition(':')
    if not separator or not hours_text.isdigit() or not minutes_text.isdigit() or len(minutes_text) != 2:
        raise ValueError(f'Invalid clock time {value!r}; expected HH:MM.')

    hours = int(hours_text)
    minutes = int(minutes_text)
    if minutes > 59 or hours > 24 or (hours == 24 and minutes != 0):
        raise ValueError(f'Clock time {value!r} is out of range.')

    return hours * 60 + minutes


def day_of_week(day: date) -> int:
    """Day index with 0=Sunday..6=Saturday."""
    return (day.weekday() + 1) % 7


def slot_intervals(entry: WeeklyScheduleEntry) -> list[tuple[int, int]]:
    """Parse a day's slots into sorted (start, end) minute pairs.

    Raises ValueError when any slot is unparseable or not strictly increasing,
    which callers treat as the whole day being closed.
    """
    intervals = []
    for slot in entry.slots:
        start = parse_clock(slot.start)
        end = parse_clock(slot.end)
        if start >= end:
            raise ValueError(f'Slot {slot.start}-{slot.end} does not end after it starts.')
        intervals.append((start, end))

    intervals.sort()
    return intervals


def merge_intervals(intervals: list[tuple[int, int]]) -> list[tuple[int, int]]:
    if not intervals:
        return []

    ordered = sorted(intervals)
    merged = [ordered[0]]

    for start, end in ordered[1:]:
        last_start, last_end = merged[-1]
        if start <= last_end:
            merged[-1] = (last_start, max(last_end, end))
        else:
            merged.append((start, end))

    return merged


def to_local(moment: datetime) -> datetime:
    """Normalize a timestamp to naive wall-clock time in the schedule timezone."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(config.get_schedule_timezone()).replace(tzinfo=None)


def day_bounds(day: date) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min)
    end = datetime.combine(day, time(23, 59, 59, 999000))
    return start, end
