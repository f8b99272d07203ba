from datetime import date, datetime, timedelta, timezone

import pytest

from backend.scheduling.timeslots import (
    BookingSnapshot,
    ProviderScheduleSnapshot,
    WeeklyScheduleEntry,
    day_bounds,
    day_of_week,
    merge_intervals,
    parse_clock,
    slot_intervals,
    to_local,
)


@pytest.mark.parametrize(
    ('value', 'minutes'),
    [('00:00', 0), ('09:30', 570), ('9:05', 545), ('23:59', 1439), ('24:00', 1440)],
)
def test_parse_clock_returns_minutes_since_midnight(value: str, minutes: int) -> None:
    assert parse_clock(value) == minutes


@pytest.mark.parametrize('value', ['', '9', '09:5', '09:60', '24:30', '25:00', 'nine:00', '09-00'])
def test_parse_clock_rejects_malformed_values(value: str) -> None:
    with pytest.raises(ValueError):
        parse_clock(value)


def test_day_of_week_counts_from_sunday() -> None:
    assert day_of_week(date(2026, 1, 4)) == 0
    assert day_of_week(date(2026, 1, 5)) == 1
    assert day_of_week(date(2026, 1, 10)) == 6


def test_slot_intervals_sorts_slots() -> None:
    entry = WeeklyScheduleEntry(
        dayOfWeek=1,
        slots=[{'start': '14:00', 'end': '16:00'}, {'start': '09:00', 'end': '12:00'}],
    )

    assert slot_intervals(entry) == [(540, 720), (840, 960)]


def test_slot_intervals_rejects_inverted_range() -> None:
    entry = WeeklyScheduleEntry(dayOfWeek=1, slots=[{'start': '12:00', 'end': '09:00'}])

    with pytest.raises(ValueError):
        slot_intervals(entry)


def test_merge_intervals_joins_overlapping_and_adjacent_ranges() -> None:
    assert merge_intervals([(600, 660), (540, 600), (630, 700), (800, 900)]) == [(540, 700), (800, 900)]


def test_schedule_snapshot_accepts_wire_names_and_uses_first_matching_day() -> None:
    schedule = ProviderScheduleSnapshot.model_validate(
        {
            'userId': 'pro-1',
            'weeklySchedule': [
                {'dayOfWeek': 1, 'isActive': False, 'slots': []},
                {'dayOfWeek': 1, 'isActive': True, 'slots': [{'start': '09:00', 'end': '12:00'}]},
            ],
            'blockedDates': ['2026-01-06'],
        }
    )

    assert schedule.user_id == 'pro-1'
    assert schedule.entry_for(1).is_active is False
    assert schedule.entry_for(2) is None


def test_booking_snapshot_end_adds_duration() -> None:
    booking = BookingSnapshot(
        host_id='pro-1',
        scheduled_date=datetime(2026, 1, 5, 10, 0),
        estimated_duration=90,
        status='CONFIRMED',
    )

    assert booking.end == datetime(2026, 1, 5, 11, 30)


def test_to_local_converts_aware_timestamps_to_schedule_wall_clock() -> None:
    aware = datetime(2026, 1, 5, 12, 0, tzinfo=timezone(timedelta(hours=2)))

    assert to_local(aware) == datetime(2026, 1, 5, 10, 0)
    assert to_local(datetime(2026, 1, 5, 12, 0)) == datetime(2026, 1, 5, 12, 0)


def test_day_bounds_cover_the_whole_calendar_day() -> None:
    start, end = day_bounds(date(2026, 1, 5))

    assert start == datetime(2026, 1, 5, 0, 0)
    assert end == datetime(2026, 1, 5, 23, 59, 59, 999000)
