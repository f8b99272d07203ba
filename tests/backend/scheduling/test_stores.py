from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from backend.models.booking import Booking, BookingStatus, OCCUPYING_STATUSES
from backend.models.schedule import ProviderSchedule
from backend.scheduling.errors import InvalidSchedule, StoreUnavailable
from backend.scheduling.stores import BookingStore, ScheduleStore

WEEKDAYS = [
    {'dayOfWeek': 1, 'isActive': True, 'slots': [{'start': '09:00', 'end': '12:00'}]},
    {'dayOfWeek': 2, 'isActive': False, 'slots': []},
]


def add_booking(db, start: datetime, status: str = 'CONFIRMED', host_id: str = 'pro-1') -> Booking:
    booking = Booking(host_id=host_id, client_id='client-1', scheduled_date=start, estimated_duration=60, status=status)
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@pytest.fixture
def broken_db():
    engine = create_engine('sqlite:///:memory:')
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


def test_get_schedule_returns_none_when_missing(db) -> None:
    assert ScheduleStore(db).get_schedule('pro-1') is None


def test_save_schedule_creates_record_on_first_save(db) -> None:
    saved = ScheduleStore(db).save_schedule('pro-1', {'weeklySchedule': WEEKDAYS})

    assert saved.user_id == 'pro-1'
    assert [entry.day_of_week for entry in saved.weekly_schedule] == [1, 2]
    assert saved.blocked_dates == []
    assert saved.instant_booking is True
    assert saved.updated_at is not None


def test_save_schedule_merges_partial_updates(db) -> None:
    store = ScheduleStore(db)
    first = store.save_schedule('pro-1', {'weeklySchedule': WEEKDAYS, 'maxBookingsPerDay': 3})

    second = store.save_schedule('pro-1', {'blockedDates': ['2026-01-06', '2026-01-05', '2026-01-06']})

    assert [entry.day_of_week for entry in second.weekly_schedule] == [1, 2]
    assert second.max_bookings_per_day == 3
    assert second.blocked_dates == ['2026-01-05', '2026-01-06']
    assert second.updated_at >= first.updated_at
    assert db.query(ProviderSchedule).count() == 1


def test_save_schedule_accepts_column_names_and_ignores_unknown_keys(db) -> None:
    saved = ScheduleStore(db).save_schedule(
        'pro-1',
        {'instant_booking': False, 'user_id': 'someone-else', 'rating': 5},
    )

    assert saved.user_id == 'pro-1'
    assert saved.instant_booking is False


def test_save_schedule_does_not_validate_slot_contents(db) -> None:
    saved = ScheduleStore(db).save_schedule(
        'pro-1',
        {'weeklySchedule': [{'dayOfWeek': 1, 'isActive': True, 'slots': [{'start': 'later', 'end': '09:00'}]}]},
    )

    assert saved.weekly_schedule[0].slots[0].start == 'later'


def test_save_schedule_rejects_duplicate_days(db) -> None:
    duplicate = WEEKDAYS + [{'dayOfWeek': 1, 'isActive': False, 'slots': []}]

    with pytest.raises(InvalidSchedule):
        ScheduleStore(db).save_schedule('pro-1', {'weeklySchedule': duplicate})

    assert ScheduleStore(db).get_schedule('pro-1') is None


def test_get_schedule_drops_unreadable_entries(db) -> None:
    db.add(ProviderSchedule(
        user_id='pro-1',
        weekly_schedule=[{'dayOfWeek': 9, 'isActive': True, 'slots': []}, WEEKDAYS[0]],
        blocked_dates=[],
        instant_booking=True,
        updated_at=datetime(2026, 1, 1),
    ))
    db.commit()

    schedule = ScheduleStore(db).get_schedule('pro-1')

    assert [entry.day_of_week for entry in schedule.weekly_schedule] == [1]


def test_find_bookings_filters_by_provider_range_and_status(db) -> None:
    add_booking(db, datetime(2026, 1, 5, 0, 0))
    add_booking(db, datetime(2026, 1, 5, 23, 59, 59))
    add_booking(db, datetime(2026, 1, 5, 12, 0), status='CANCELED')
    add_booking(db, datetime(2026, 1, 5, 13, 0), status='COMPLETED')
    add_booking(db, datetime(2026, 1, 5, 14, 0), host_id='pro-2')
    add_booking(db, datetime(2026, 1, 6, 0, 0))

    bookings = BookingStore(db).find_bookings(
        'pro-1',
        datetime(2026, 1, 5, 0, 0),
        datetime(2026, 1, 5, 23, 59, 59, 999000),
        OCCUPYING_STATUSES,
    )

    assert [booking.scheduled_date for booking in bookings] == [
        datetime(2026, 1, 5, 0, 0),
        datetime(2026, 1, 5, 23, 59, 59),
    ]


def test_find_bookings_with_empty_status_filter_returns_nothing(db) -> None:
    add_booking(db, datetime(2026, 1, 5, 10, 0))

    assert BookingStore(db).find_bookings('pro-1', datetime(2026, 1, 5), datetime(2026, 1, 6), []) == []


def test_add_booking_records_initial_status(db) -> None:
    store = BookingStore(db)

    booking = store.add_booking(
        host_id='pro-1',
        client_id='client-1',
        scheduled_date=datetime(2026, 1, 5, 10, 0),
        estimated_duration=45,
        status=BookingStatus.PENDING_PAYMENT,
        changed_by='client-1',
    )
    db.commit()

    history = store.status_history(booking.id)
    assert [(change.status, change.changed_by) for change in history] == [('PENDING_PAYMENT', 'client-1')]


def test_schedule_store_reports_database_failures(broken_db) -> None:
    store = ScheduleStore(broken_db)

    with pytest.raises(StoreUnavailable):
        store.get_schedule('pro-1')
    with pytest.raises(StoreUnavailable):
        store.save_schedule('pro-1', {'blockedDates': []})


def test_booking_store_reports_database_failures(broken_db) -> None:
    with pytest.raises(StoreUnavailable):
        BookingStore(broken_db).find_bookings(
            'pro-1', datetime(2026, 1, 5), datetime(2026, 1, 6), OCCUPYING_STATUSES
        )
