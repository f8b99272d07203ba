from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core import config
from backend.database import SessionLocal, ensure_booking_schema
from backend.models.booking import BookingStatus
from backend.scheduling.booking import BookingOrchestrator
from backend.scheduling.engine import AvailabilityEngine
from backend.scheduling.errors import (
    ActionNotAllowed,
    BookingNotFound,
    InvalidSchedule,
    InvalidTransition,
    SlotUnavailable,
    StoreUnavailable,
)
from backend.scheduling.stores import BookingStore, ScheduleStore
from backend.scheduling.timeslots import ProviderScheduleSnapshot, WeeklyScheduleEntry

router = APIRouter(tags=['availability'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable.'
MAX_BOOKING_DURATION_MINUTES = 24 * 60


class SaveScheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    weekly_schedule: list[WeeklyScheduleEntry] | None = Field(default=None, alias='weeklySchedule')
    blocked_dates: list[str] | None = Field(default=None, alias='blockedDates')
    instant_booking: bool | None = Field(default=None, alias='instantBooking')
    max_bookings_per_day: int | None = Field(default=None, alias='maxBookingsPerDay', ge=1)

    @field_validator('blocked_dates')
    @classmethod
    def validate_blocked_dates(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None

        normalized = []
        for blocked in value:
            try:
                normalized.append(datetime.strptime(blocked.strip(), '%Y-%m-%d').date().isoformat())
            except ValueError as exc:
                raise ValueError(f'Blocked date {blocked!r} must be formatted YYYY-MM-DD.') from exc
        return normalized


class AvailabilityCheckResponse(BaseModel):
    provider_id: str
    start: datetime
    duration_minutes: int
    is_available: bool


class CreateBookingRequest(BaseModel):
    host_id: str
    client_id: str
    scheduled_date: datetime
    estimated_duration: int = Field(default=config.AVAILABILITY_DEFAULT_DURATION_MINUTES, gt=0, le=MAX_BOOKING_DURATION_MINUTES)

    @field_validator('host_id', 'client_id')
    @classmethod
    def validate_identifier(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Identifier is required.')
        return normalized

    @field_validator('scheduled_date')
    @classmethod
    def validate_scheduled_date(cls, value: datetime) -> datetime:
        if value.second or value.microsecond:
            raise ValueError('Bookings must start on a whole minute.')
        return value


class UpdateBookingStatusRequest(BaseModel):
    status: BookingStatus
    changed_by: str
    reason: str | None = None


class BookingResponse(BaseModel):
    id: int
    host_id: str
    client_id: str | None = None
    scheduled_date: datetime
    estimated_duration: int
    status: str

    class Config:
        from_attributes = True


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def build_engine(db: Session) -> AvailabilityEngine:
    return AvailabilityEngine(ScheduleStore(db), BookingStore(db))


def database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


@router.get('/providers/{provider_id}/schedule', response_model=ProviderScheduleSnapshot, response_model_by_alias=True)
def get_provider_schedule(provider_id: str, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        schedule = ScheduleStore(db).get_schedule(provider_id)
    except StoreUnavailable as exc:
        raise database_unavailable() from exc

    if schedule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Schedule not found.',
        )

    return schedule


@router.put('/providers/{provider_id}/schedule', response_model=ProviderScheduleSnapshot, response_model_by_alias=True)
def save_provider_schedule(provider_id: str, data: SaveScheduleRequest, db: Session = Depends(get_db)):
    ensure_database_ready()
    partial_schedule = data.model_dump(exclude_unset=True)

    try:
        return ScheduleStore(db).save_schedule(provider_id, partial_schedule)
    except InvalidSchedule as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except StoreUnavailable as exc:
        raise database_unavailable() from exc


@router.get('/providers/{provider_id}/check', response_model=AvailabilityCheckResponse)
def check_provider_availability(
    provider_id: str,
    start: datetime = Query(...),
    duration_minutes: int = Query(default=config.AVAILABILITY_DEFAULT_DURATION_MINUTES, gt=0, le=MAX_BOOKING_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        is_available = build_engine(db).is_available(provider_id, start, duration_minutes)
    except StoreUnavailable as exc:
        raise database_unavailable() from exc

    return AvailabilityCheckResponse(
        provider_id=provider_id,
        start=start,
        duration_minutes=duration_minutes,
        is_available=is_available,
    )


@router.get('/providers/{provider_id}/slots', response_model=list[datetime])
def list_next_available_slots(
    provider_id: str,
    days: int = Query(default=config.AVAILABILITY_HORIZON_DAYS, ge=1, le=config.AVAILABILITY_MAX_HORIZON_DAYS),
    limit: int = Query(default=config.AVAILABILITY_MAX_RESULTS, ge=1, le=50),
    duration_minutes: int = Query(default=config.AVAILABILITY_DEFAULT_DURATION_MINUTES, gt=0, le=MAX_BOOKING_DURATION_MINUTES),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return build_engine(db).next_available_slots(
            provider_id,
            horizon_days=days,
            max_results=limit,
            duration_minutes=duration_minutes,
        )
    except StoreUnavailable as exc:
        raise database_unavailable() from exc


@router.post('/bookings', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(data: CreateBookingRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return BookingOrchestrator(db).request_booking(
            host_id=data.host_id,
            client_id=data.client_id,
            scheduled_date=data.scheduled_date,
            duration_minutes=data.estimated_duration,
        )
    except SlotUnavailable as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This time is not available.',
        ) from exc
    except StoreUnavailable as exc:
        raise database_unavailable() from exc


@router.patch('/bookings/{booking_id}/status', response_model=BookingResponse)
def update_booking_status(booking_id: int, data: UpdateBookingStatusRequest, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return BookingOrchestrator(db).transition(
            booking_id,
            data.status,
            changed_by=data.changed_by,
            reason=data.reason,
        )
    except BookingNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Booking not found.',
        ) from exc
    except ActionNotAllowed as exc:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=str(exc),
        ) from exc
    except (InvalidTransition, SlotUnavailable) as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except StoreUnavailable as exc:
        raise database_unavailable() from exc
