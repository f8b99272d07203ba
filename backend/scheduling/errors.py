class SchedulingError(Exception):
    """Base class for availability and booking failures."""


class StoreUnavailable(SchedulingError):
    """The schedule or booking store could not be reached."""


class InvalidSchedule(SchedulingError):
    pass


class SlotUnavailable(SchedulingError):
    pass


class BookingNotFound(SchedulingError):
    pass


class InvalidTransition(SchedulingError):
    def __init__(self, current: str, requested: str):
        super().__init__(f'Cannot move booking from {current} to {requested}.')
        self.current = current
        self.requested = requested


class ActionNotAllowed(SchedulingError):
    """The acting user may not move the booking to the requested status."""
