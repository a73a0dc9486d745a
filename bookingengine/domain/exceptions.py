"""
Domain-specific exception hierarchy for the booking engine.
"""


class SchedulingError(Exception):
    """Base class for all engine-level errors."""


class InvalidConfig(SchedulingError):
    """Raised when a calendar configuration violates its invariants."""


class InvalidQuery(SchedulingError):
    """Raised when a caller passes an unusable date, duration or resource."""


class AmbiguousLocalTime(SchedulingError):
    """Raised when a wall-clock time falls inside a DST spring-forward gap."""

    def __init__(self, local_date, minute_of_day: int, timezone: str):
        self.local_date = local_date
        self.minute_of_day = minute_of_day
        self.timezone = timezone
        hours, minutes = divmod(minute_of_day, 60)
        super().__init__(
            f"{local_date} {hours:02d}:{minutes:02d} does not exist in {timezone} "
            f"(daylight saving gap)"
        )


class SlotNoLongerAvailable(SchedulingError):
    """Raised at commit time when another booking already took the slot."""

    def __init__(self, resource_id: str, conflicting_id: str):
        self.resource_id = resource_id
        self.conflicting_id = conflicting_id
        super().__init__(
            f"Slot for resource '{resource_id}' conflicts with booking '{conflicting_id}'"
        )


class BookingNotFound(SchedulingError):
    """Raised when a booking id is unknown to the store."""


class InvalidStatusTransition(SchedulingError):
    """Raised when a booking status change is not allowed."""
