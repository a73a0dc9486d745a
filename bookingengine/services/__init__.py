"""
Service layer helpers that orchestrate adapters and domain logic.
"""

from .scheduling import (
    BookingStoreProtocol,
    CalendarConfigProtocol,
    SchedulingService,
    parse_local_date,
)

__all__ = [
    "BookingStoreProtocol",
    "CalendarConfigProtocol",
    "SchedulingService",
    "parse_local_date",
]
