"""
Domain layer - Pure scheduling logic without external dependencies.
"""

from .conflicts import occupies_time, overlaps
from .layout_packer import CalendarLayoutPacker
from .models import (
    BlockedWindow,
    Booking,
    BookingStatus,
    BusinessCalendarConfig,
    DayHours,
    LayoutAssignment,
    LayoutEntry,
    SlotReason,
    SlotSummary,
    SlotVerdict,
    TimeWindow,
)
from .slot_generator import SlotGenerator
from .timezone import TimezoneNormalizer

__all__ = [
    "BlockedWindow",
    "Booking",
    "BookingStatus",
    "BusinessCalendarConfig",
    "CalendarLayoutPacker",
    "DayHours",
    "LayoutAssignment",
    "LayoutEntry",
    "SlotGenerator",
    "SlotReason",
    "SlotSummary",
    "SlotVerdict",
    "TimeWindow",
    "TimezoneNormalizer",
    "occupies_time",
    "overlaps",
]
