"""
Interval overlap checks shared by slot generation, layout and the commit guard.
"""

from datetime import datetime
from typing import Iterable, Optional, Tuple

from .models import Booking, TimeWindow


def overlaps(candidate: TimeWindow, occupied: TimeWindow) -> bool:
    """
    Half-open overlap test.

    Windows that merely touch (one ends when the other starts) do not overlap,
    so back-to-back bookings are legal.
    """
    return candidate.start_minute < occupied.end_minute and occupied.start_minute < candidate.end_minute


def minute_ranges_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Same test as :func:`overlaps` for raw minute bounds."""
    return start_a < end_b and start_b < end_a


def instants_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Same test as :func:`overlaps` for absolute instants."""
    return start_a < end_b and start_b < end_a


def occupies_time(booking: Booking) -> bool:
    """
    Whether a booking blocks its resource.

    Only pending and confirmed bookings do; cancelled and completed ones never
    prevent a new reservation.
    """
    return booking.is_active()


def find_conflict(
    start: int,
    end: int,
    occupied: Iterable[Tuple[str, int, int]],
) -> Optional[str]:
    """
    Return the id of the first occupied range overlapping ``[start, end)``.

    Stops at the first hit; ``None`` means the candidate is free.
    """
    for occupant_id, occupied_start, occupied_end in occupied:
        if minute_ranges_overlap(start, end, occupied_start, occupied_end):
            return occupant_id
    return None


def find_booking_conflict(candidate: Booking, existing: Iterable[Booking]) -> Optional[Booking]:
    """
    Return the first active booking on the candidate's resource that overlaps it.

    Used by stores to re-validate a booking immediately before committing it.
    """
    for booking in existing:
        if booking.id == candidate.id:
            continue
        if booking.resource_id != candidate.resource_id or not occupies_time(booking):
            continue
        if instants_overlap(
            candidate.start_instant,
            candidate.end_instant,
            booking.start_instant,
            booking.end_instant,
        ):
            return booking
    return None
