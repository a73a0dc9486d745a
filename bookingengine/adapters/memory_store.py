"""
In-memory booking store backed by an optional JSON data file.

Stands in for the relational datastore: it answers the read contract used by
the service and enforces the commit-time overlap guard on writes.
"""

import json
import logging
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pendulum

from ..domain.conflicts import find_booking_conflict, instants_overlap
from ..domain.exceptions import (
    BookingNotFound,
    InvalidQuery,
    InvalidStatusTransition,
    SlotNoLongerAvailable,
)
from ..domain.models import ACTIVE_STATUSES, BlockedWindow, Booking, BookingStatus, TimeWindow
from ..domain.timezone import TimezoneNormalizer

logger = logging.getLogger(__name__)


class InMemoryBookingStore:
    """
    Thread-safe booking store.

    Every write runs its overlap check and the mutation under one lock, which
    is the same guarantee a serializable transaction or an exclusion
    constraint on ``(resource_id, occupied interval)`` gives a real database.

    Blocked windows are wall-clock ranges, so the guard only checks them when
    the store knows the business timezone through ``normalizer``.
    """

    def __init__(
        self,
        bookings: Iterable[Booking] = (),
        blocked_windows: Iterable[BlockedWindow] = (),
        normalizer: Optional[TimezoneNormalizer] = None,
    ):
        self._bookings: Dict[str, Booking] = {booking.id: booking for booking in bookings}
        self._blocked: List[BlockedWindow] = list(blocked_windows)
        self._normalizer = normalizer
        self._lock = threading.Lock()

    @classmethod
    def from_json_file(
        cls,
        data_file: Path,
        normalizer: Optional[TimezoneNormalizer] = None,
    ) -> "InMemoryBookingStore":
        """
        Load bookings and blocked windows from a JSON file.

        Records that cannot be parsed are skipped with a warning so one bad
        row never takes the read path down. A missing file yields an empty
        store.
        """
        if not data_file.exists():
            logger.info("Data file %s not found, starting with an empty store", data_file)
            return cls(normalizer=normalizer)

        with open(data_file, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in {data_file}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Data file must contain an object at the root level.")

        bookings = []
        for record in data.get("bookings", []):
            try:
                bookings.append(booking_from_record(record))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid booking record %r: %s", record, exc)

        blocked = []
        for record in data.get("blocked", []):
            try:
                blocked.append(blocked_window_from_record(record))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid blocked window %r: %s", record, exc)

        return cls(bookings=bookings, blocked_windows=blocked, normalizer=normalizer)

    def save_json_file(self, data_file: Path) -> None:
        """Write the store's content back to a JSON file."""
        with self._lock:
            payload = {
                "bookings": [booking_to_record(b) for b in self._bookings.values()],
                "blocked": [blocked_window_to_record(b) for b in self._blocked],
            }

        with open(data_file, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

    async def list_bookings(
        self,
        resource_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> List[Booking]:
        """Bookings of the resources whose occupied interval meets ``[start, end)``."""
        wanted = set(resource_ids)
        with self._lock:
            matches = [
                booking
                for booking in self._bookings.values()
                if booking.resource_id in wanted
                and instants_overlap(booking.start_instant, booking.end_instant, start, end)
            ]
        return sorted(matches, key=lambda b: (b.start_instant, b.id))

    async def list_blocked_windows(
        self,
        resource_ids: Sequence[str],
        local_date: date,
    ) -> List[BlockedWindow]:
        """Blocks on ``local_date`` for any of the resources, business-wide ones included."""
        with self._lock:
            return [
                block
                for block in self._blocked
                if block.date == local_date
                and any(block.applies_to(resource_id) for resource_id in resource_ids)
            ]

    async def get_booking(self, booking_id: str) -> Booking:
        with self._lock:
            return self._get(booking_id)

    async def insert_booking(self, booking: Booking) -> Booking:
        """
        Insert a booking after re-validating it against committed bookings.

        Inserting the same id twice with identical content is a no-op, so
        callers may retry a request whose response was lost.

        Raises:
            InvalidQuery: If the duration is not positive or the id is reused
            SlotNoLongerAvailable: If an active booking or a blocked window
                already overlaps it
        """
        if booking.duration_minutes <= 0:
            raise InvalidQuery(
                f"duration_minutes must be greater than zero, got {booking.duration_minutes}"
            )

        with self._lock:
            existing = self._bookings.get(booking.id)
            if existing is not None:
                if existing == booking:
                    return existing
                raise InvalidQuery(f"Booking id '{booking.id}' is already in use")

            if booking.status in ACTIVE_STATUSES:
                self._ensure_free(booking)

            self._bookings[booking.id] = booking

        logger.debug("Inserted booking %s for %s", booking.id, booking.resource_id)
        return booking

    async def update_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """
        Change a booking's status.

        Moving a cancelled booking back to an active status re-runs the
        overlap guard.

        Raises:
            BookingNotFound: If the id is unknown
            InvalidStatusTransition: If the move is not allowed
            SlotNoLongerAvailable: If reinstating overlaps another booking
        """
        status = BookingStatus(status)
        with self._lock:
            booking = self._get(booking_id)
            if booking.status == status:
                return booking
            if not booking.can_transition_to(status):
                raise InvalidStatusTransition(
                    f"Booking {booking_id} cannot go from {booking.status.value} to {status.value}"
                )

            updated = booking.with_status(status)
            if status in ACTIVE_STATUSES and booking.status not in ACTIVE_STATUSES:
                self._ensure_free(updated)

            self._bookings[booking_id] = updated

        logger.debug("Booking %s moved from %s to %s", booking_id, booking.status.value, status.value)
        return updated

    def add_blocked_window(self, block: BlockedWindow) -> None:
        with self._lock:
            self._blocked.append(block)

    def _get(self, booking_id: str) -> Booking:
        try:
            return self._bookings[booking_id]
        except KeyError:
            raise BookingNotFound(f"Unknown booking id '{booking_id}'") from None

    def _ensure_free(self, booking: Booking) -> None:
        conflict = find_booking_conflict(booking, self._bookings.values())
        if conflict is not None:
            raise SlotNoLongerAvailable(booking.resource_id, conflict.id)

        if self._normalizer is None:
            return
        for block in self._blocked:
            if not block.applies_to(booking.resource_id):
                continue
            block_start = self._normalizer.wall_instant(block.date, block.window.start_minute)
            block_end = self._normalizer.wall_instant(block.date, block.window.end_minute)
            if instants_overlap(booking.start_instant, booking.end_instant, block_start, block_end):
                raise SlotNoLongerAvailable(booking.resource_id, f"block:{block.window}")


def booking_from_record(record: Dict[str, Any]) -> Booking:
    """
    Build a booking from a datastore record.

    ``start`` is an ISO-8601 timestamp; timestamps without an offset are UTC.
    """
    start = pendulum.parse(record["start"], tz="UTC").in_timezone("UTC")
    return Booking(
        id=str(record["id"]),
        start_instant=start,
        duration_minutes=int(record["duration_minutes"]),
        resource_id=str(record["resource_id"]),
        status=BookingStatus(record.get("status", BookingStatus.PENDING.value)),
    )


def booking_to_record(booking: Booking) -> Dict[str, Any]:
    return {
        "id": booking.id,
        "resource_id": booking.resource_id,
        "start": pendulum.instance(booking.start_instant, tz="UTC").in_timezone("UTC").to_iso8601_string(),
        "duration_minutes": booking.duration_minutes,
        "status": booking.status.value,
    }


def blocked_window_from_record(record: Dict[str, Any]) -> BlockedWindow:
    """Build a blocked window from ``{date, start, end, resource_id?, reason?}``."""
    resource_id: Optional[str] = record.get("resource_id")
    return BlockedWindow(
        date=pendulum.from_format(record["date"], "YYYY-MM-DD").date(),
        window=TimeWindow.from_clock(record["start"], record["end"]),
        resource_id=str(resource_id) if resource_id is not None else None,
        reason=record.get("reason", ""),
    )


def blocked_window_to_record(block: BlockedWindow) -> Dict[str, Any]:
    start, end = str(block.window).split(" - ")
    return {
        "date": block.date.isoformat(),
        "start": start,
        "end": end,
        "resource_id": block.resource_id,
        "reason": block.reason,
    }
