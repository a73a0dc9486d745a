"""
Application services for slot queries, day layouts and bookings.

The service fetches the day's snapshot through datastore and configuration
adapters and delegates every computation to the pure domain components. The
adapters are described by protocols so tests can plug in simple stubs.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional, Protocol, Sequence, Union

import pendulum

from ..domain.exceptions import (
    BookingNotFound,
    InvalidQuery,
    InvalidStatusTransition,
    SlotNoLongerAvailable,
)
from ..domain.layout_packer import CalendarLayoutPacker
from ..domain.models import (
    MINUTES_PER_DAY,
    BlockedWindow,
    Booking,
    BookingStatus,
    BusinessCalendarConfig,
    LayoutAssignment,
    LayoutEntry,
    SlotReason,
    SlotSummary,
    SlotVerdict,
)
from ..domain.slot_generator import SlotGenerator
from ..domain.timezone import TimezoneNormalizer

logger = logging.getLogger(__name__)

DateLike = Union[date, str]


class BookingStoreProtocol(Protocol):
    """Datastore behaviour needed by the service."""

    async def list_bookings(
        self,
        resource_ids: Sequence[str],
        start: datetime,
        end: datetime,
    ) -> List[Booking]:
        """Return bookings of the resources whose occupied interval meets ``[start, end)``."""

    async def list_blocked_windows(
        self,
        resource_ids: Sequence[str],
        local_date: date,
    ) -> List[BlockedWindow]:
        """Return blocks on ``local_date`` applying to any of the resources."""

    async def get_booking(self, booking_id: str) -> Booking:
        """Return a booking or raise ``BookingNotFound``."""

    async def insert_booking(self, booking: Booking) -> Booking:
        """Insert a booking, rejecting overlaps with ``SlotNoLongerAvailable``."""

    async def update_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """Persist a status change, re-validating overlaps on reinstatement."""


class CalendarConfigProtocol(Protocol):
    """Configuration source for resource calendars."""

    async def get_calendar_config(self, resource_id: str) -> Optional[BusinessCalendarConfig]:
        """Return the resource's calendar, or ``None`` to use the fallback."""

    def known_resources(self) -> List[str]:
        """Resource ids with a configured calendar."""


class SchedulingService:
    """
    Entry point used by every surface (staff calendar, customer booking flow,
    admin booking flow).

    Each call reads a fresh snapshot and recomputes from scratch; the service
    keeps no state between calls.
    """

    def __init__(
        self,
        booking_store: BookingStoreProtocol,
        config_source: CalendarConfigProtocol,
        normalizer: TimezoneNormalizer,
        packer: Optional[CalendarLayoutPacker] = None,
        booking_horizon_days: Optional[int] = None,
    ) -> None:
        self._booking_store = booking_store
        self._config_source = config_source
        self._normalizer = normalizer
        self._packer = packer or CalendarLayoutPacker()
        self._booking_horizon_days = booking_horizon_days

    @property
    def normalizer(self) -> TimezoneNormalizer:
        return self._normalizer

    async def get_available_slots(
        self,
        resource_id: str,
        local_date: DateLike,
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[SlotVerdict]:
        """
        Ordered slot verdicts for a resource on a local date.

        Raises:
            InvalidQuery: For an unparsable date, a non-positive duration or a
                date outside the booking horizon
            InvalidConfig: If the stored calendar is inconsistent
        """
        day = parse_local_date(local_date)
        if duration_minutes is not None and duration_minutes <= 0:
            raise InvalidQuery(f"duration_minutes must be greater than zero, got {duration_minutes}")
        self._check_horizon(day, now)

        config = await self.resolve_config(resource_id)
        bookings = await self.fetch_day_bookings([resource_id], day)
        blocks = await self._booking_store.list_blocked_windows([resource_id], day)

        generator = SlotGenerator(config=config, normalizer=self._normalizer)
        return generator.generate(
            day,
            bookings=bookings,
            duration_minutes=duration_minutes,
            now=now,
            blocked_windows=[block for block in blocks if block.applies_to(resource_id)],
        )

    async def get_slot_summary(
        self,
        resource_id: str,
        local_date: DateLike,
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> SlotSummary:
        """Count available and unavailable slots for the day."""
        verdicts = await self.get_available_slots(resource_id, local_date, duration_minutes, now)
        return SlotSummary.from_verdicts(verdicts)

    async def get_day_layout(
        self,
        resource_ids: Union[str, Sequence[str]],
        local_date: DateLike,
        include_cancelled: bool = False,
    ) -> List[LayoutAssignment]:
        """
        Column layout of the bookings of one resource or a group of resources.

        Cancelled bookings are left out unless ``include_cancelled`` is set.
        """
        day = parse_local_date(local_date)
        ids = [resource_ids] if isinstance(resource_ids, str) else list(resource_ids)
        if not ids:
            raise InvalidQuery("At least one resource id is required")

        bookings = await self.fetch_day_bookings(ids, day)
        if not include_cancelled:
            bookings = [b for b in bookings if b.status != BookingStatus.CANCELLED]

        return self._packer.pack(self.layout_entries(day, bookings))

    async def book_slot(
        self,
        resource_id: str,
        local_date: DateLike,
        start_minute: int,
        duration_minutes: int,
        booking_id: Optional[str] = None,
        status: BookingStatus = BookingStatus.PENDING,
        now: Optional[datetime] = None,
    ) -> Booking:
        """
        Reserve a slot shown by :meth:`get_available_slots`.

        The slot is re-checked against a fresh snapshot, then inserted through
        the store, which performs the authoritative overlap check. Repeating a
        request with the same ``booking_id`` returns the stored booking.

        Raises:
            AmbiguousLocalTime: If the start falls inside a DST gap
            InvalidQuery: If the date is in the past, the start is not a
                bookable slot of the day or ``booking_id`` is taken by a
                different booking
            SlotNoLongerAvailable: If the slot was taken meanwhile
        """
        day = parse_local_date(local_date)
        status = BookingStatus(status)
        if duration_minutes <= 0:
            raise InvalidQuery(f"duration_minutes must be greater than zero, got {duration_minutes}")
        if not 0 <= start_minute < MINUTES_PER_DAY:
            raise InvalidQuery(f"start_minute must be between 0 and 1439, got {start_minute}")
        if status not in (BookingStatus.PENDING, BookingStatus.CONFIRMED):
            raise InvalidQuery(f"New bookings must be pending or confirmed, got {status.value}")

        today, _ = self._normalizer.now_local(now)
        if day < today:
            raise InvalidQuery(f"{day} is in the past")

        start_instant = self._normalizer.to_utc(day, start_minute)

        if booking_id is not None:
            retried = await self._find_retry(
                Booking(
                    id=booking_id,
                    start_instant=start_instant,
                    duration_minutes=duration_minutes,
                    resource_id=resource_id,
                    status=status,
                )
            )
            if retried is not None:
                return retried

        verdicts = await self.get_available_slots(resource_id, day, duration_minutes, now)
        verdict = next((v for v in verdicts if v.start_minute == start_minute), None)
        if verdict is None:
            raise InvalidQuery(
                f"{day} minute {start_minute} is not a slot start for resource '{resource_id}'"
            )
        if verdict.reason == SlotReason.CONFLICT:
            raise SlotNoLongerAvailable(resource_id, verdict.conflicting_id or "")
        if not verdict.available:
            raise InvalidQuery(f"Slot {verdict.label} on {day} is not bookable: {verdict.reason.value}")

        booking = Booking(
            id=booking_id or uuid.uuid4().hex,
            start_instant=start_instant,
            duration_minutes=duration_minutes,
            resource_id=resource_id,
            status=status,
        )
        saved = await self._booking_store.insert_booking(booking)
        logger.info("Booked %s for %s on %s at %s", saved.id, resource_id, day, verdict.label)
        return saved

    async def change_status(self, booking_id: str, status: BookingStatus) -> Booking:
        """
        Move a booking through its lifecycle.

        Raises:
            BookingNotFound: If the id is unknown
            InvalidStatusTransition: If the move is not allowed
            SlotNoLongerAvailable: If reinstating it would overlap another booking
        """
        status = BookingStatus(status)
        booking = await self._booking_store.get_booking(booking_id)
        if booking.status == status:
            return booking
        if not booking.can_transition_to(status):
            raise InvalidStatusTransition(
                f"Booking {booking_id} cannot go from {booking.status.value} to {status.value}"
            )
        return await self._booking_store.update_status(booking_id, status)

    async def resolve_config(self, resource_id: str) -> BusinessCalendarConfig:
        """Calendar of the resource, or the fallback calendar when none is stored."""
        config = await self._config_source.get_calendar_config(resource_id)
        if config is None:
            logger.info("No calendar configured for '%s', using fallback hours", resource_id)
            return BusinessCalendarConfig.default()
        return config

    async def fetch_day_bookings(self, resource_ids: Sequence[str], day: date) -> List[Booking]:
        """Bookings of the resources whose occupied interval meets the local day."""
        start, end = self._normalizer.day_bounds_utc(day)
        return await self._booking_store.list_bookings(resource_ids, start, end)

    def layout_entries(self, day: date, bookings: Sequence[Booking]) -> List[LayoutEntry]:
        """
        Reduce bookings to their extents in real minutes since local midnight,
        clipped to the day (which lasts 23 or 25 hours on DST days).
        """
        _, day_end = self._normalizer.day_bounds_utc(day)
        day_length = self._normalizer.elapsed_minutes(day, day_end)
        entries: List[LayoutEntry] = []
        for booking in bookings:
            start = self._normalizer.elapsed_minutes(day, booking.start_instant)
            end = start + max(booking.duration_minutes, 1)
            start, end = max(start, 0), min(end, day_length)
            if start >= end:
                continue
            entries.append(LayoutEntry(booking_id=booking.id, start_minute=start, end_minute=end))
        return entries

    async def _find_retry(self, booking: Booking) -> Optional[Booking]:
        """
        Return the stored booking if ``booking`` repeats an earlier request.

        Raises:
            InvalidQuery: If the id is taken by a different booking
        """
        try:
            existing = await self._booking_store.get_booking(booking.id)
        except BookingNotFound:
            return None
        if existing != booking:
            raise InvalidQuery(f"Booking id '{booking.id}' is already in use")
        logger.info("Booking %s already exists, returning it", booking.id)
        return existing

    def _check_horizon(self, day: date, now: Optional[datetime]) -> None:
        if self._booking_horizon_days is None:
            return
        today, _ = self._normalizer.now_local(now)
        if day < today:
            raise InvalidQuery(f"{day} is before the booking horizon, which starts today ({today})")
        last_day = today + timedelta(days=self._booking_horizon_days)
        if day > last_day:
            raise InvalidQuery(
                f"{day} is beyond the booking horizon of {self._booking_horizon_days} days"
            )


def parse_local_date(value: DateLike) -> date:
    """
    Accept a ``date`` or an ISO ``YYYY-MM-DD`` string.

    Raises:
        InvalidQuery: If the string is not a valid date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return pendulum.from_format(value.strip(), "YYYY-MM-DD").date()
    except (ValueError, AttributeError) as exc:
        raise InvalidQuery(f"Invalid date '{value}', expected YYYY-MM-DD") from exc
