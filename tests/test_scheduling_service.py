"""
Tests for the SchedulingService orchestration layer.
"""

import asyncio
from datetime import date
from typing import Dict, List, Optional

import pendulum
import pytest

from bookingengine.adapters.memory_store import InMemoryBookingStore
from bookingengine.domain.exceptions import (
    AmbiguousLocalTime,
    InvalidQuery,
    InvalidStatusTransition,
    SlotNoLongerAvailable,
)
from bookingengine.domain.models import (
    BlockedWindow,
    Booking,
    BookingStatus,
    BusinessCalendarConfig,
    SlotReason,
    TimeWindow,
)
from bookingengine.domain.timezone import TimezoneNormalizer
from bookingengine.services.scheduling import SchedulingService, parse_local_date

MONDAY = date(2024, 11, 25)
LONG_AGO = pendulum.datetime(2024, 1, 1, tz="UTC")


class StubConfigSource:
    """Minimal stub matching CalendarConfigProtocol."""

    def __init__(self, calendars: Dict[str, BusinessCalendarConfig]):
        self._calendars = calendars
        self.calls: List[str] = []

    async def get_calendar_config(self, resource_id: str) -> Optional[BusinessCalendarConfig]:
        self.calls.append(resource_id)
        return self._calendars.get(resource_id)

    def known_resources(self) -> List[str]:
        return list(self._calendars)


class StaleReadStore(InMemoryBookingStore):
    """Store whose reads miss every booking, as a lagging replica would."""

    async def list_bookings(self, resource_ids, start, end):
        return []


def _config(**overrides) -> BusinessCalendarConfig:
    values = {"open_minute": 9 * 60, "close_minute": 12 * 60, "slot_granularity_minutes": 30}
    values.update(overrides)
    return BusinessCalendarConfig(**values)


def _booking(booking_id, hour, minute, duration, resource_id="ana", status=BookingStatus.CONFIRMED):
    """Booking at a UTC time on Monday 2024-11-25 (local time is three hours earlier)."""
    return Booking(
        id=booking_id,
        start_instant=pendulum.datetime(2024, 11, 25, hour, minute, tz="UTC"),
        duration_minutes=duration,
        resource_id=resource_id,
        status=status,
    )


def _build_service(bookings=(), calendars=None, store=None, tz="America/Sao_Paulo", **kwargs):
    store = store if store is not None else InMemoryBookingStore(bookings)
    source = StubConfigSource(calendars if calendars is not None else {"ana": _config(), "bruno": _config()})
    service = SchedulingService(
        booking_store=store,
        config_source=source,
        normalizer=TimezoneNormalizer(tz),
        **kwargs,
    )
    return service, store


def test_available_slots_uses_calendar_and_bookings():
    service, _ = _build_service([_booking("b1", 13, 0, 40)])

    verdicts = asyncio.run(service.get_available_slots("ana", "2024-11-25", 30, now=LONG_AGO))

    assert [v.label for v in verdicts if v.available] == ["09:00", "09:30", "11:00", "11:30"]
    assert {v.conflicting_id for v in verdicts if v.reason == SlotReason.CONFLICT} == {"b1"}


def test_unconfigured_resource_uses_fallback_hours():
    service, _ = _build_service(calendars={})

    verdicts = asyncio.run(service.get_available_slots("carla", MONDAY, now=LONG_AGO))

    assert verdicts[0].label == "09:00"
    assert verdicts[-1].label == "17:30"
    assert len(verdicts) == 18


def test_fallback_is_closed_on_sunday():
    service, _ = _build_service(calendars={})

    assert asyncio.run(service.get_available_slots("carla", date(2024, 11, 24), now=LONG_AGO)) == []


def test_other_resources_do_not_block():
    service, _ = _build_service([_booking("b1", 13, 0, 60, resource_id="bruno")])

    verdicts = asyncio.run(service.get_available_slots("ana", MONDAY, now=LONG_AGO))

    assert all(v.available for v in verdicts)


def test_blocked_windows_apply_to_their_resource():
    store = InMemoryBookingStore(blocked_windows=[
        BlockedWindow(date=MONDAY, window=TimeWindow(540, 600), resource_id="bruno"),
        BlockedWindow(date=MONDAY, window=TimeWindow(660, 720)),
    ])
    service, _ = _build_service(store=store)

    verdicts = asyncio.run(service.get_available_slots("ana", MONDAY, now=LONG_AGO))

    assert [v.label for v in verdicts if v.available] == ["09:00", "09:30", "10:00", "10:30"]


@pytest.mark.parametrize("value", ["25/11/2024", "", "tomorrow"])
def test_invalid_date_rejected(value):
    service, _ = _build_service()

    with pytest.raises(InvalidQuery, match="Invalid date"):
        asyncio.run(service.get_available_slots("ana", value))


@pytest.mark.parametrize("duration", [0, -30])
def test_invalid_duration_rejected(duration):
    service, _ = _build_service()

    with pytest.raises(InvalidQuery):
        asyncio.run(service.get_available_slots("ana", MONDAY, duration))


def test_booking_horizon():
    service, _ = _build_service(booking_horizon_days=7)
    now = pendulum.datetime(2024, 11, 25, 13, 0, tz="UTC")

    asyncio.run(service.get_available_slots("ana", date(2024, 12, 2), now=now))
    with pytest.raises(InvalidQuery, match="booking horizon"):
        asyncio.run(service.get_available_slots("ana", date(2024, 12, 3), now=now))


def test_slot_summary():
    service, _ = _build_service([_booking("b1", 13, 0, 40)])

    summary = asyncio.run(service.get_slot_summary("ana", MONDAY, now=LONG_AGO))

    assert (summary.available, summary.unavailable) == (4, 2)


def test_parse_local_date():
    assert parse_local_date("2024-11-25") == MONDAY
    assert parse_local_date(MONDAY) == MONDAY
    assert parse_local_date(pendulum.datetime(2024, 11, 25, 10, 0)) == MONDAY


class TestBookSlot:
    """Tests for booking a slot through the service."""

    def test_book_free_slot(self):
        service, store = _build_service()

        booking = asyncio.run(service.book_slot("ana", MONDAY, 600, 30, now=LONG_AGO))

        assert booking.status == BookingStatus.PENDING
        assert booking.start_instant == pendulum.datetime(2024, 11, 25, 13, 0, tz="UTC")
        assert asyncio.run(store.get_booking(booking.id)) == booking

        verdicts = asyncio.run(service.get_available_slots("ana", MONDAY, 30, now=LONG_AGO))
        by_label = {v.label: v for v in verdicts}
        assert by_label["10:00"].conflicting_id == booking.id

    def test_book_with_given_id_and_status(self):
        service, _ = _build_service()

        booking = asyncio.run(
            service.book_slot("ana", "2024-11-25", 540, 60, booking_id="walk-in",
                              status="confirmed", now=LONG_AGO)
        )

        assert booking.id == "walk-in"
        assert booking.status == BookingStatus.CONFIRMED

    def test_double_booking_rejected(self):
        service, _ = _build_service([_booking("b1", 13, 0, 40)])

        with pytest.raises(SlotNoLongerAvailable) as exc_info:
            asyncio.run(service.book_slot("ana", MONDAY, 630, 30, now=LONG_AGO))

        assert exc_info.value.conflicting_id == "b1"

    def test_stale_read_caught_at_insert(self):
        """The slot looked free, but the store still refuses the overlap."""
        store = StaleReadStore([_booking("b1", 13, 0, 40)])
        service, _ = _build_service(store=store)

        with pytest.raises(SlotNoLongerAvailable):
            asyncio.run(service.book_slot("ana", MONDAY, 600, 30, now=LONG_AGO))

    def test_misaligned_start_rejected(self):
        service, _ = _build_service()

        with pytest.raises(InvalidQuery, match="not a slot start"):
            asyncio.run(service.book_slot("ana", MONDAY, 550, 30, now=LONG_AGO))

    def test_break_rejected(self):
        service, _ = _build_service(calendars={"ana": _config(break_window=TimeWindow(600, 660))})

        with pytest.raises(InvalidQuery, match="in_break"):
            asyncio.run(service.book_slot("ana", MONDAY, 600, 30, now=LONG_AGO))

    def test_past_slot_rejected(self):
        service, _ = _build_service()
        now = pendulum.datetime(2024, 11, 25, 13, 0, tz="UTC")

        with pytest.raises(InvalidQuery, match="already_passed"):
            asyncio.run(service.book_slot("ana", MONDAY, 570, 30, now=now))

    def test_completed_status_rejected(self):
        service, _ = _build_service()

        with pytest.raises(InvalidQuery, match="pending or confirmed"):
            asyncio.run(service.book_slot("ana", MONDAY, 600, 30, status=BookingStatus.COMPLETED))

    def test_dst_gap_start_rejected(self):
        """02:00 does not exist in New York on 2024-03-10."""
        calendars = {"ana": _config(open_minute=0, close_minute=240, open_days=frozenset(range(7)))}
        service, _ = _build_service(calendars=calendars, tz="America/New_York")

        with pytest.raises(AmbiguousLocalTime):
            asyncio.run(service.book_slot("ana", date(2024, 3, 10), 120, 30, now=LONG_AGO))


class TestChangeStatus:
    """Tests for lifecycle changes through the service."""

    def test_cancel_frees_slot(self):
        service, _ = _build_service([_booking("b1", 13, 0, 30)])

        asyncio.run(service.change_status("b1", BookingStatus.CANCELLED))
        verdicts = asyncio.run(service.get_available_slots("ana", MONDAY, now=LONG_AGO))

        assert all(v.available for v in verdicts)

    def test_invalid_transition(self):
        service, _ = _build_service([_booking("b1", 13, 0, 30, status=BookingStatus.COMPLETED)])

        with pytest.raises(InvalidStatusTransition):
            asyncio.run(service.change_status("b1", BookingStatus.PENDING))


class TestDayLayout:
    """Tests for the day layout."""

    def test_single_resource(self):
        service, _ = _build_service([
            _booking("A", 12, 0, 30),
            _booking("B", 12, 15, 30),
            _booking("C", 12, 45, 20),
        ])

        assignments = asyncio.run(service.get_day_layout("ana", MONDAY))

        by_id = {a.booking_id: a for a in assignments}
        assert [by_id[k].column_index for k in "ABC"] == [0, 1, 0]
        assert [by_id[k].total_columns for k in "ABC"] == [2, 2, 1]

    def test_group_layout_and_cancelled_filter(self):
        service, _ = _build_service([
            _booking("ana-1", 13, 0, 60),
            _booking("bruno-1", 13, 30, 60, resource_id="bruno"),
            _booking("gone", 13, 0, 60, status=BookingStatus.CANCELLED),
        ])

        assignments = asyncio.run(service.get_day_layout(["ana", "bruno"], MONDAY))
        with_cancelled = asyncio.run(service.get_day_layout(["ana", "bruno"], MONDAY, include_cancelled=True))

        assert [a.booking_id for a in assignments] == ["ana-1", "bruno-1"]
        assert all(a.total_columns == 2 for a in assignments)
        assert len(with_cancelled) == 3
        assert max(a.total_columns for a in with_cancelled) == 3

    def test_booking_from_previous_evening_is_clipped(self):
        # 2024-11-24 23:30 local, lasting until 01:00 on Monday
        service, _ = _build_service([_booking("late", 2, 30, 90)])

        assignments = asyncio.run(service.get_day_layout("ana", MONDAY))
        entries = service.layout_entries(
            MONDAY, asyncio.run(service.fetch_day_bookings(["ana"], MONDAY))
        )

        assert [a.booking_id for a in assignments] == ["late"]
        assert (entries[0].start_minute, entries[0].end_minute) == (0, 60)

    def test_empty_resource_list_rejected(self):
        service, _ = _build_service()

        with pytest.raises(InvalidQuery):
            asyncio.run(service.get_day_layout([], MONDAY))

    def test_layout_on_spring_forward_day(self):
        """01:30 EST plus 60 minutes runs to 03:30 EDT and overlaps a 03:15 booking."""
        first = Booking(
            id="night",
            start_instant=pendulum.datetime(2024, 3, 10, 6, 30, tz="UTC"),
            duration_minutes=60,
            resource_id="ana",
            status=BookingStatus.CONFIRMED,
        )
        second = Booking(
            id="early",
            start_instant=pendulum.datetime(2024, 3, 10, 7, 15, tz="UTC"),
            duration_minutes=30,
            resource_id="ana",
            status=BookingStatus.CONFIRMED,
        )
        service, _ = _build_service([first, second], tz="America/New_York")

        assignments = asyncio.run(service.get_day_layout("ana", date(2024, 3, 10)))

        assert [(a.booking_id, a.column_index, a.total_columns) for a in assignments] == [
            ("night", 0, 2),
            ("early", 1, 2),
        ]


class TestRetriesAndDates:
    """Tests for repeated booking requests and the allowed date range."""

    NOW = pendulum.datetime(2024, 11, 25, 13, 0, tz="UTC")  # 10:00 local

    def test_retry_with_same_id_returns_existing_booking(self):
        service, store = _build_service()

        first = asyncio.run(service.book_slot("ana", MONDAY, 660, 30, booking_id="x", now=self.NOW))
        second = asyncio.run(service.book_slot("ana", MONDAY, 660, 30, booking_id="x", now=self.NOW))

        assert second == first
        start, end = service.normalizer.day_bounds_utc(MONDAY)
        assert [b.id for b in asyncio.run(store.list_bookings(["ana"], start, end))] == ["x"]

    def test_same_id_for_another_slot_rejected(self):
        service, _ = _build_service()

        asyncio.run(service.book_slot("ana", MONDAY, 660, 30, booking_id="x", now=self.NOW))
        with pytest.raises(InvalidQuery, match="already in use"):
            asyncio.run(service.book_slot("ana", MONDAY, 690, 30, booking_id="x", now=self.NOW))

    def test_booking_a_past_date_rejected(self):
        service, _ = _build_service()

        with pytest.raises(InvalidQuery, match="in the past"):
            asyncio.run(service.book_slot("ana", date(2024, 11, 1), 600, 30, now=self.NOW))

    def test_booking_later_today_allowed(self):
        service, _ = _build_service()

        booking = asyncio.run(service.book_slot("ana", MONDAY, 660, 30, now=self.NOW))

        assert booking.start_instant == pendulum.datetime(2024, 11, 25, 14, 0, tz="UTC")

    def test_horizon_starts_today(self):
        service, _ = _build_service(booking_horizon_days=60)

        asyncio.run(service.get_available_slots("ana", MONDAY, now=self.NOW))
        with pytest.raises(InvalidQuery, match="before the booking horizon"):
            asyncio.run(service.get_available_slots("ana", date(2024, 11, 22), now=self.NOW))
