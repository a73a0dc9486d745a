"""
Domain models for calendar windows, bookings and derived scheduling results.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from enum import Enum
from typing import FrozenSet, List, Mapping, Optional

from .exceptions import InvalidConfig

MINUTES_PER_DAY = 24 * 60

WEEKDAY_NAMES = {
    0: "Monday",
    1: "Tuesday",
    2: "Wednesday",
    3: "Thursday",
    4: "Friday",
    5: "Saturday",
    6: "Sunday",
}


def parse_clock_time(value: str) -> int:
    """
    Convert a wall-clock string to minutes since local midnight.

    Accepts ``HH:MM`` and ``HH:MM:SS`` (seconds are ignored, as stored by
    relational ``time`` columns) and the special value ``24:00`` for closing at
    midnight.

    Raises:
        ValueError: If the value is not a valid clock time
    """
    parts = value.strip().split(":")
    if len(parts) < 2:
        raise ValueError(f"Invalid clock time '{value}', expected HH:MM")

    try:
        hours = int(parts[0])
        minutes = int(parts[1])
    except ValueError as exc:
        raise ValueError(f"Invalid clock time '{value}', expected HH:MM") from exc

    if hours == 24 and minutes == 0:
        return MINUTES_PER_DAY
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Clock time out of range: '{value}'")
    return hours * 60 + minutes


def format_minute(minute_of_day: int) -> str:
    """Format minutes since midnight as ``HH:MM``."""
    hours, minutes = divmod(minute_of_day, 60)
    return f"{hours:02d}:{minutes:02d}"


@dataclass(frozen=True)
class TimeWindow:
    """
    Half-open interval ``[start_minute, end_minute)`` of local wall-clock minutes.

    Invariant: 0 <= start_minute < end_minute <= 1440.
    """
    start_minute: int
    end_minute: int

    def __post_init__(self):
        if not 0 <= self.start_minute < self.end_minute <= MINUTES_PER_DAY:
            raise ValueError(
                f"Invalid time window {self.start_minute}-{self.end_minute}: "
                f"expected 0 <= start < end <= {MINUTES_PER_DAY}"
            )

    @classmethod
    def from_clock(cls, start: str, end: str) -> "TimeWindow":
        """Build a window from two ``HH:MM`` strings."""
        return cls(start_minute=parse_clock_time(start), end_minute=parse_clock_time(end))

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return self.end_minute - self.start_minute

    def contains(self, other: "TimeWindow") -> bool:
        """Check if another window lies completely inside this one."""
        return self.start_minute <= other.start_minute and other.end_minute <= self.end_minute

    def __str__(self) -> str:
        return f"{format_minute(self.start_minute)} - {format_minute(self.end_minute)}"


class BookingStatus(str, Enum):
    """Lifecycle states of a booking."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses that block the resource's time.
ACTIVE_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})

ALLOWED_TRANSITIONS = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED}),
    BookingStatus.COMPLETED: frozenset(),
}


@dataclass(frozen=True)
class Booking:
    """
    An appointment held by a resource, stored as a UTC instant plus duration.
    """
    id: str
    start_instant: datetime
    duration_minutes: int
    resource_id: str
    status: BookingStatus = BookingStatus.PENDING

    @property
    def end_instant(self) -> datetime:
        """UTC instant at which the occupied interval ends."""
        return self.start_instant + timedelta(minutes=self.duration_minutes)

    def is_active(self) -> bool:
        """Whether the booking occupies time for conflict purposes."""
        return self.status in ACTIVE_STATUSES

    def can_transition_to(self, status: BookingStatus) -> bool:
        return status in ALLOWED_TRANSITIONS[self.status]

    def with_status(self, status: BookingStatus) -> "Booking":
        """Return a copy of the booking with a new status."""
        return replace(self, status=status)


@dataclass(frozen=True)
class BlockedWindow:
    """
    Ad-hoc time block on a specific date.

    A block without ``resource_id`` applies to every resource of the business.
    """
    date: date
    window: TimeWindow
    resource_id: Optional[str] = None
    reason: str = ""

    def applies_to(self, resource_id: str) -> bool:
        """Check whether the block restricts the given resource."""
        return self.resource_id is None or self.resource_id == resource_id


@dataclass(frozen=True)
class DayHours:
    """Opening hours override for a single weekday."""
    open_minute: int
    close_minute: int
    break_window: Optional[TimeWindow] = None


@dataclass(frozen=True)
class BusinessCalendarConfig:
    """
    Declarative description of when a resource can be booked.

    Weekdays follow ``date.weekday()``: 0=Monday, 6=Sunday.
    """
    open_minute: int
    close_minute: int
    slot_granularity_minutes: int = 30
    break_window: Optional[TimeWindow] = None
    open_days: FrozenSet[int] = frozenset(range(6))
    day_hours: Mapping[int, DayHours] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "open_days", frozenset(self.open_days))
        self._validate()
        for weekday, hours in self.day_hours.items():
            if weekday not in WEEKDAY_NAMES:
                raise InvalidConfig(f"day_hours weekday must be between 0 and 6, got {weekday}")
            self._validate_hours(hours.open_minute, hours.close_minute, hours.break_window)

    @classmethod
    def default(cls) -> "BusinessCalendarConfig":
        """Fallback configuration used when a resource has none stored."""
        return cls(
            open_minute=9 * 60,
            close_minute=18 * 60,
            slot_granularity_minutes=30,
            break_window=None,
            open_days=frozenset(range(6)),  # Monday-Saturday
        )

    def _validate(self) -> None:
        if self.slot_granularity_minutes <= 0:
            raise InvalidConfig(
                f"slot_granularity_minutes must be greater than zero, "
                f"got {self.slot_granularity_minutes}"
            )
        invalid_days = sorted(day for day in self.open_days if day not in WEEKDAY_NAMES)
        if invalid_days:
            raise InvalidConfig(f"open_days must be between 0 and 6, got {invalid_days}")
        self._validate_hours(self.open_minute, self.close_minute, self.break_window)

    @staticmethod
    def _validate_hours(
        open_minute: int,
        close_minute: int,
        break_window: Optional[TimeWindow],
    ) -> None:
        if not 0 <= open_minute < close_minute <= MINUTES_PER_DAY:
            raise InvalidConfig(
                f"Opening time {format_minute(open_minute)} must be before "
                f"closing time {format_minute(close_minute)}"
            )
        if break_window is None:
            return
        if not (open_minute <= break_window.start_minute
                and break_window.end_minute <= close_minute):
            raise InvalidConfig(
                f"Break window {break_window} must lie within opening hours "
                f"{format_minute(open_minute)} - {format_minute(close_minute)}"
            )

    @property
    def opening_window(self) -> TimeWindow:
        """Opening hours as a time window."""
        return TimeWindow(start_minute=self.open_minute, end_minute=self.close_minute)

    def is_open_on(self, weekday: int) -> bool:
        """Check whether the resource takes bookings on a weekday."""
        return weekday in self.open_days

    def for_weekday(self, weekday: int) -> "BusinessCalendarConfig":
        """
        Resolve the effective configuration for a weekday.

        Per-weekday overrides replace opening hours and the break window; the
        granularity and open days are shared.
        """
        hours = self.day_hours.get(weekday)
        if hours is None:
            return self

        return BusinessCalendarConfig(
            open_minute=hours.open_minute,
            close_minute=hours.close_minute,
            slot_granularity_minutes=self.slot_granularity_minutes,
            break_window=hours.break_window,
            open_days=self.open_days,
        )


class SlotReason(str, Enum):
    """Why a candidate slot is or is not bookable."""
    OK = "ok"
    IN_BREAK = "in_break"
    ALREADY_PASSED = "already_passed"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class SlotVerdict:
    """
    Availability verdict for one candidate start time.
    """
    window: TimeWindow
    available: bool
    reason: SlotReason = SlotReason.OK
    conflicting_id: Optional[str] = None

    @property
    def start_minute(self) -> int:
        return self.window.start_minute

    @property
    def label(self) -> str:
        """Start time as ``HH:MM``."""
        return format_minute(self.window.start_minute)

    def to_dict(self) -> dict:
        """Serializable representation for UI and HTTP layers."""
        return {
            "local_time": self.label,
            "start_minute": self.window.start_minute,
            "end_minute": self.window.end_minute,
            "available": self.available,
            "reason": self.reason.value,
        }


@dataclass(frozen=True)
class SlotSummary:
    """Counts of available and unavailable slots for a day."""
    available: int
    unavailable: int

    @classmethod
    def from_verdicts(cls, verdicts: List[SlotVerdict]) -> "SlotSummary":
        available = sum(1 for verdict in verdicts if verdict.available)
        return cls(available=available, unavailable=len(verdicts) - available)

    @property
    def total(self) -> int:
        return self.available + self.unavailable


@dataclass(frozen=True)
class LayoutEntry:
    """A booking reduced to its extent in real minutes since local midnight, for layout."""
    booking_id: str
    start_minute: int
    end_minute: int


@dataclass(frozen=True)
class LayoutAssignment:
    """
    Rendering lane of a booking within a day view.
    """
    booking_id: str
    column_index: int
    total_columns: int

    def width_fraction(self) -> float:
        """Share of the horizontal space the booking should take."""
        return 1 / self.total_columns

    def left_fraction(self) -> float:
        """Horizontal offset of the booking as a share of the full width."""
        return self.column_index / self.total_columns

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "column_index": self.column_index,
            "total_columns": self.total_columns,
        }
