"""
Conversion between UTC instants and the business's local wall clock.
"""

from datetime import date, datetime
from typing import Tuple

import pendulum
from pendulum import DateTime

from .exceptions import AmbiguousLocalTime, InvalidConfig
from .models import MINUTES_PER_DAY


class TimezoneNormalizer:
    """
    Anchors "which day / which minute is it" to a fixed civil timezone.

    Storage and external collaborators speak UTC; everything downstream of this
    class speaks local ``(date, minute_of_day)`` pairs.
    """

    def __init__(self, timezone: str = "America/Sao_Paulo"):
        try:
            self._tz = pendulum.timezone(timezone)
        except (ValueError, KeyError) as exc:
            raise InvalidConfig(f"Unknown timezone '{timezone}'") from exc
        self.timezone = timezone

    def to_local(self, utc_instant: datetime) -> Tuple[date, int]:
        """
        Convert an instant to its local date and minute of day.

        Naive datetimes are interpreted as UTC, which is how the datastore
        hands them out.
        """
        local = self.localize(utc_instant)
        return local.date(), local.hour * 60 + local.minute

    def to_utc(self, local_date: date, minute_of_day: int) -> DateTime:
        """
        Convert a local wall-clock value to a UTC instant.

        A wall-clock value repeated by a fall-back transition resolves to its
        first occurrence.

        Raises:
            AmbiguousLocalTime: If the value falls inside a spring-forward gap
        """
        if not 0 <= minute_of_day < MINUTES_PER_DAY:
            raise ValueError(f"minute_of_day must be between 0 and 1439, got {minute_of_day}")

        hour, minute = divmod(minute_of_day, 60)
        local = pendulum.datetime(
            local_date.year,
            local_date.month,
            local_date.day,
            hour,
            minute,
            tz=self._tz,
            fold=0,
        )
        utc = local.in_timezone("UTC")

        # Wall-clock values inside a gap do not survive the round trip.
        if self.to_local(utc) != (local_date, minute_of_day):
            raise AmbiguousLocalTime(local_date, minute_of_day, self.timezone)

        return utc

    def exists(self, local_date: date, minute_of_day: int) -> bool:
        """Check whether a wall-clock value exists on the given date."""
        try:
            self.to_utc(local_date, minute_of_day)
        except AmbiguousLocalTime:
            return False
        return True

    def localize(self, instant: datetime) -> DateTime:
        """Return the instant expressed in the business timezone."""
        return pendulum.instance(instant, tz="UTC").in_timezone(self._tz)

    def now_local(self, now: datetime | None = None) -> Tuple[date, int]:
        """Local date and minute of day of ``now`` (defaults to the current instant)."""
        return self.to_local(now if now is not None else pendulum.now("UTC"))

    def day_bounds_utc(self, local_date: date) -> Tuple[DateTime, DateTime]:
        """
        UTC instants delimiting the local calendar day ``[start, end)``.

        Uses the local midnight of the day and of the next day, so days that are
        23 or 25 hours long are handled.
        """
        start = pendulum.datetime(
            local_date.year, local_date.month, local_date.day, tz=self._tz
        )
        end = start.add(days=1)
        return start.in_timezone("UTC"), end.in_timezone("UTC")

    def wall_instant(self, local_date: date, minute_of_day: int) -> DateTime:
        """
        UTC instant at which the local clock first shows ``minute_of_day`` or later.

        Unlike :meth:`to_utc` this never raises: a value inside a DST gap maps
        to the end of the gap, and 1440 maps to the next local midnight.
        """
        _, day_end = self.day_bounds_utc(local_date)
        for minute in range(minute_of_day, MINUTES_PER_DAY):
            try:
                return self.to_utc(local_date, minute)
            except AmbiguousLocalTime:
                continue
        return day_end

    def elapsed_minutes(self, local_date: date, instant: datetime) -> int:
        """
        Real minutes between local midnight of ``local_date`` and ``instant``.

        Matches the wall clock on ordinary days; on DST days it keeps counting
        through the jump, so intervals measured on it have their true length.
        """
        day_start, _ = self.day_bounds_utc(local_date)
        seconds = (pendulum.instance(instant, tz="UTC") - day_start).total_seconds()
        return int(seconds // 60)

    def minutes_since_midnight(self, local_date: date, instant: datetime) -> int:
        """
        Local wall-clock position of ``instant`` relative to midnight of ``local_date``.

        The result is negative for instants on earlier days and 1440 or more
        for later days, which lets bookings crossing midnight be clipped to the
        requested day.
        """
        instant_date, minute = self.to_local(instant)
        return (instant_date - local_date).days * MINUTES_PER_DAY + minute
