"""
Core business logic for enumerating bookable slots of a day.

Pure domain logic: no datastore, no clock access beyond an optional ``now``
argument, no I/O.
"""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Tuple

from .conflicts import find_conflict, minute_ranges_overlap, occupies_time
from .exceptions import InvalidQuery
from .models import (
    BlockedWindow,
    Booking,
    BusinessCalendarConfig,
    SlotReason,
    SlotVerdict,
    TimeWindow,
)
from .timezone import TimezoneNormalizer

logger = logging.getLogger(__name__)


class SlotGenerator:
    """
    Produces ordered availability verdicts for one resource on one day.

    Algorithm:
    1. Resolve the effective opening hours for the weekday
    2. Enumerate start points every ``slot_granularity_minutes`` while the
       requested duration still fits before closing
    3. Check each candidate, in order of precedence, against the break
       window, the current time and the occupied intervals

    Overlaps are measured in real minutes elapsed since local midnight
    (see ``TimezoneNormalizer.elapsed_minutes``), which equals the wall clock
    except on DST transition days.
    """

    def __init__(self, config: BusinessCalendarConfig, normalizer: TimezoneNormalizer):
        self.config = config
        self.normalizer = normalizer

    def generate(
        self,
        local_date: date,
        bookings: Iterable[Booking] = (),
        duration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
        blocked_windows: Iterable[BlockedWindow] = (),
    ) -> List[SlotVerdict]:
        """
        Compute the verdict of every candidate slot on ``local_date``.

        Args:
            local_date: Calendar day in the business timezone
            bookings: The resource's bookings intersecting the day
            duration_minutes: Requested service duration, one granularity unit if absent
            now: Current instant, used to flag slots that already started
            blocked_windows: Ad-hoc blocks already filtered to the resource

        Returns:
            Verdicts ordered by ascending start time. Start times that do not
            exist on the local clock (a DST spring-forward gap) are left out,
            so the list may be shorter than the grid on such days. Durations
            are real minutes: on a DST day a slot's ``window.end_minute`` is
            the wall-clock time at which it actually ends.

        Raises:
            InvalidQuery: If the duration is not positive
        """
        weekday = local_date.weekday()
        if not self.config.is_open_on(weekday):
            return []

        config = self.config.for_weekday(weekday)
        duration = config.slot_granularity_minutes if duration_minutes is None else duration_minutes
        if duration <= 0:
            raise InvalidQuery(f"duration_minutes must be greater than zero, got {duration}")

        occupied = self._occupied_ranges(local_date, config, bookings, blocked_windows)
        break_range = self._wall_range(local_date, config.break_window)
        close_elapsed = self.normalizer.elapsed_minutes(
            local_date, self.normalizer.wall_instant(local_date, config.close_minute)
        )
        today, now_minute = self.normalizer.now_local(now)
        is_today = local_date == today

        verdicts: List[SlotVerdict] = []
        last_start = config.close_minute - duration

        for start in range(config.open_minute, last_start + 1, config.slot_granularity_minutes):
            if not self.normalizer.exists(local_date, start):
                logger.debug("Skipping %s minute %d: inside DST gap", local_date, start)
                continue

            start_instant = self.normalizer.to_utc(local_date, start)
            elapsed_start = self.normalizer.elapsed_minutes(local_date, start_instant)
            elapsed_end = elapsed_start + duration
            if elapsed_end > close_elapsed:
                logger.debug("Skipping %s minute %d: runs past closing time", local_date, start)
                continue

            wall_end = self.normalizer.minutes_since_midnight(
                local_date, start_instant.add(minutes=duration)
            )
            if wall_end <= start:
                # The repeated hour of a fall-back day.
                wall_end = start + duration
            candidate = TimeWindow(start_minute=start, end_minute=wall_end)

            verdicts.append(
                self._evaluate(
                    candidate,
                    (elapsed_start, elapsed_end),
                    break_range,
                    occupied,
                    now_minute if is_today else None,
                )
            )

        return verdicts

    @staticmethod
    def _evaluate(
        candidate: TimeWindow,
        elapsed: Tuple[int, int],
        break_range: Optional[Tuple[int, int]],
        occupied: Sequence[Tuple[str, int, int]],
        now_minute: Optional[int],
    ) -> SlotVerdict:
        elapsed_start, elapsed_end = elapsed
        if break_range is not None and minute_ranges_overlap(elapsed_start, elapsed_end, *break_range):
            return SlotVerdict(window=candidate, available=False, reason=SlotReason.IN_BREAK)

        # A slot starting at the current minute has already started.
        if now_minute is not None and candidate.start_minute <= now_minute:
            return SlotVerdict(window=candidate, available=False, reason=SlotReason.ALREADY_PASSED)

        conflicting_id = find_conflict(elapsed_start, elapsed_end, occupied)
        if conflicting_id is not None:
            return SlotVerdict(
                window=candidate,
                available=False,
                reason=SlotReason.CONFLICT,
                conflicting_id=conflicting_id,
            )

        return SlotVerdict(window=candidate, available=True)

    def _wall_range(self, local_date: date, window: Optional[TimeWindow]) -> Optional[Tuple[int, int]]:
        """Elapsed-minute extent of a wall-clock window on ``local_date``."""
        if window is None:
            return None
        start = self.normalizer.wall_instant(local_date, window.start_minute)
        end = self.normalizer.wall_instant(local_date, window.end_minute)
        return (
            self.normalizer.elapsed_minutes(local_date, start),
            self.normalizer.elapsed_minutes(local_date, end),
        )

    def _occupied_ranges(
        self,
        local_date: date,
        config: BusinessCalendarConfig,
        bookings: Iterable[Booking],
        blocked_windows: Iterable[BlockedWindow],
    ) -> List[Tuple[str, int, int]]:
        """
        Project active bookings and blocks onto the day's elapsed minutes.

        Bookings keep their real duration, so one spanning a DST jump covers
        the right wall-clock slots. Overlapping bookings are kept as they are;
        they simply make more candidates conflict.
        """
        occupied: List[Tuple[str, int, int]] = []

        for booking in bookings:
            if not occupies_time(booking):
                continue

            duration = booking.duration_minutes
            if duration <= 0:
                logger.debug(
                    "Booking %s has duration %s, assuming %d minutes",
                    booking.id, duration, config.slot_granularity_minutes,
                )
                duration = config.slot_granularity_minutes

            start = self.normalizer.elapsed_minutes(local_date, booking.start_instant)
            occupied.append((booking.id, start, start + duration))

        for block in blocked_windows:
            if block.date != local_date:
                continue
            start, end = self._wall_range(local_date, block.window)
            occupied.append((f"block:{block.window}", start, end))

        occupied.sort(key=lambda item: item[1])
        return occupied
