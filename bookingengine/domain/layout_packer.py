"""
Column packing of a day's bookings for side-by-side calendar rendering.
"""

from typing import Dict, List, Sequence

from .conflicts import minute_ranges_overlap
from .models import LayoutAssignment, LayoutEntry


class CalendarLayoutPacker:
    """
    Assigns each booking a column and the number of columns to share width with.

    Algorithm:
    1. Sort entries by start time, keeping input order for equal starts
    2. Place each entry in the first column whose last booking has ended,
       opening a new column when none has
    3. For every entry, count the distinct columns used by the entries that
       intersect it (itself included)

    Step 3 makes a booking that only overlaps one neighbour render at half
    width even when the day as a whole needed more columns.
    """

    def pack(self, entries: Sequence[LayoutEntry]) -> List[LayoutAssignment]:
        """
        Compute layout assignments.

        Returns:
            One assignment per entry, in the order the entries were placed
            (ascending start time)
        """
        ordered = sorted(
            enumerate(entries),
            key=lambda item: (item[1].start_minute, item[0]),
        )

        column_ends: List[int] = []
        columns: List[List[LayoutEntry]] = []
        column_of: Dict[int, int] = {}

        for position, entry in ordered:
            column_index = self._first_free_column(column_ends, entry.start_minute)
            if column_index is None:
                column_ends.append(entry.end_minute)
                columns.append([entry])
                column_index = len(columns) - 1
            else:
                column_ends[column_index] = entry.end_minute
                columns[column_index].append(entry)
            column_of[position] = column_index

        assignments: List[LayoutAssignment] = []
        for position, entry in ordered:
            active_columns = {
                index
                for index, column in enumerate(columns)
                if any(
                    minute_ranges_overlap(
                        entry.start_minute, entry.end_minute,
                        other.start_minute, other.end_minute,
                    )
                    for other in column
                )
            }
            assignments.append(
                LayoutAssignment(
                    booking_id=entry.booking_id,
                    column_index=column_of[position],
                    total_columns=max(1, len(active_columns)),
                )
            )

        return assignments

    @staticmethod
    def _first_free_column(column_ends: List[int], start_minute: int):
        for index, end_minute in enumerate(column_ends):
            if end_minute <= start_minute:
                return index
        return None
