"""
Tests for calendar column packing.
"""

import itertools

import pytest

from bookingengine.domain.conflicts import minute_ranges_overlap
from bookingengine.domain.layout_packer import CalendarLayoutPacker
from bookingengine.domain.models import LayoutEntry


def _entry(booking_id, start, end):
    return LayoutEntry(booking_id=booking_id, start_minute=start, end_minute=end)


def _by_id(assignments):
    return {a.booking_id: a for a in assignments}


@pytest.fixture
def packer():
    return CalendarLayoutPacker()


class TestCalendarLayoutPacker:
    """Tests for CalendarLayoutPacker."""

    def test_empty(self, packer):
        assert packer.pack([]) == []

    def test_single_booking_full_width(self, packer):
        result = packer.pack([_entry("a", 540, 570)])

        assert result[0].column_index == 0
        assert result[0].total_columns == 1
        assert result[0].width_fraction() == 1.0

    def test_chain_of_overlaps(self, packer):
        """
        A 09:00-09:30, B 09:15-09:45, C 09:40-10:00.

        C reuses A's column. It still overlaps B, so it shares the row
        with two columns.
        """
        result = _by_id(packer.pack([
            _entry("A", 540, 570),
            _entry("B", 555, 585),
            _entry("C", 580, 600),
        ]))

        assert [result[k].column_index for k in "ABC"] == [0, 1, 0]
        assert [result[k].total_columns for k in "ABC"] == [2, 2, 2]

    def test_booking_after_overlap_gets_full_width(self, packer):
        """C starting when B ends overlaps nothing."""
        result = _by_id(packer.pack([
            _entry("A", 540, 570),
            _entry("B", 555, 585),
            _entry("C", 585, 605),
        ]))

        assert [result[k].column_index for k in "ABC"] == [0, 1, 0]
        assert [result[k].total_columns for k in "ABC"] == [2, 2, 1]

    def test_back_to_back_share_column(self, packer):
        result = packer.pack([_entry("a", 540, 600), _entry("b", 600, 660)])

        assert [a.column_index for a in result] == [0, 0]
        assert [a.total_columns for a in result] == [1, 1]

    def test_three_way_overlap(self, packer):
        result = packer.pack([_entry(name, 540, 600) for name in "xyz"])

        assert [a.column_index for a in result] == [0, 1, 2]
        assert all(a.total_columns == 3 for a in result)

    def test_equal_starts_keep_input_order(self, packer):
        result = packer.pack([_entry("second", 540, 560), _entry("first", 530, 600), _entry("third", 540, 600)])

        assert [a.booking_id for a in result] == ["first", "second", "third"]
        assert [a.column_index for a in result] == [0, 1, 2]

    def test_input_order_does_not_matter(self, packer):
        entries = [
            _entry("a", 540, 600),
            _entry("b", 560, 620),
            _entry("c", 610, 640),
            _entry("d", 700, 730),
        ]
        expected = _by_id(packer.pack(entries))

        for permutation in itertools.permutations(entries):
            assert _by_id(packer.pack(list(permutation))) == expected

    def test_layout_invariants(self, packer):
        """Overlapping bookings never share a column and columns stay in range."""
        entries = [
            _entry("e1", 480, 540),
            _entry("e2", 500, 520),
            _entry("e3", 510, 600),
            _entry("e4", 530, 560),
            _entry("e5", 545, 575),
            _entry("e6", 600, 660),
            _entry("e7", 620, 630),
        ]
        by_id = {e.booking_id: e for e in entries}
        result = packer.pack(entries)

        assert len(result) == len(entries)
        for assignment in result:
            assert 1 <= assignment.total_columns
            assert 0 <= assignment.column_index < assignment.total_columns

        for first, second in itertools.combinations(result, 2):
            a, b = by_id[first.booking_id], by_id[second.booking_id]
            if minute_ranges_overlap(a.start_minute, a.end_minute, b.start_minute, b.end_minute):
                assert first.column_index != second.column_index
