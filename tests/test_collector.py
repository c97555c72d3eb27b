"""Tests for ArrivalCounter."""

import pytest

from ccarrivals.core.contact import Contact
from ccarrivals.results.collector import ArrivalCounter


def contact(type_id, t):
    return Contact(type_id=type_id, arrival_time=t)


class TestArrivalCounter:
    """Test per-period arrival counting."""

    def test_counts_by_period(self, layout):
        """Contacts land in the period of their arrival time."""
        counter = ArrivalCounter(layout)
        for t in (5.0, 12.0, 15.0, 35.0, 50.0):
            counter(contact(0, t))
        assert counter.matrix().tolist() == [[1, 2, 0, 1, 1]]
        assert counter.main_period_counts().tolist() == [2, 0, 1]
        assert counter.total == 5

    def test_several_types(self, layout):
        """An aggregate row follows the per-type rows."""
        counter = ArrivalCounter(layout, num_types=2)
        counter.count(contact(0, 12.0))
        counter.count(contact(1, 12.0))
        counter.count(contact(1, 25.0))
        m = counter.matrix()
        assert m.shape == (3, 5)
        assert m[2].tolist() == [0, 2, 1, 0, 0]
        assert counter.main_period_counts(type_id=1).tolist() == [1, 1, 0]

        frame = counter.as_frame()
        assert list(frame.index) == ["0", "1", "all"]
        assert frame.loc["all", 1] == 2

    def test_unknown_type(self, layout):
        counter = ArrivalCounter(layout, num_types=1)
        with pytest.raises(ValueError, match="outside"):
            counter.count(contact(3, 1.0))

    def test_init_clears(self, layout):
        counter = ArrivalCounter(layout)
        counter.count(contact(0, 12.0))
        counter.init()
        assert counter.total == 0
        assert counter.matrix().sum() == 0

    def test_works_with_schedule(self, schedule):
        counter = ArrivalCounter(schedule)
        counter.count(contact(0, 22.0))
        assert counter.main_period_counts().tolist() == [0, 1, 0]
