from datetime import date

import pytest

from capacity_planner.errors import ValidationError
from capacity_planner.models import Employee
from capacity_planner.periods import (
    generate_periods,
    map_date_range_to_periods,
    span_of,
    weekly_availability,
)


@pytest.fixture()
def periods():
    return generate_periods(2026, 2026)


def _by_id(periods):
    return {p.id: p for p in periods}


class TestGeneratePeriods:
    def test_counts_per_granularity(self, periods):
        types = [p.type for p in periods]
        assert types.count("QUARTER") == 4
        assert types.count("MONTH") == 12
        assert types.count("WEEK") == 53  # 2026 is a 53-week ISO year

    def test_quarter_bounds(self, periods):
        q1 = _by_id(periods)["2026-Q1"]
        assert q1.start_date == date(2026, 1, 1)
        assert q1.end_date == date(2026, 3, 31)
        assert q1.days() == 90
        assert q1.weeks() == 13

    def test_month_parent_is_quarter(self, periods):
        assert _by_id(periods)["2026-05"].parent_id == "2026-Q2"

    def test_rejects_reversed_years(self):
        with pytest.raises(ValidationError):
            generate_periods(2027, 2026)


class TestMapDateRange:
    def test_full_quarter_ratio_is_one(self, periods):
        overlaps = map_date_range_to_periods(periods, date(2026, 1, 1), date(2026, 3, 31))
        assert [(o.period_id, o.overlap_ratio) for o in overlaps] == [("2026-Q1", 1.0)]

    def test_single_day_is_inclusive(self, periods):
        overlaps = map_date_range_to_periods(periods, date(2026, 2, 10), date(2026, 2, 10))
        assert len(overlaps) == 1
        assert overlaps[0].overlap_ratio == pytest.approx(1 / 90)

    def test_range_crossing_quarters_is_sorted(self, periods):
        overlaps = map_date_range_to_periods(periods, date(2026, 3, 17), date(2026, 4, 15))
        assert [o.period_id for o in overlaps] == ["2026-Q1", "2026-Q2"]
        assert overlaps[0].overlap_ratio == pytest.approx(15 / 90)
        assert overlaps[1].overlap_ratio == pytest.approx(15 / 91)

    def test_month_granularity(self, periods):
        overlaps = map_date_range_to_periods(periods, date(2026, 1, 16), date(2026, 2, 28), "MONTH")
        assert [o.period_id for o in overlaps] == ["2026-01", "2026-02"]
        assert overlaps[0].overlap_ratio == pytest.approx(16 / 31)
        assert overlaps[1].overlap_ratio == 1.0

    def test_outside_catalogue_is_empty(self, periods):
        assert map_date_range_to_periods(periods, date(2030, 1, 1), date(2030, 2, 1)) == []

    def test_start_after_end_rejected(self, periods):
        with pytest.raises(ValidationError):
            map_date_range_to_periods(periods, date(2026, 5, 1), date(2026, 4, 1))

    def test_unknown_granularity_rejected(self, periods):
        with pytest.raises(ValidationError):
            map_date_range_to_periods(periods, date(2026, 1, 1), date(2026, 2, 1), "YEAR")


def test_span_of_requires_periods():
    with pytest.raises(ValidationError):
        span_of([])


def test_weekly_availability_uses_calendar_override(periods):
    employee = Employee("e1", "E", 40, capacity_calendar={"2026-W02": 16.0})
    rows = weekly_availability(employee, periods, date(2026, 1, 5), date(2026, 1, 18))
    assert [r["period_id"] for r in rows] == ["2026-W02", "2026-W03"]
    assert rows[0]["hours_available"] == 16.0
    assert rows[1]["hours_available"] == 40.0
