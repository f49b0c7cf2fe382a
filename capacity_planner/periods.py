from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from dateutil.relativedelta import relativedelta

from .errors import ValidationError
from .models import Employee, Period, PeriodType, PERIOD_TYPES


@dataclass(frozen=True)
class PeriodOverlap:
    period_id: str
    overlap_ratio: float


def quarter_id(year: int, quarter: int) -> str:
    return f"{year}-Q{quarter}"


def month_id(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def week_id(iso_year: int, week: int) -> str:
    return f"{iso_year}-W{week:02d}"


def _quarters(year: int) -> List[Period]:
    periods: List[Period] = []
    for quarter in range(1, 5):
        start = date(year, 3 * (quarter - 1) + 1, 1)
        end = start + relativedelta(months=3, days=-1)
        pid = quarter_id(year, quarter)
        periods.append(Period(pid, "QUARTER", start, end, pid, year, quarter))
    return periods


def _months(year: int) -> List[Period]:
    periods: List[Period] = []
    for month in range(1, 13):
        start = date(year, month, 1)
        end = start + relativedelta(months=1, days=-1)
        pid = month_id(year, month)
        parent = quarter_id(year, (month - 1) // 3 + 1)
        periods.append(Period(pid, "MONTH", start, end, pid, year, month, parent))
    return periods


def _weeks(year: int) -> List[Period]:
    periods: List[Period] = []
    monday = date.fromisocalendar(year, 1, 1)
    while True:
        iso_year, week, _ = monday.isocalendar()
        if iso_year != year:
            break
        # ISO weeks belong to the month holding their Thursday
        thursday = monday + timedelta(days=3)
        pid = week_id(iso_year, week)
        periods.append(
            Period(
                pid,
                "WEEK",
                monday,
                monday + timedelta(days=6),
                pid,
                iso_year,
                week,
                month_id(thursday.year, thursday.month),
            )
        )
        monday += timedelta(days=7)
    return periods


def generate_periods(start_year: int, end_year: int) -> List[Period]:
    """Build the quarter, month and ISO-week catalogue for the given years."""
    if end_year < start_year:
        raise ValidationError("end_year must not be earlier than start_year")
    periods: List[Period] = []
    for year in range(start_year, end_year + 1):
        periods.extend(_quarters(year))
        periods.extend(_months(year))
        periods.extend(_weeks(year))
    return periods


def map_date_range_to_periods(
    periods: Iterable[Period],
    start: date,
    end: date,
    granularity: PeriodType = "QUARTER",
) -> List[PeriodOverlap]:
    """Return every period of ``granularity`` overlapping [start, end].

    The overlap ratio counts days inclusively on both ends and is clamped to
    [0, 1]. A range outside every known period maps to an empty list.
    """
    if granularity not in PERIOD_TYPES:
        raise ValidationError(f"unsupported period granularity '{granularity}'")
    if start > end:
        raise ValidationError("start date must not be after end date", {"start": str(start), "end": str(end)})
    overlaps: List[PeriodOverlap] = []
    candidates = sorted(
        (p for p in periods if p.type == granularity),
        key=lambda p: p.start_date,
    )
    for period in candidates:
        overlap_start = max(start, period.start_date)
        overlap_end = min(end, period.end_date)
        if overlap_start > overlap_end:
            continue
        overlap_days = (overlap_end - overlap_start).days + 1
        ratio = min(1.0, max(0.0, overlap_days / period.days()))
        overlaps.append(PeriodOverlap(period.id, ratio))
    return overlaps


def span_of(periods: Sequence[Period]) -> Tuple[date, date]:
    if not periods:
        raise ValidationError("at least one period is required")
    return min(p.start_date for p in periods), max(p.end_date for p in periods)


def weekly_availability(
    employee: Employee,
    periods: Iterable[Period],
    start: date,
    end: date,
) -> List[Dict[str, object]]:
    """Per-week available hours for an employee between two dates.

    Weeks cut by the range are prorated; a capacity calendar entry for the
    week replaces the weekly baseline.
    """
    by_id: Mapping[str, Period] = {p.id: p for p in periods}
    rows: List[Dict[str, object]] = []
    for overlap in map_date_range_to_periods(by_id.values(), start, end, "WEEK"):
        week = by_id[overlap.period_id]
        override: Optional[float] = employee.capacity_calendar.get(week.id)
        base = float(override) if override is not None else employee.hours_per_week
        rows.append(
            {
                "period_id": week.id,
                "label": week.label,
                "start_date": week.start_date.isoformat(),
                "overlap_ratio": overlap.overlap_ratio,
                "hours_available": round(base * overlap.overlap_ratio, 2),
            }
        )
    return rows
