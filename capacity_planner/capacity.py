from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import Allocation, AllocationPeriod, Employee, MAX_PROFICIENCY, Skill

Cell = Tuple[str, Skill]


@dataclass(frozen=True)
class CapacityResult:
    """Effective (proficiency-weighted) hours keyed by (period id, skill)."""

    cells: Dict[Cell, float] = field(default_factory=dict)
    breakdown: List[Dict[str, object]] = field(default_factory=list)
    # (employee id, period id) -> summed percentage weighted by overlap
    load_pct: Dict[Tuple[str, str], float] = field(default_factory=dict)

    def total_hours(self) -> float:
        return sum(self.cells.values())

    def hours(self, period_id: str, skill: Skill) -> float:
        return self.cells.get((period_id, skill), 0.0)

    def by_skill(self) -> Dict[Skill, float]:
        totals: Dict[Skill, float] = {}
        for (_, skill), hours in self.cells.items():
            totals[skill] = totals.get(skill, 0.0) + hours
        return totals


def aggregate_capacity(
    employees: Iterable[Employee],
    allocations: Iterable[Allocation],
    allocation_periods: Mapping[str, Sequence[AllocationPeriod]],
    period_ids: Sequence[str],
    org_scope: Optional[str] = None,
) -> CapacityResult:
    """Sum allocated hours x ramp x proficiency/5 by (period, skill).

    Only AllocationPeriod rows count: an employee without a row for a period
    adds nothing there, whatever their weekly baseline.
    """
    wanted = set(period_ids)
    staff: Dict[str, Employee] = {e.id: e for e in employees if e.in_org_scope(org_scope)}
    allocated: Dict[Tuple[str, str], float] = {}
    load_pct: Dict[Tuple[str, str], float] = {}
    for allocation in allocations:
        if allocation.employee_id not in staff:
            continue
        for row in allocation_periods.get(allocation.id, ()):
            if row.period_id not in wanted:
                continue
            key = (allocation.employee_id, row.period_id)
            allocated[key] = allocated.get(key, 0.0) + row.hours_in_period * row.ramp_modifier
            load_pct[key] = load_pct.get(key, 0.0) + allocation.percentage * row.overlap_ratio

    cells: Dict[Cell, float] = {}
    breakdown: List[Dict[str, object]] = []
    for (employee_id, period_id), hours in allocated.items():
        employee = staff[employee_id]
        for skill in employee.skills:
            effective = hours * skill.proficiency / MAX_PROFICIENCY
            cells[(period_id, skill.name)] = cells.get((period_id, skill.name), 0.0) + effective
            breakdown.append(
                {
                    "employee_id": employee.id,
                    "name": employee.name,
                    "period_id": period_id,
                    "skill": skill.name,
                    "proficiency": skill.proficiency,
                    "allocated_hours": hours,
                    "effective_hours": effective,
                }
            )
    return CapacityResult(cells=cells, breakdown=breakdown, load_pct=load_pct)
