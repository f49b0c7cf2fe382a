from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from .allocations import build_allocation_periods
from .cache import MemoryCache, calculation_key
from .capacity import CapacityResult, aggregate_capacity
from .demand import DemandResult, aggregate_demand
from .models import PlanningConfig, Scenario
from .periods import map_date_range_to_periods, span_of
from .store import EntityStore

logger = logging.getLogger(__name__)

EPSILON = 1e-6

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}


def shortage_severity(shortage_pct: float) -> str:
    if shortage_pct >= 50:
        return "critical"
    if shortage_pct >= 30:
        return "high"
    if shortage_pct >= 15:
        return "medium"
    return "low"


def utilization_pct(demand: float, capacity: float) -> float:
    if capacity > EPSILON:
        return round(demand / capacity * 100, 2)
    return 100.0 if demand > EPSILON else 0.0


def binding_constraints(
    demand_by_skill: Dict[str, float], capacity_by_skill: Dict[str, float]
) -> List[Dict[str, object]]:
    """Skills whose demand exceeds supply, largest deficit first."""
    rows = []
    for skill in set(demand_by_skill) | set(capacity_by_skill):
        deficit = demand_by_skill.get(skill, 0.0) - capacity_by_skill.get(skill, 0.0)
        if deficit > EPSILON:
            rows.append({"skill": skill, "deficit": round(deficit, 2)})
    rows.sort(key=lambda row: (-float(row["deficit"]), str(row["skill"])))
    return rows


@dataclass(frozen=True)
class CalculatorResult:
    scenario_id: str
    period_ids: Tuple[str, ...]
    demand: List[Dict[str, object]]
    capacity: List[Dict[str, object]]
    gap_analysis: List[Dict[str, object]]
    issues: Dict[str, List[Dict[str, object]]]
    binding_constraints: List[Dict[str, object]]
    summary: Dict[str, object]
    calculated_at: str
    org_scope: Optional[str] = None
    cache_hit: bool = False
    demand_breakdown: List[Dict[str, object]] = field(default_factory=list)
    capacity_breakdown: List[Dict[str, object]] = field(default_factory=list)

    def gap_for(self, period_id: str, skill: str) -> Optional[Dict[str, object]]:
        for row in self.gap_analysis:
            if row["periodId"] == period_id and row["skill"] == skill:
                return row
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "scenarioId": self.scenario_id,
            "periodIds": list(self.period_ids),
            "orgScope": self.org_scope,
            "demandBySkillPeriod": self.demand,
            "capacityBySkillPeriod": self.capacity,
            "gapAnalysis": self.gap_analysis,
            "issues": self.issues,
            "bindingConstraints": self.binding_constraints,
            "summary": self.summary,
            "demandBreakdown": self.demand_breakdown,
            "capacityBreakdown": self.capacity_breakdown,
            "calculatedAt": self.calculated_at,
            "cacheHit": self.cache_hit,
        }


class ScenarioCalculator:
    """Demand vs capacity vs gap for one scenario, with a read-through cache."""

    def __init__(self, store: EntityStore, cache: MemoryCache, config: PlanningConfig) -> None:
        self.store = store
        self.cache = cache
        self.config = config

    def target_period_ids(self, scenario: Scenario) -> List[str]:
        start, end = span_of([self.store.get_period(pid) for pid in scenario.period_ids()])
        overlaps = map_date_range_to_periods(
            self.store.periods(), start, end, self.config.period_granularity
        )
        return [o.period_id for o in overlaps]

    def aggregate(
        self, scenario: Scenario, org_scope: Optional[str] = None, fresh: bool = False
    ) -> Tuple[List[str], DemandResult, CapacityResult]:
        """Run both aggregators for a scenario.

        ``fresh`` rebuilds AllocationPeriod hours from current employee data
        instead of reading the stored rows.
        """
        period_ids = self.target_period_ids(scenario)
        initiatives = {i.id: i for i in self.store.initiatives()}
        demand = aggregate_demand(scenario.priority_rankings, initiatives, period_ids)
        allocations = self.store.allocations_for_scenario(scenario.id)
        if fresh:
            rows = {
                a.id: tuple(build_allocation_periods(self.store, self.config, scenario, a))
                for a in allocations
            }
        else:
            rows = {a.id: self.store.allocation_periods(a.id) for a in allocations}
        capacity = aggregate_capacity(
            self.store.employees(), allocations, rows, period_ids, org_scope
        )
        return period_ids, demand, capacity

    def calculate(
        self, scenario_id: str, skip_cache: bool = False, org_scope: Optional[str] = None
    ) -> CalculatorResult:
        key = calculation_key(scenario_id, org_scope)
        if not skip_cache:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("calculator cache hit %s", key)
                return replace(cached, cache_hit=True)
        logger.debug("calculator cache miss %s", key)
        scenario = self.store.get_scenario(scenario_id)
        result = self._compute(scenario, org_scope)
        self.cache.setex(key, self.config.cache_ttl_seconds, result)
        return result

    def _compute(self, scenario: Scenario, org_scope: Optional[str]) -> CalculatorResult:
        period_ids, demand, capacity = self.aggregate(scenario, org_scope)
        labels = {pid: self.store.get_period(pid).label for pid in period_ids}
        order = {pid: idx for idx, pid in enumerate(period_ids)}
        cells = sorted(
            set(demand.cells) | set(capacity.cells),
            key=lambda cell: (order.get(cell[0], len(order)), cell[1]),
        )

        demand_rows: List[Dict[str, object]] = []
        capacity_rows: List[Dict[str, object]] = []
        gap_rows: List[Dict[str, object]] = []
        shortages: List[Dict[str, object]] = []
        for period_id, skill in cells:
            demand_hours = demand.hours(period_id, skill)
            capacity_hours = capacity.hours(period_id, skill)
            gap = capacity_hours - demand_hours
            label = labels.get(period_id, period_id)
            if (period_id, skill) in demand.cells:
                demand_rows.append(
                    {"periodId": period_id, "periodLabel": label, "skill": skill, "demandHours": round(demand_hours, 2)}
                )
            if (period_id, skill) in capacity.cells:
                capacity_rows.append(
                    {"periodId": period_id, "periodLabel": label, "skill": skill, "capacityHours": round(capacity_hours, 2)}
                )
            gap_rows.append(
                {
                    "periodId": period_id,
                    "periodLabel": label,
                    "skill": skill,
                    "demandHours": round(demand_hours, 2),
                    "capacityHours": round(capacity_hours, 2),
                    "gap": round(gap, 2),
                    "utilizationPct": utilization_pct(demand_hours, capacity_hours),
                }
            )
            if gap < -EPSILON:
                shortage_pct = -gap / demand_hours * 100 if demand_hours > EPSILON else 0.0
                shortages.append(
                    {
                        "periodId": period_id,
                        "skill": skill,
                        "demandHours": round(demand_hours, 2),
                        "capacityHours": round(capacity_hours, 2),
                        "shortageHours": round(-gap, 2),
                        "shortagePct": round(shortage_pct, 2),
                        "severity": shortage_severity(shortage_pct),
                        "affectedInitiatives": [
                            {"initiativeId": row["initiative_id"], "title": row["title"], "demandHours": row["hours"]}
                            for row in demand.breakdown
                            if row["period_id"] == period_id and row["skill"] == skill
                        ],
                    }
                )
        shortages.sort(key=lambda s: (SEVERITY_ORDER[str(s["severity"])], -float(s["shortagePct"])))

        issues = {
            "shortages": shortages,
            "overallocations": self._overallocations(capacity),
            "skillMismatches": self._skill_mismatches(scenario),
        }
        total_demand = demand.total_hours()
        total_capacity = capacity.total_hours()
        summary = {
            "totalDemandHours": round(total_demand, 2),
            "totalCapacityHours": round(total_capacity, 2),
            "overallGap": round(total_capacity - total_demand, 2),
            "overallUtilizationPct": utilization_pct(total_demand, total_capacity),
            "totalShortages": len(shortages),
            "totalOverallocations": len(issues["overallocations"]),
            "totalSkillMismatches": len(issues["skillMismatches"]),
            "periodCount": len(period_ids),
            "skillCount": len({skill for _, skill in cells}),
            "employeeCount": len({str(row["employee_id"]) for row in capacity.breakdown}),
            "initiativeCount": len(scenario.priority_rankings),
        }
        return CalculatorResult(
            scenario_id=scenario.id,
            period_ids=tuple(period_ids),
            demand=demand_rows,
            capacity=capacity_rows,
            gap_analysis=gap_rows,
            issues=issues,
            binding_constraints=binding_constraints(demand.by_skill(), capacity.by_skill()),
            summary=summary,
            calculated_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            org_scope=org_scope,
            demand_breakdown=list(demand.breakdown),
            capacity_breakdown=list(capacity.breakdown),
        )

    def _overallocations(self, capacity: CapacityResult) -> List[Dict[str, object]]:
        rows = []
        for (employee_id, period_id), pct in capacity.load_pct.items():
            if pct <= 100 + EPSILON:
                continue
            employee = self.store.find_employee(employee_id)
            rows.append(
                {
                    "employeeId": employee_id,
                    "employeeName": employee.name if employee else employee_id,
                    "periodId": period_id,
                    "totalPct": round(pct, 2),
                    "overBy": round(pct - 100, 2),
                }
            )
        rows.sort(key=lambda row: -float(row["overBy"]))
        return rows

    def _skill_mismatches(self, scenario: Scenario) -> List[Dict[str, object]]:
        rows = []
        for allocation in self.store.allocations_for_scenario(scenario.id):
            if allocation.initiative_id is None:
                continue
            initiative = self.store.find_initiative(allocation.initiative_id)
            employee = self.store.find_employee(allocation.employee_id)
            if initiative is None or employee is None:
                continue
            required = initiative.required_skills()
            missing = [skill for skill in required if employee.proficiency(skill) is None]
            if required and missing:
                rows.append(
                    {
                        "employeeId": employee.id,
                        "employeeName": employee.name,
                        "initiativeId": initiative.id,
                        "initiativeTitle": initiative.title,
                        "requiredSkills": list(required),
                        "missingSkills": missing,
                    }
                )
        return rows
