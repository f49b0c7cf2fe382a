from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import NotFoundError, ValidationError
from .models import (
    Allocation,
    AllocationPeriod,
    BaselineSnapshot,
    DriftAlert,
    DriftThreshold,
    Employee,
    EmployeeDomainFamiliarity,
    Initiative,
    MAX_PROFICIENCY,
    Period,
    PeriodType,
    PriorityRanking,
    Scenario,
    SCENARIO_STATUSES,
    SCENARIO_TYPES,
    SkillPool,
    TokenDemand,
    TokenSupply,
)

_TABLES = (
    "_periods",
    "_employees",
    "_initiatives",
    "_scenarios",
    "_allocations",
    "_allocation_periods",
    "_familiarity",
    "_snapshots",
    "_alerts",
    "_thresholds",
    "_skill_pools",
    "_token_supply",
    "_token_demand",
)


class EntityStore:
    """In-memory repository with boundary validation and rollback transactions.

    Entities are frozen dataclasses so rows can be shared; snapshot payloads
    are deep-copied on the way in and out.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._periods: Dict[str, Period] = {}
        self._employees: Dict[str, Employee] = {}
        self._initiatives: Dict[str, Initiative] = {}
        self._scenarios: Dict[str, Scenario] = {}
        self._allocations: Dict[str, Allocation] = {}
        self._allocation_periods: Dict[str, Tuple[AllocationPeriod, ...]] = {}
        self._familiarity: Dict[Tuple[str, str], EmployeeDomainFamiliarity] = {}
        self._snapshots: Dict[str, BaselineSnapshot] = {}
        self._alerts: Dict[str, DriftAlert] = {}
        self._thresholds: Dict[Optional[str], DriftThreshold] = {}
        self._skill_pools: Dict[str, SkillPool] = {}
        self._token_supply: Dict[Tuple[str, str], TokenSupply] = {}
        self._token_demand: List[TokenDemand] = []

    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """All writes inside the block land together or not at all."""
        with self._lock:
            saved = {name: copy.copy(getattr(self, name)) for name in _TABLES}
            try:
                yield self
            except BaseException:
                for name, table in saved.items():
                    setattr(self, name, table)
                raise

    # periods

    def add_periods(self, periods: Sequence[Period]) -> None:
        with self._lock:
            for period in periods:
                if period.end_date < period.start_date:
                    raise ValidationError(f"period {period.id} ends before it starts")
                self._periods[period.id] = period

    def get_period(self, period_id: str) -> Period:
        period = self._periods.get(period_id)
        if period is None:
            raise NotFoundError("Period", period_id)
        return period

    def periods(self, period_type: Optional[PeriodType] = None) -> List[Period]:
        with self._lock:
            values = list(self._periods.values())
        if period_type is not None:
            values = [p for p in values if p.type == period_type]
        return sorted(values, key=lambda p: (p.start_date, p.type))

    # employees

    def put_employee(self, employee: Employee) -> Employee:
        if employee.hours_per_week < 0:
            raise ValidationError(f"hours_per_week must be non-negative for {employee.id}")
        for skill in employee.skills:
            if not 1 <= skill.proficiency <= MAX_PROFICIENCY:
                raise ValidationError(
                    f"proficiency for {skill.name} must be between 1 and {MAX_PROFICIENCY}",
                    {"employeeId": employee.id, "skill": skill.name},
                )
        with self._lock:
            self._employees[employee.id] = employee
        return employee

    def get_employee(self, employee_id: str) -> Employee:
        employee = self._employees.get(employee_id)
        if employee is None:
            raise NotFoundError("Employee", employee_id)
        return employee

    def find_employee(self, employee_id: str) -> Optional[Employee]:
        return self._employees.get(employee_id)

    def employees(self, active_only: bool = False) -> List[Employee]:
        with self._lock:
            values = list(self._employees.values())
        if active_only:
            values = [e for e in values if e.active]
        return values

    def remove_employee(self, employee_id: str) -> None:
        with self._lock:
            if self._employees.pop(employee_id, None) is None:
                raise NotFoundError("Employee", employee_id)

    # initiatives

    def put_initiative(self, initiative: Initiative) -> Initiative:
        for item in initiative.scope_items:
            for skill, hours in item.skill_demand:
                if hours < 0:
                    raise ValidationError(
                        f"skill demand for {skill} must be non-negative",
                        {"initiativeId": initiative.id, "scopeItemId": item.id},
                    )
            for period_id, fraction in item.period_distribution.items():
                if fraction < 0:
                    raise ValidationError(
                        f"distribution for {period_id} must be non-negative",
                        {"initiativeId": initiative.id, "scopeItemId": item.id},
                    )
        with self._lock:
            self._initiatives[initiative.id] = initiative
        return initiative

    def get_initiative(self, initiative_id: str) -> Initiative:
        initiative = self._initiatives.get(initiative_id)
        if initiative is None:
            raise NotFoundError("Initiative", initiative_id)
        return initiative

    def find_initiative(self, initiative_id: str) -> Optional[Initiative]:
        return self._initiatives.get(initiative_id)

    def initiatives(self) -> List[Initiative]:
        with self._lock:
            return list(self._initiatives.values())

    # scenarios

    def _validate_rankings(self, rankings: Sequence[PriorityRanking]) -> None:
        seen = set()
        for ranking in rankings:
            if not isinstance(ranking.rank, int) or ranking.rank < 1:
                raise ValidationError(
                    "rank must be a positive integer", {"initiativeId": ranking.initiative_id}
                )
            if ranking.initiative_id in seen:
                raise ValidationError(
                    "initiative ranked more than once", {"initiativeId": ranking.initiative_id}
                )
            if ranking.initiative_id not in self._initiatives:
                raise NotFoundError("Initiative", ranking.initiative_id)
            seen.add(ranking.initiative_id)

    def put_scenario(self, scenario: Scenario) -> Scenario:
        if scenario.status not in SCENARIO_STATUSES:
            raise ValidationError(f"unknown scenario status '{scenario.status}'")
        if scenario.scenario_type not in SCENARIO_TYPES:
            raise ValidationError(f"unknown scenario type '{scenario.scenario_type}'")
        with self._lock:
            for period_id in scenario.period_ids():
                self.get_period(period_id)
            self._validate_rankings(scenario.priority_rankings)
            self._scenarios[scenario.id] = scenario
        return scenario

    def get_scenario(self, scenario_id: str) -> Scenario:
        scenario = self._scenarios.get(scenario_id)
        if scenario is None:
            raise NotFoundError("Scenario", scenario_id)
        return scenario

    def scenarios(self) -> List[Scenario]:
        with self._lock:
            return list(self._scenarios.values())

    # allocations

    def put_allocation(self, allocation: Allocation) -> Allocation:
        if not 0 <= allocation.percentage <= 100:
            raise ValidationError(
                "percentage must be between 0 and 100", {"allocationId": allocation.id}
            )
        if allocation.start_date > allocation.end_date:
            raise ValidationError(
                "start date must not be after end date", {"allocationId": allocation.id}
            )
        with self._lock:
            self.get_scenario(allocation.scenario_id)
            self.get_employee(allocation.employee_id)
            if allocation.initiative_id is not None:
                self.get_initiative(allocation.initiative_id)
            self._allocations[allocation.id] = allocation
        return allocation

    def get_allocation(self, allocation_id: str) -> Allocation:
        allocation = self._allocations.get(allocation_id)
        if allocation is None:
            raise NotFoundError("Allocation", allocation_id)
        return allocation

    def allocations_for_scenario(self, scenario_id: str) -> List[Allocation]:
        with self._lock:
            return [a for a in self._allocations.values() if a.scenario_id == scenario_id]

    def delete_allocation(self, allocation_id: str) -> None:
        with self._lock:
            if self._allocations.pop(allocation_id, None) is None:
                raise NotFoundError("Allocation", allocation_id)
            self._allocation_periods.pop(allocation_id, None)

    def delete_scenario_allocations(self, scenario_id: str) -> int:
        with self._lock:
            doomed = [a.id for a in self._allocations.values() if a.scenario_id == scenario_id]
            for allocation_id in doomed:
                del self._allocations[allocation_id]
                self._allocation_periods.pop(allocation_id, None)
            return len(doomed)

    def replace_allocation_periods(
        self, allocation_id: str, rows: Sequence[AllocationPeriod]
    ) -> None:
        with self._lock:
            self.get_allocation(allocation_id)
            self._allocation_periods[allocation_id] = tuple(rows)

    def allocation_periods(self, allocation_id: str) -> Tuple[AllocationPeriod, ...]:
        with self._lock:
            return self._allocation_periods.get(allocation_id, ())

    # ramp inputs

    def put_familiarity(self, familiarity: EmployeeDomainFamiliarity) -> None:
        if not 0.0 <= familiarity.familiarity_level <= 1.0:
            raise ValidationError("familiarity_level must be in [0, 1]")
        with self._lock:
            key = (familiarity.employee_id, familiarity.initiative_id)
            self._familiarity[key] = familiarity

    def familiarity(self, employee_id: str, initiative_id: str) -> Optional[EmployeeDomainFamiliarity]:
        return self._familiarity.get((employee_id, initiative_id))

    # baselines

    def add_snapshot(self, snapshot: BaselineSnapshot) -> BaselineSnapshot:
        with self._lock:
            if snapshot.scenario_id in self._snapshots:
                raise ValidationError(
                    "baseline snapshot already exists", {"scenarioId": snapshot.scenario_id}
                )
            self._snapshots[snapshot.scenario_id] = copy.deepcopy(snapshot)
        return copy.deepcopy(snapshot)

    def find_snapshot(self, scenario_id: str) -> Optional[BaselineSnapshot]:
        with self._lock:
            snapshot = self._snapshots.get(scenario_id)
            return copy.deepcopy(snapshot) if snapshot else None

    def snapshots(self) -> List[BaselineSnapshot]:
        with self._lock:
            return [copy.deepcopy(s) for s in self._snapshots.values()]

    # drift

    def put_alert(self, alert: DriftAlert) -> DriftAlert:
        with self._lock:
            self._alerts[alert.id] = alert
        return alert

    def alerts(self) -> List[DriftAlert]:
        with self._lock:
            return list(self._alerts.values())

    def put_threshold(self, threshold: DriftThreshold) -> DriftThreshold:
        if threshold.capacity_threshold_pct < 0 or threshold.demand_threshold_pct < 0:
            raise ValidationError("drift thresholds must be non-negative")
        with self._lock:
            self._thresholds[threshold.period_id] = threshold
        return threshold

    def find_threshold(self, period_id: Optional[str]) -> Optional[DriftThreshold]:
        return self._thresholds.get(period_id)

    def thresholds(self) -> List[DriftThreshold]:
        with self._lock:
            return list(self._thresholds.values())

    # token ledger

    def put_skill_pool(self, pool: SkillPool) -> SkillPool:
        with self._lock:
            self._skill_pools[pool.id] = pool
        return pool

    def skill_pools(self, active_only: bool = True) -> List[SkillPool]:
        with self._lock:
            values = list(self._skill_pools.values())
        if active_only:
            values = [p for p in values if p.active]
        return sorted(values, key=lambda p: p.name)

    def put_token_supply(self, supply: TokenSupply) -> TokenSupply:
        if supply.tokens < 0:
            raise ValidationError("token supply must be non-negative")
        with self._lock:
            if supply.skill_pool_id not in self._skill_pools:
                raise NotFoundError("SkillPool", supply.skill_pool_id)
            self._token_supply[(supply.scenario_id, supply.skill_pool_id)] = supply
        return supply

    def token_supply(self, scenario_id: str) -> List[TokenSupply]:
        with self._lock:
            return [s for s in self._token_supply.values() if s.scenario_id == scenario_id]

    def add_token_demand(self, demand: TokenDemand) -> TokenDemand:
        if demand.tokens_p50 < 0 or (demand.tokens_p90 is not None and demand.tokens_p90 < 0):
            raise ValidationError("token demand must be non-negative")
        with self._lock:
            if demand.skill_pool_id not in self._skill_pools:
                raise NotFoundError("SkillPool", demand.skill_pool_id)
            self._token_demand = self._token_demand + [demand]
        return demand

    def token_demand(self, scenario_id: str) -> List[TokenDemand]:
        with self._lock:
            return [d for d in self._token_demand if d.scenario_id == scenario_id]
