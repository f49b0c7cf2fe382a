from __future__ import annotations

import logging
import math
import uuid
from dataclasses import replace
from datetime import date
from typing import List, Mapping, Optional, Sequence, Tuple, Union

from .allocator import ProposedAllocation
from .errors import ValidationError
from .models import Allocation, AllocationPeriod, PlanningConfig, PriorityRanking, Scenario
from .periods import map_date_range_to_periods, span_of
from .ramp import ramp_modifier
from .refresh import ScenarioRefresh
from .store import EntityStore
from .workflow import assert_initiative_editable, assert_scenario_editable

logger = logging.getLogger(__name__)

ProposalInput = Union[ProposedAllocation, Mapping[str, object]]


def build_allocation_periods(
    store: EntityStore,
    config: PlanningConfig,
    scenario: Scenario,
    allocation: Allocation,
) -> List[AllocationPeriod]:
    """AllocationPeriod rows for an allocation from current employee data.

    Hours per period are base hours x overlap ratio x percentage. Returns no
    rows when the employee no longer exists.
    """
    employee = store.find_employee(allocation.employee_id)
    if employee is None:
        return []
    modifier = ramp_modifier(store, scenario, allocation, config.ramp_profiles)
    rows: List[AllocationPeriod] = []
    overlaps = map_date_range_to_periods(
        store.periods(), allocation.start_date, allocation.end_date, config.period_granularity
    )
    for overlap in overlaps:
        period = store.get_period(overlap.period_id)
        hours = employee.base_hours(period) * overlap.overlap_ratio * allocation.percentage / 100
        rows.append(
            AllocationPeriod(
                allocation_id=allocation.id,
                period_id=period.id,
                hours_in_period=round(hours, 4),
                overlap_ratio=overlap.overlap_ratio,
                ramp_modifier=modifier,
            )
        )
    return rows


class AllocationService:
    """Writes to allocations and rankings, followed by cache invalidation and recompute."""

    def __init__(self, store: EntityStore, refresh: ScenarioRefresh, config: PlanningConfig) -> None:
        self.store = store
        self.refresh = refresh
        self.config = config

    def _scenario_span(self, scenario: Scenario) -> Tuple[date, date]:
        return span_of([self.store.get_period(pid) for pid in scenario.period_ids()])

    def _check_dates(self, scenario: Scenario, start: date, end: date) -> None:
        if start > end:
            raise ValidationError("start date must not be after end date")
        span_start, span_end = self._scenario_span(scenario)
        if start < span_start or end > span_end:
            raise ValidationError(
                f"allocation dates must fall within {span_start.isoformat()}..{span_end.isoformat()}",
                {"startDate": start.isoformat(), "endDate": end.isoformat()},
            )

    def _check_initiative(self, initiative_id: Optional[str]) -> None:
        if initiative_id is not None:
            assert_initiative_editable(self.store.get_initiative(initiative_id))

    def materialize_periods(self, allocation: Allocation, scenario: Scenario) -> List[AllocationPeriod]:
        """Rebuild every AllocationPeriod row of an allocation from scratch."""
        self.store.get_employee(allocation.employee_id)
        rows = build_allocation_periods(self.store, self.config, scenario, allocation)
        self.store.replace_allocation_periods(allocation.id, rows)
        return rows

    def create_allocation(
        self,
        scenario_id: str,
        employee_id: str,
        initiative_id: Optional[str],
        start_date: date,
        end_date: date,
        percentage: float,
    ) -> Allocation:
        scenario = self.store.get_scenario(scenario_id)
        assert_scenario_editable(scenario, "create allocations")
        self._check_dates(scenario, start_date, end_date)
        self._check_initiative(initiative_id)
        allocation = Allocation(
            id=uuid.uuid4().hex,
            scenario_id=scenario_id,
            employee_id=employee_id,
            initiative_id=initiative_id,
            start_date=start_date,
            end_date=end_date,
            percentage=float(percentage),
        )
        with self.store.transaction():
            self.store.put_allocation(allocation)
            self.materialize_periods(allocation, scenario)
        self.refresh.after_mutation(scenario_id, "allocation_change")
        return allocation

    def update_allocation(self, allocation_id: str, **changes: object) -> Allocation:
        allowed = {"employee_id", "initiative_id", "start_date", "end_date", "percentage"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")
        current = self.store.get_allocation(allocation_id)
        scenario = self.store.get_scenario(current.scenario_id)
        assert_scenario_editable(scenario, "update allocations")
        self._check_initiative(current.initiative_id)
        updated = replace(current, **changes)
        if updated.initiative_id != current.initiative_id:
            self._check_initiative(updated.initiative_id)
        self._check_dates(scenario, updated.start_date, updated.end_date)
        with self.store.transaction():
            self.store.put_allocation(updated)
            self.materialize_periods(updated, scenario)
        self.refresh.after_mutation(scenario.id, "allocation_change")
        return updated

    def delete_allocation(self, allocation_id: str) -> None:
        current = self.store.get_allocation(allocation_id)
        scenario = self.store.get_scenario(current.scenario_id)
        assert_scenario_editable(scenario, "delete allocations")
        self._check_initiative(current.initiative_id)
        self.store.delete_allocation(allocation_id)
        self.refresh.after_mutation(scenario.id, "allocation_change")

    def update_priorities(self, scenario_id: str, rankings: Sequence[PriorityRanking]) -> Scenario:
        scenario = self.store.get_scenario(scenario_id)
        assert_scenario_editable(scenario, "update priorities")
        updated = self.store.put_scenario(replace(scenario, priority_rankings=tuple(rankings)))
        self.refresh.after_mutation(scenario_id, "priority_change")
        return updated

    def recompute_ramp(self, scenario_id: str) -> int:
        scenario = self.store.get_scenario(scenario_id)
        assert_scenario_editable(scenario, "recompute ramp")
        allocations = self.store.allocations_for_scenario(scenario_id)
        with self.store.transaction():
            for allocation in allocations:
                self.materialize_periods(allocation, scenario)
        self.refresh.after_mutation(scenario_id, "ramp_change")
        return len(allocations)

    def apply_auto_allocate(
        self, scenario_id: str, proposals: Sequence[ProposalInput]
    ) -> List[Allocation]:
        """Replace every allocation of the scenario with the given proposal.

        All rows are written in one transaction; nothing changes on failure.
        """
        scenario = self.store.get_scenario(scenario_id)
        assert_scenario_editable(scenario, "apply auto-allocation")
        if not proposals:
            raise ValidationError("no proposed allocations to apply")
        entries = [
            p if isinstance(p, ProposedAllocation) else ProposedAllocation.from_mapping(p)
            for p in proposals
        ]
        for entry in entries:
            self.store.get_employee(entry.employee_id)
            self._check_initiative(entry.initiative_id)
            self._check_dates(scenario, entry.start_date, entry.end_date)
            if not math.isfinite(entry.percentage) or entry.percentage <= 0:
                raise ValidationError(
                    "proposed percentage must be a positive number", {"employeeId": entry.employee_id}
                )
        created: List[Allocation] = []
        with self.store.transaction():
            removed = self.store.delete_scenario_allocations(scenario_id)
            for entry in entries:
                allocation = Allocation(
                    id=uuid.uuid4().hex,
                    scenario_id=scenario_id,
                    employee_id=entry.employee_id,
                    initiative_id=entry.initiative_id,
                    start_date=entry.start_date,
                    end_date=entry.end_date,
                    percentage=min(100.0, float(entry.percentage)),
                )
                self.store.put_allocation(allocation)
                self.materialize_periods(allocation, scenario)
                created.append(allocation)
        logger.info(
            "scenario %s: replaced %d allocation(s) with %d proposed", scenario_id, removed, len(created)
        )
        self.refresh.after_mutation(scenario_id, "allocation_change")
        return created
