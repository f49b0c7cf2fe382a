from __future__ import annotations

import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List

from .allocations import build_allocation_periods
from .calculator import ScenarioCalculator
from .errors import NotFoundError, WorkflowError
from .models import BaselineSnapshot, Scenario
from .store import EntityStore

logger = logging.getLogger(__name__)


def serialize_state(
    store: EntityStore, calculator: ScenarioCalculator, scenario: Scenario, fresh: bool = False
) -> Dict[str, object]:
    """Aggregate a scenario and flatten it into plain dicts.

    Used both for capturing a snapshot and for the live side of a delta, so
    the two are always produced by the same aggregation.
    """
    period_ids, demand, capacity = calculator.aggregate(scenario, fresh=fresh)
    capacity_rows: List[Dict[str, object]] = [
        {
            "employeeId": row["employee_id"],
            "employeeName": row["name"],
            "periodId": row["period_id"],
            "skill": row["skill"],
            "proficiency": row["proficiency"],
            "allocatedHours": round(float(row["allocated_hours"]), 4),
            "effectiveHours": round(float(row["effective_hours"]), 4),
        }
        for row in capacity.breakdown
    ]
    demand_rows: List[Dict[str, object]] = [
        {
            "initiativeId": row["initiative_id"],
            "initiativeTitle": row["title"],
            "rank": row["rank"],
            "periodId": row["period_id"],
            "skill": row["skill"],
            "demandHours": round(float(row["hours"]), 4),
        }
        for row in demand.breakdown
    ]
    allocation_rows: List[Dict[str, object]] = []
    for allocation in store.allocations_for_scenario(scenario.id):
        if fresh:
            rows = tuple(build_allocation_periods(store, calculator.config, scenario, allocation))
        else:
            rows = store.allocation_periods(allocation.id)
        employee = store.find_employee(allocation.employee_id)
        initiative = store.find_initiative(allocation.initiative_id) if allocation.initiative_id else None
        allocation_rows.append(
            {
                "allocationId": allocation.id,
                "employeeId": allocation.employee_id,
                "employeeName": employee.name if employee else allocation.employee_id,
                "initiativeId": allocation.initiative_id,
                "initiativeTitle": initiative.title if initiative else None,
                "startDate": allocation.start_date.isoformat(),
                "endDate": allocation.end_date.isoformat(),
                "percentage": allocation.percentage,
                "hoursInPeriod": round(sum(r.hours_in_period for r in rows), 4),
                "rampModifier": (sum(r.ramp_modifier for r in rows) / len(rows)) if rows else 1.0,
            }
        )
    total_capacity = capacity.total_hours()
    total_demand = demand.total_hours()
    summary = {
        "periodIds": list(period_ids),
        "totalCapacityHours": round(total_capacity, 4),
        "totalDemandHours": round(total_demand, 4),
        "overallGap": round(total_capacity - total_demand, 4),
        "totalAllocations": len(allocation_rows),
        "employeeCount": len({row["employeeId"] for row in allocation_rows}),
        "initiativeCount": len({row["initiativeId"] for row in allocation_rows if row["initiativeId"]}),
    }
    return {
        "capacity": capacity_rows,
        "demand": demand_rows,
        "allocations": allocation_rows,
        "summary": summary,
    }


class BaselineService:
    def __init__(self, store: EntityStore, calculator: ScenarioCalculator) -> None:
        self.store = store
        self.calculator = calculator

    def capture_snapshot(self, scenario_id: str) -> BaselineSnapshot:
        """Freeze the computed state of a LOCKED baseline, once."""
        scenario = self.store.get_scenario(scenario_id)
        if scenario.status != "LOCKED" or scenario.scenario_type != "BASELINE":
            raise WorkflowError(
                f"Snapshots are captured only for LOCKED baselines; {scenario_id} is "
                f"{scenario.status} {scenario.scenario_type}",
                current_status=scenario.status,
            )
        if self.store.find_snapshot(scenario_id) is not None:
            raise WorkflowError(
                f"Scenario {scenario_id} already has a baseline snapshot",
                current_status=scenario.status,
            )
        state = serialize_state(self.store, self.calculator, scenario, fresh=True)
        snapshot = BaselineSnapshot(
            id=uuid.uuid4().hex,
            scenario_id=scenario_id,
            snapshot_date=datetime.now(timezone.utc).isoformat(timespec="seconds"),
            capacity=tuple(state["capacity"]),  # type: ignore[arg-type]
            demand=tuple(state["demand"]),  # type: ignore[arg-type]
            allocations=tuple(state["allocations"]),  # type: ignore[arg-type]
            summary=copy.deepcopy(state["summary"]),  # type: ignore[arg-type]
        )
        stored = self.store.add_snapshot(snapshot)
        logger.info(
            "captured baseline for scenario %s: %d capacity rows, %d demand rows, %d allocations",
            scenario_id,
            len(snapshot.capacity),
            len(snapshot.demand),
            len(snapshot.allocations),
        )
        return stored

    def get_snapshot(self, scenario_id: str) -> BaselineSnapshot:
        snapshot = self.store.find_snapshot(scenario_id)
        if snapshot is None:
            raise NotFoundError("BaselineSnapshot", scenario_id)
        return snapshot
