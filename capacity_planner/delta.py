"""Live-vs-baseline comparison.

Every delta is ``live - snapshot``: more live capacity is positive, less live
demand is negative.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .baseline import BaselineService, serialize_state
from .calculator import ScenarioCalculator
from .errors import ValidationError, WorkflowError
from .models import BaselineSnapshot, Scenario
from .store import EntityStore

EPSILON = 1e-6


def _pct(delta: float, base: float) -> Optional[float]:
    if base <= EPSILON:
        return None
    return round(delta / base * 100, 2)


def _sum_by(rows: Iterable[Mapping[str, object]], keys: Tuple[str, ...], value: str) -> Dict[Tuple[str, ...], float]:
    totals: Dict[Tuple[str, ...], float] = {}
    for row in rows:
        key = tuple(str(row[k]) for k in keys)
        totals[key] = totals.get(key, 0.0) + float(row[value])  # type: ignore[arg-type]
    return totals


def _names(rows: Iterable[Mapping[str, object]], key: str, label: str) -> Dict[str, str]:
    return {str(row[key]): str(row[label]) for row in rows}


@dataclass(frozen=True)
class DeltaResult:
    scenario_id: str
    baseline_scenario_id: str
    snapshot_date: str
    capacity: List[Dict[str, object]]
    demand: List[Dict[str, object]]
    allocations: List[Dict[str, object]]
    summary: Dict[str, object]

    def to_dict(self) -> Dict[str, object]:
        return {
            "scenarioId": self.scenario_id,
            "baselineScenarioId": self.baseline_scenario_id,
            "snapshotDate": self.snapshot_date,
            "capacityDeltas": self.capacity,
            "demandDeltas": self.demand,
            "allocationDeltas": self.allocations,
            "summary": self.summary,
        }


def capacity_deltas(
    snapshot_rows: Iterable[Mapping[str, object]],
    live_rows: Iterable[Mapping[str, object]],
    live_employee_ids: Iterable[str],
) -> List[Dict[str, object]]:
    snapshot_rows = list(snapshot_rows)
    live_rows = list(live_rows)
    before = _sum_by(snapshot_rows, ("employeeId", "skill"), "effectiveHours")
    after = _sum_by(live_rows, ("employeeId", "skill"), "effectiveHours")
    names = {**_names(snapshot_rows, "employeeId", "employeeName"), **_names(live_rows, "employeeId", "employeeName")}
    present = set(live_employee_ids)
    rows: List[Dict[str, object]] = []
    for key in sorted(set(before) | set(after)):
        employee_id, skill = key
        snap = before.get(key, 0.0)
        departed = employee_id not in present
        live = 0.0 if departed else after.get(key, 0.0)
        delta = live - snap
        if abs(delta) <= EPSILON:
            continue
        rows.append(
            {
                "employeeId": employee_id,
                "employeeName": names.get(employee_id, employee_id),
                "skill": skill,
                "snapshotHours": round(snap, 2),
                "liveHours": round(live, 2),
                "deltaHours": round(delta, 2),
                "deltaPct": -100.0 if departed and snap > EPSILON else _pct(delta, snap),
                "departed": departed,
            }
        )
    return rows


def demand_deltas(
    snapshot_rows: Iterable[Mapping[str, object]],
    live_rows: Iterable[Mapping[str, object]],
) -> List[Dict[str, object]]:
    snapshot_rows = list(snapshot_rows)
    live_rows = list(live_rows)
    before = _sum_by(snapshot_rows, ("initiativeId", "skill"), "demandHours")
    after = _sum_by(live_rows, ("initiativeId", "skill"), "demandHours")
    titles = {**_names(snapshot_rows, "initiativeId", "initiativeTitle"), **_names(live_rows, "initiativeId", "initiativeTitle")}
    rows: List[Dict[str, object]] = []
    for key in sorted(set(before) | set(after)):
        initiative_id, skill = key
        snap = before.get(key, 0.0)
        live = after.get(key, 0.0)
        delta = live - snap
        if abs(delta) <= EPSILON:
            continue
        rows.append(
            {
                "initiativeId": initiative_id,
                "initiativeTitle": titles.get(initiative_id, initiative_id),
                "skill": skill,
                "snapshotHours": round(snap, 2),
                "liveHours": round(live, 2),
                "deltaHours": round(delta, 2),
                "deltaPct": _pct(delta, snap),
            }
        )
    return rows


def _allocation_totals(rows: Iterable[Mapping[str, object]]) -> Dict[Tuple[str, str], Dict[str, object]]:
    totals: Dict[Tuple[str, str], Dict[str, object]] = {}
    for row in rows:
        key = (str(row["employeeId"]), str(row["initiativeId"] or ""))
        entry = totals.setdefault(
            key,
            {
                "employeeName": row["employeeName"],
                "initiativeTitle": row["initiativeTitle"],
                "percentage": 0.0,
                "hours": 0.0,
            },
        )
        entry["percentage"] = float(entry["percentage"]) + float(row["percentage"])  # type: ignore[arg-type]
        entry["hours"] = float(entry["hours"]) + float(row["hoursInPeriod"])  # type: ignore[arg-type]
    return totals


def allocation_deltas(
    snapshot_rows: Iterable[Mapping[str, object]],
    live_rows: Iterable[Mapping[str, object]],
) -> List[Dict[str, object]]:
    before = _allocation_totals(snapshot_rows)
    after = _allocation_totals(live_rows)
    rows: List[Dict[str, object]] = []
    for key in sorted(set(before) | set(after)):
        employee_id, initiative_id = key
        old = before.get(key)
        new = after.get(key)
        if old is None and new is not None:
            change = "added"
        elif new is None and old is not None:
            change = "removed"
        else:
            hours_changed = abs(float(new["hours"]) - float(old["hours"])) > EPSILON  # type: ignore[index]
            pct_changed = abs(float(new["percentage"]) - float(old["percentage"])) > EPSILON  # type: ignore[index]
            if not (hours_changed or pct_changed):
                continue
            change = "modified"
        info = new or old or {}
        rows.append(
            {
                "employeeId": employee_id,
                "employeeName": info.get("employeeName"),
                "initiativeId": initiative_id or None,
                "initiativeTitle": info.get("initiativeTitle"),
                "changeType": change,
                "snapshotPercentage": round(float(old["percentage"]), 2) if old else None,
                "livePercentage": round(float(new["percentage"]), 2) if new else None,
                "snapshotHours": round(float(old["hours"]), 2) if old else None,
                "liveHours": round(float(new["hours"]), 2) if new else None,
            }
        )
    return rows


class DeltaEngine:
    """Compares live data against a frozen baseline. Never cached."""

    def __init__(self, store: EntityStore, calculator: ScenarioCalculator, baselines: BaselineService) -> None:
        self.store = store
        self.calculator = calculator
        self.baselines = baselines

    def compute_delta(self, scenario_id: str) -> DeltaResult:
        scenario = self.store.get_scenario(scenario_id)
        if scenario.status != "LOCKED":
            raise WorkflowError(
                f"Delta requires a LOCKED scenario; {scenario_id} is {scenario.status}",
                current_status=scenario.status,
            )
        if scenario.scenario_type != "BASELINE":
            raise WorkflowError(
                f"Delta requires a BASELINE scenario; {scenario_id} is {scenario.scenario_type}",
                current_status=scenario.status,
            )
        snapshot = self.baselines.get_snapshot(scenario_id)
        return self._compare(scenario, snapshot)

    def compute_revision_delta(self, revision_id: str) -> DeltaResult:
        revision = self.store.get_scenario(revision_id)
        if revision.scenario_type != "REVISION":
            raise WorkflowError(
                f"Revision delta requires a REVISION scenario; {revision_id} is {revision.scenario_type}",
                current_status=revision.status,
            )
        if not revision.revision_of_scenario_id:
            raise ValidationError(
                f"Scenario {revision_id} does not reference a baseline",
                {"scenarioType": revision.scenario_type},
            )
        snapshot = self.baselines.get_snapshot(revision.revision_of_scenario_id)
        return self._compare(revision, snapshot)

    def _compare(self, scenario: Scenario, snapshot: BaselineSnapshot) -> DeltaResult:
        live = serialize_state(self.store, self.calculator, scenario, fresh=True)
        present = [e.id for e in self.store.employees()]
        capacity = capacity_deltas(snapshot.capacity, live["capacity"], present)  # type: ignore[arg-type]
        demand = demand_deltas(snapshot.demand, live["demand"])  # type: ignore[arg-type]
        allocations = allocation_deltas(snapshot.allocations, live["allocations"])  # type: ignore[arg-type]

        snap_capacity = float(snapshot.summary.get("totalCapacityHours", 0.0))  # type: ignore[arg-type]
        snap_demand = float(snapshot.summary.get("totalDemandHours", 0.0))  # type: ignore[arg-type]
        capacity_drift = sum(float(row["deltaHours"]) for row in capacity)  # type: ignore[arg-type]
        demand_drift = sum(float(row["deltaHours"]) for row in demand)  # type: ignore[arg-type]
        summary = {
            "totalCapacityDriftHours": round(capacity_drift, 2),
            "totalCapacityDriftPct": _pct(capacity_drift, snap_capacity) or 0.0,
            "totalDemandDriftHours": round(demand_drift, 2),
            "totalDemandDriftPct": _pct(demand_drift, snap_demand) or 0.0,
            "netGapDrift": round(capacity_drift - demand_drift, 2),
            "allocationsAdded": sum(1 for row in allocations if row["changeType"] == "added"),
            "allocationsRemoved": sum(1 for row in allocations if row["changeType"] == "removed"),
            "allocationsModified": sum(1 for row in allocations if row["changeType"] == "modified"),
        }
        return DeltaResult(
            scenario_id=scenario.id,
            baseline_scenario_id=snapshot.scenario_id,
            snapshot_date=snapshot.snapshot_date,
            capacity=capacity,
            demand=demand,
            allocations=allocations,
            summary=summary,
        )
