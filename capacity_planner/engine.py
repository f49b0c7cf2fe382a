from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from .allocations import AllocationService, ProposalInput
from .allocator import AutoAllocateResult, propose_allocations
from .baseline import BaselineService
from .cache import MemoryCache
from .calculator import CalculatorResult, ScenarioCalculator
from .delta import DeltaEngine, DeltaResult
from .drift import DriftService
from .errors import ValidationError, WorkflowError
from .jobs import JobStore
from .ledger import TokenLedger, build_token_ledger
from .models import (
    Allocation,
    BaselineSnapshot,
    DriftAlert,
    DriftThreshold,
    PlanningConfig,
    PriorityRanking,
    Scenario,
    ScenarioStatus,
)
from .refresh import ScenarioRefresh
from .store import EntityStore
from .workflow import check_transition

logger = logging.getLogger(__name__)

RankingInput = Union[PriorityRanking, Mapping[str, object]]


def _coerce_ranking(value: RankingInput) -> PriorityRanking:
    if isinstance(value, PriorityRanking):
        return value
    if not isinstance(value, Mapping):
        raise ValidationError("priority ranking entries must be objects", {"entry": value})
    initiative_id = value.get("initiativeId", value.get("initiative_id"))
    rank = value.get("rank")
    if not initiative_id or not isinstance(rank, int) or isinstance(rank, bool):
        raise ValidationError("priority ranking needs initiativeId and an integer rank", {"entry": dict(value)})
    return PriorityRanking(initiative_id=str(initiative_id), rank=rank)


class PlanningEngine:
    """Entry point for every planning operation.

    Mutations follow one order: workflow gate, store transaction, cache
    invalidation, then a best-effort recompute request to the dispatcher.
    """

    def __init__(
        self,
        store: EntityStore,
        config: Optional[PlanningConfig] = None,
        dispatcher: Optional[object] = None,
        cache: Optional[MemoryCache] = None,
    ) -> None:
        self.store = store
        self.config = config or PlanningConfig()
        self.cache = cache or MemoryCache()
        self.dispatcher = dispatcher
        self.refresh = ScenarioRefresh(self.cache, dispatcher)
        self.calculator = ScenarioCalculator(store, self.cache, self.config)
        self.allocations = AllocationService(store, self.refresh, self.config)
        self.baselines = BaselineService(store, self.calculator)
        self.deltas = DeltaEngine(store, self.calculator, self.baselines)
        self.drift = DriftService(store, self.deltas, self.config)

    @classmethod
    def with_job_store(
        cls,
        store: EntityStore,
        config: Optional[PlanningConfig] = None,
        run_async: bool = True,
    ) -> "PlanningEngine":
        jobs = JobStore(run_async=run_async)
        engine = cls(store, config, dispatcher=jobs)
        jobs.register("scenario_recompute", engine.run_recompute)
        jobs.register("view_refresh", engine.run_view_refresh)
        jobs.register("drift_check", engine.run_drift_check)
        return engine

    # job handlers

    def run_recompute(self, scenario_id: str, reason: str = "") -> str:
        self.refresh.invalidate(scenario_id)
        result = self.calculator.calculate(scenario_id, skip_cache=True)
        return f"recomputed {scenario_id} ({reason}): gap {result.summary['overallGap']}"

    def run_view_refresh(self, scope: str, reason: str = "", scenario_ids: Sequence[str] = ()) -> str:
        targets = list(scenario_ids) or [s.id for s in self.store.scenarios()]
        for scenario_id in targets:
            self.calculator.calculate(scenario_id)
        return f"refreshed {len(targets)} scenario view(s) for {scope} ({reason})"

    def run_drift_check(self, scenario_id: Optional[str] = None) -> str:
        if scenario_id:
            result = self.drift.check_drift(scenario_id)
            return f"drift detected: {result['driftsDetected']}"
        results = self.drift.check_all_baselines()
        flagged = sum(1 for r in results if r["driftsDetected"])
        return f"checked {len(results)} baseline(s), {flagged} drifting"

    # calculator

    def calculate(
        self, scenario_id: str, skip_cache: bool = False, org_scope: Optional[str] = None
    ) -> CalculatorResult:
        return self.calculator.calculate(scenario_id, skip_cache=skip_cache, org_scope=org_scope)

    def capacity_demand(self, scenario_id: str, org_scope: Optional[str] = None) -> Dict[str, object]:
        """Uncached demand/capacity breakdown without issue detection."""
        scenario = self.store.get_scenario(scenario_id)
        period_ids, demand, capacity = self.calculator.aggregate(scenario, org_scope)
        return {
            "scenarioId": scenario_id,
            "periodIds": period_ids,
            "demand": demand.breakdown,
            "capacity": capacity.breakdown,
        }

    # allocation

    def auto_allocate(
        self, scenario_id: str, max_allocation_percentage: Optional[float] = None
    ) -> AutoAllocateResult:
        scenario = self.store.get_scenario(scenario_id)
        periods = [self.store.get_period(pid) for pid in scenario.period_ids()]
        ceiling = self.config.allocation_ceiling_pct if max_allocation_percentage is None else max_allocation_percentage
        result = propose_allocations(
            scenario.priority_rankings,
            {i.id: i for i in self.store.initiatives()},
            self.store.employees(active_only=True),
            periods,
            ceiling,
        )
        if result.shortages:
            logger.warning(
                "auto-allocate for scenario %s left %d shortage(s)", scenario_id, len(result.shortages)
            )
        return result

    def apply_auto_allocate(self, scenario_id: str, proposals: Sequence[ProposalInput]) -> List[Allocation]:
        return self.allocations.apply_auto_allocate(scenario_id, proposals)

    def create_allocation(
        self,
        scenario_id: str,
        employee_id: str,
        initiative_id: Optional[str],
        start_date: date,
        end_date: date,
        percentage: float,
    ) -> Allocation:
        return self.allocations.create_allocation(
            scenario_id, employee_id, initiative_id, start_date, end_date, percentage
        )

    def update_allocation(self, allocation_id: str, **changes: object) -> Allocation:
        return self.allocations.update_allocation(allocation_id, **changes)

    def delete_allocation(self, allocation_id: str) -> None:
        self.allocations.delete_allocation(allocation_id)

    def update_priorities(self, scenario_id: str, rankings: Sequence[RankingInput]) -> Scenario:
        return self.allocations.update_priorities(scenario_id, [_coerce_ranking(r) for r in rankings])

    def recompute_ramp(self, scenario_id: str) -> int:
        return self.allocations.recompute_ramp(scenario_id)

    # lifecycle

    def transition_status(self, scenario_id: str, target: ScenarioStatus) -> Scenario:
        """Move a scenario through its lifecycle.

        Locking a BASELINE scenario captures its snapshot in the same
        transaction, so a failed capture leaves the scenario unlocked.
        """
        scenario = self.store.get_scenario(scenario_id)
        check_transition(scenario, target)
        updated = replace(scenario, status=target)
        with self.store.transaction():
            self.store.put_scenario(updated)
            if target == "LOCKED" and scenario.scenario_type == "BASELINE":
                self.baselines.capture_snapshot(scenario_id)
        logger.info("scenario %s: %s -> %s", scenario_id, scenario.status, target)
        self.refresh.invalidate(scenario_id)
        return updated

    def create_revision(self, baseline_id: str, name: Optional[str] = None) -> Scenario:
        baseline = self.store.get_scenario(baseline_id)
        if baseline.status != "LOCKED" or baseline.scenario_type != "BASELINE":
            raise WorkflowError(
                f"Revisions can only be created from a LOCKED baseline; {baseline_id} is {baseline.status}",
                current_status=baseline.status,
            )
        revision = replace(
            baseline,
            id=uuid.uuid4().hex,
            name=name or f"{baseline.name} (revision)",
            status="DRAFT",
            scenario_type="REVISION",
            revision_of_scenario_id=baseline.id,
        )
        with self.store.transaction():
            self.store.put_scenario(revision)
            for allocation in self.store.allocations_for_scenario(baseline_id):
                copied = replace(allocation, id=uuid.uuid4().hex, scenario_id=revision.id)
                self.store.put_allocation(copied)
                self.allocations.materialize_periods(copied, revision)
        logger.info("created revision %s of baseline %s", revision.id, baseline_id)
        return revision

    # baseline, delta, drift

    def capture_snapshot(self, scenario_id: str) -> BaselineSnapshot:
        return self.baselines.capture_snapshot(scenario_id)

    def get_snapshot(self, scenario_id: str) -> BaselineSnapshot:
        return self.baselines.get_snapshot(scenario_id)

    def compute_delta(self, scenario_id: str) -> DeltaResult:
        return self.deltas.compute_delta(scenario_id)

    def compute_revision_delta(self, revision_id: str) -> DeltaResult:
        return self.deltas.compute_revision_delta(revision_id)

    def check_drift(self, scenario_id: str) -> Dict[str, object]:
        return self.drift.check_drift(scenario_id)

    def check_all_baselines(self) -> List[Dict[str, object]]:
        return self.drift.check_all_baselines()

    def get_thresholds(self, period_id: Optional[str] = None) -> DriftThreshold:
        return self.drift.get_thresholds(period_id)

    def update_thresholds(
        self,
        capacity_threshold_pct: float,
        demand_threshold_pct: float,
        period_id: Optional[str] = None,
    ) -> DriftThreshold:
        return self.drift.update_thresholds(capacity_threshold_pct, demand_threshold_pct, period_id)

    def get_alerts(
        self,
        scenario_id: Optional[str] = None,
        status: Optional[str] = None,
        period_id: Optional[str] = None,
    ) -> List[DriftAlert]:
        return self.drift.get_alerts(scenario_id, status, period_id)

    def acknowledge_alerts(self, alert_ids: Iterable[str]) -> int:
        return self.drift.acknowledge_alerts(alert_ids)

    def resolve_alerts(self, alert_ids: Iterable[str]) -> int:
        return self.drift.resolve_alerts(alert_ids)

    def schedule_drift_check(self, scenario_id: Optional[str] = None) -> bool:
        if self.dispatcher is None:
            return False
        try:
            self.dispatcher.enqueue_drift_check(scenario_id)
        except Exception as exc:
            logger.warning("could not enqueue drift check: %s", exc)
            return False
        return True

    # token ledger

    def token_ledger(self, scenario_id: str) -> TokenLedger:
        return build_token_ledger(self.store, scenario_id)
