"""Shared fixtures: a 2026 period catalogue, two engineers, two initiatives."""

from datetime import date
from typing import List, Optional, Tuple

import pytest

from capacity_planner.engine import PlanningEngine
from capacity_planner.models import (
    Employee,
    EmployeeSkill,
    Initiative,
    PlanningConfig,
    PriorityRanking,
    Scenario,
    ScopeItem,
)
from capacity_planner.periods import generate_periods
from capacity_planner.store import EntityStore

Q1_START = date(2026, 1, 1)
Q1_END = date(2026, 3, 31)


class RecordingDispatcher:
    """Stands in for the job store; records every enqueue call."""

    def __init__(self, fail: bool = False) -> None:
        self.calls: List[Tuple[str, tuple]] = []
        self.fail = fail

    def _record(self, name: str, *args: object) -> None:
        if self.fail:
            raise RuntimeError("queue unavailable")
        self.calls.append((name, args))

    def enqueue_recompute(self, scenario_id: str, reason: str) -> None:
        self._record("recompute", scenario_id, reason)

    def enqueue_view_refresh(self, scope: str, reason: str, scenario_ids=()) -> None:
        self._record("view_refresh", scope, reason, tuple(scenario_ids))

    def enqueue_drift_check(self, scenario_id: Optional[str] = None) -> None:
        self._record("drift_check", scenario_id)


def make_initiative(initiative_id: str, title: str, demand: dict, period_id: str = "2026-Q1", **kwargs) -> Initiative:
    return Initiative(
        id=initiative_id,
        title=title,
        scope_items=(
            ScopeItem(
                id=f"{initiative_id}-scope",
                name=f"{title} scope",
                skill_demand=tuple(demand.items()),
                period_distribution={period_id: 1.0},
            ),
        ),
        **kwargs,
    )


@pytest.fixture()
def store() -> EntityStore:
    s = EntityStore()
    s.add_periods(generate_periods(2026, 2026))
    s.put_employee(
        Employee(
            id="alice",
            name="Alice",
            hours_per_week=40,
            skills=(EmployeeSkill("backend", 5), EmployeeSkill("frontend", 3)),
            org_unit="eng/platform",
        )
    )
    s.put_employee(
        Employee(
            id="bob",
            name="Bob",
            hours_per_week=40,
            skills=(EmployeeSkill("frontend", 4),),
            org_unit="eng/web",
        )
    )
    s.put_initiative(make_initiative("init-pay", "Payments", {"backend": 300.0}))
    s.put_initiative(make_initiative("init-chk", "Checkout", {"backend": 200.0, "frontend": 100.0}))
    return s


def _scenario(scenario_id: str, scenario_type: str = "WHAT_IF", **kwargs) -> Scenario:
    return Scenario(
        id=scenario_id,
        name=scenario_id.replace("-", " ").title(),
        period_id="2026-Q1",
        scenario_type=scenario_type,
        priority_rankings=(PriorityRanking("init-pay", 1), PriorityRanking("init-chk", 2)),
        **kwargs,
    )


@pytest.fixture()
def scenario(store) -> Scenario:
    return store.put_scenario(_scenario("plan-a"))


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def engine(store, scenario, dispatcher) -> PlanningEngine:
    return PlanningEngine(store, PlanningConfig(), dispatcher=dispatcher)


@pytest.fixture()
def locked_baseline(store, engine) -> Scenario:
    """BASELINE with alice 50% on Payments and bob 20% on Checkout, locked."""
    store.put_scenario(_scenario("base-1", scenario_type="BASELINE"))
    engine.create_allocation("base-1", "alice", "init-pay", Q1_START, Q1_END, 50)
    engine.create_allocation("base-1", "bob", "init-chk", Q1_START, Q1_END, 20)
    for status in ("REVIEW", "APPROVED", "LOCKED"):
        engine.transition_status("base-1", status)
    return store.get_scenario("base-1")
