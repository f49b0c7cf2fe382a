from dataclasses import replace
from datetime import date

import pytest

from capacity_planner.capacity import aggregate_capacity
from capacity_planner.demand import aggregate_demand
from capacity_planner.models import (
    Allocation,
    AllocationPeriod,
    Employee,
    EmployeeDomainFamiliarity,
    EmployeeSkill,
    Initiative,
    PriorityRanking,
    ScenarioAssumptions,
    ScopeItem,
)
from capacity_planner.ramp import compute_modifier, ramp_breakdown


@pytest.fixture()
def split_initiative():
    return Initiative(
        id="init-split",
        title="Split",
        scope_items=(
            ScopeItem(
                id="s1",
                name="s1",
                skill_demand=(("backend", 100.0), ("data", 40.0)),
                period_distribution={"2026-Q1": 0.25, "2026-Q2": 0.75},
            ),
            ScopeItem(id="s2", name="s2", skill_demand=(("backend", 60.0),)),
        ),
    )


class TestDemand:
    def test_weights_by_period_distribution(self, split_initiative):
        result = aggregate_demand(
            [PriorityRanking("init-split", 1)], {"init-split": split_initiative}, ["2026-Q1", "2026-Q2"]
        )
        assert result.hours("2026-Q1", "backend") == pytest.approx(25.0)
        assert result.hours("2026-Q2", "backend") == pytest.approx(75.0)
        assert result.hours("2026-Q2", "data") == pytest.approx(30.0)

    def test_missing_distribution_contributes_nothing(self, split_initiative):
        result = aggregate_demand(
            [PriorityRanking("init-split", 1)], {"init-split": split_initiative}, ["2026-Q1"]
        )
        # s2 has no distribution entry for any period
        assert result.by_skill() == {"backend": pytest.approx(25.0), "data": pytest.approx(10.0)}

    def test_totals_do_not_depend_on_rank_order(self, store):
        initiatives = {i.id: i for i in store.initiatives()}
        first = aggregate_demand(
            [PriorityRanking("init-pay", 1), PriorityRanking("init-chk", 2)], initiatives, ["2026-Q1"]
        )
        second = aggregate_demand(
            [PriorityRanking("init-chk", 1), PriorityRanking("init-pay", 2)], initiatives, ["2026-Q1"]
        )
        assert first.cells == second.cells
        assert [row["initiative_id"] for row in second.breakdown][0] == "init-chk"

    def test_unknown_initiative_is_skipped(self, store):
        initiatives = {i.id: i for i in store.initiatives()}
        result = aggregate_demand([PriorityRanking("ghost", 1)], initiatives, ["2026-Q1"])
        assert result.total_hours() == 0


class TestCapacity:
    @pytest.fixture()
    def employees(self):
        return [
            Employee("alice", "Alice", 40, (EmployeeSkill("backend", 5), EmployeeSkill("frontend", 3)), org_unit="eng/platform"),
            Employee("bob", "Bob", 40, (EmployeeSkill("frontend", 4),), org_unit="eng/web"),
        ]

    def _allocation(self, allocation_id, employee_id, pct):
        return Allocation(allocation_id, "plan-a", employee_id, None, date(2026, 1, 1), date(2026, 3, 31), pct)

    def test_effective_hours_weighted_by_proficiency(self, employees):
        allocation = self._allocation("a1", "alice", 50)
        rows = {"a1": [AllocationPeriod("a1", "2026-Q1", 260.0, 1.0)]}
        result = aggregate_capacity(employees, [allocation], rows, ["2026-Q1"])
        assert result.hours("2026-Q1", "backend") == pytest.approx(260.0)
        assert result.hours("2026-Q1", "frontend") == pytest.approx(156.0)
        assert result.load_pct[("alice", "2026-Q1")] == pytest.approx(50.0)

    def test_ramp_modifier_scales_hours(self, employees):
        allocation = self._allocation("a1", "alice", 50)
        rows = {"a1": [AllocationPeriod("a1", "2026-Q1", 260.0, 1.0, ramp_modifier=0.5)]}
        result = aggregate_capacity(employees, [allocation], rows, ["2026-Q1"])
        assert result.hours("2026-Q1", "backend") == pytest.approx(130.0)

    def test_unallocated_employee_adds_nothing(self, employees):
        result = aggregate_capacity(employees, [], {}, ["2026-Q1"])
        assert result.total_hours() == 0

    def test_org_scope_is_a_path_prefix(self, employees):
        allocations = [self._allocation("a1", "alice", 50), self._allocation("b1", "bob", 50)]
        rows = {
            "a1": [AllocationPeriod("a1", "2026-Q1", 260.0, 1.0)],
            "b1": [AllocationPeriod("b1", "2026-Q1", 260.0, 1.0)],
        }
        result = aggregate_capacity(employees, allocations, rows, ["2026-Q1"], org_scope="eng/web")
        assert {row["employee_id"] for row in result.breakdown} == {"bob"}
        assert aggregate_capacity(employees, allocations, rows, ["2026-Q1"], org_scope="eng").total_hours() > 0


class TestRamp:
    def test_modifier_blends_familiarity_with_profile(self):
        assert compute_modifier(0.0, (0.5, 0.75, 0.9)) == pytest.approx(0.7166667, rel=1e-4)
        assert compute_modifier(0.5, (0.5, 0.5)) == pytest.approx(0.75)
        assert compute_modifier(1.0, (0.1,)) == 1.0

    def test_modifier_is_clamped(self):
        assert compute_modifier(0.0, (0.0, 0.0)) == 0.1

    def test_disabled_unless_scenario_opts_in(self, store, scenario):
        allocation = Allocation("a1", scenario.id, "alice", "init-pay", date(2026, 1, 1), date(2026, 3, 31), 50)
        assert ramp_breakdown(store, scenario, allocation)["source"] == "ramp_disabled"

    def test_familiar_employee_has_no_ramp(self, store, scenario):
        ramped = replace(scenario, assumptions=ScenarioAssumptions(ramp_enabled=True))
        allocation = Allocation("a1", scenario.id, "alice", "init-pay", date(2026, 1, 1), date(2026, 3, 31), 50)
        assert ramp_breakdown(store, ramped, allocation)["source"] == "ramp_applied"
        store.put_familiarity(EmployeeDomainFamiliarity("alice", "init-pay", 1.0))
        assert ramp_breakdown(store, ramped, allocation) == {"source": "familiar", "modifier": 1.0, "familiarity": 1.0}
