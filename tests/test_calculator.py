"""
Scenario calculator: gap analysis, issues, cache behaviour.
"""

import pytest

from capacity_planner.cache import MemoryCache
from capacity_planner.calculator import binding_constraints, shortage_severity, utilization_pct
from capacity_planner.engine import PlanningEngine
from capacity_planner.models import PlanningConfig

from conftest import Q1_END, Q1_START


@pytest.fixture()
def half_alice(engine):
    return engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 50)


class TestGapAnalysis:
    def test_gap_is_capacity_minus_demand(self, engine, half_alice):
        result = engine.calculate("plan-a")
        backend = result.gap_for("2026-Q1", "backend")
        assert backend["demandHours"] == 500.0
        assert backend["capacityHours"] == 260.0
        assert backend["gap"] == -240.0
        frontend = result.gap_for("2026-Q1", "frontend")
        assert frontend["capacityHours"] == 156.0
        assert frontend["gap"] == 56.0

    def test_summary_totals(self, engine, half_alice):
        summary = engine.calculate("plan-a").summary
        assert summary["totalDemandHours"] == 600.0
        assert summary["totalCapacityHours"] == 416.0
        assert summary["overallGap"] == -184.0
        assert summary["periodCount"] == 1
        assert summary["employeeCount"] == 1
        assert summary["initiativeCount"] == 2

    def test_shortage_severity_and_affected_initiatives(self, engine, half_alice):
        shortages = engine.calculate("plan-a").issues["shortages"]
        assert len(shortages) == 1
        shortage = shortages[0]
        assert shortage["skill"] == "backend"
        assert shortage["shortagePct"] == 48.0
        assert shortage["severity"] == "high"
        assert {row["initiativeId"] for row in shortage["affectedInitiatives"]} == {"init-pay", "init-chk"}

    def test_binding_constraints(self, engine, half_alice):
        assert engine.calculate("plan-a").binding_constraints == [{"skill": "backend", "deficit": 240.0}]

    def test_overallocation_detected(self, engine, half_alice):
        engine.create_allocation("plan-a", "alice", "init-chk", Q1_START, Q1_END, 60)
        rows = engine.calculate("plan-a").issues["overallocations"]
        assert rows == [
            {"employeeId": "alice", "employeeName": "Alice", "periodId": "2026-Q1", "totalPct": 110.0, "overBy": 10.0}
        ]

    def test_skill_mismatch_detected(self, engine):
        engine.create_allocation("plan-a", "bob", "init-pay", Q1_START, Q1_END, 10)
        mismatches = engine.calculate("plan-a").issues["skillMismatches"]
        assert mismatches[0]["employeeId"] == "bob"
        assert mismatches[0]["missingSkills"] == ["backend"]

    def test_org_scope_filters_capacity(self, engine, half_alice):
        engine.create_allocation("plan-a", "bob", "init-chk", Q1_START, Q1_END, 20)
        scoped = engine.calculate("plan-a", org_scope="eng/web")
        assert scoped.summary["employeeCount"] == 1
        assert scoped.gap_for("2026-Q1", "backend")["capacityHours"] == 0.0
        assert scoped.summary["totalDemandHours"] == 600.0


class TestCaching:
    def test_second_read_is_a_cache_hit_with_same_numbers(self, engine, half_alice):
        first = engine.calculate("plan-a")
        second = engine.calculate("plan-a")
        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.gap_analysis == first.gap_analysis
        assert second.summary == first.summary

    def test_skip_cache_recomputes(self, engine, half_alice):
        engine.calculate("plan-a")
        assert engine.calculate("plan-a", skip_cache=True).cache_hit is False

    def test_mutation_invalidates_before_returning(self, engine, half_alice):
        before = engine.calculate("plan-a")
        engine.update_allocation(half_alice.id, percentage=100)
        after = engine.calculate("plan-a")
        assert after.cache_hit is False
        assert after.gap_for("2026-Q1", "backend")["capacityHours"] == 520.0
        assert before.gap_for("2026-Q1", "backend")["capacityHours"] == 260.0

    def test_priority_change_refreshes_and_schedules(self, engine, dispatcher):
        engine.calculate("plan-a")
        engine.update_priorities("plan-a", [{"initiativeId": "init-pay", "rank": 1}])
        result = engine.calculate("plan-a")
        assert result.cache_hit is False
        assert result.summary["totalDemandHours"] == 300.0
        assert ("recompute", ("plan-a", "priority_change")) in dispatcher.calls

    def test_cache_entries_expire(self, store, scenario):
        now = [0.0]
        engine = PlanningEngine(store, PlanningConfig(cache_ttl_seconds=10), cache=MemoryCache(clock=lambda: now[0]))
        engine.calculate("plan-a")
        now[0] = 11.0
        assert engine.calculate("plan-a").cache_hit is False


def test_shortage_severity_bands():
    assert [shortage_severity(p) for p in (60, 50, 30, 15, 5)] == ["critical", "critical", "high", "medium", "low"]


def test_utilization_handles_zero_capacity():
    assert utilization_pct(100, 0) == 100.0
    assert utilization_pct(0, 0) == 0.0
    assert utilization_pct(50, 200) == 25.0


def test_binding_constraints_sorted_by_deficit():
    rows = binding_constraints({"a": 100, "b": 300, "c": 10}, {"a": 50, "b": 100, "c": 20})
    assert rows == [{"skill": "b", "deficit": 200}, {"skill": "a", "deficit": 50}]
