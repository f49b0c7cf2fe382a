"""
Scenario lifecycle gates and allocation writes.

Covers:
  - legal and illegal status transitions
  - APPROVED / LOCKED scenarios reject every allocation write
  - locked initiatives freeze their allocations
  - apply-auto-allocate replaces allocations atomically
  - allocation date and percentage validation
  - ramp recompute obeys the same gate as other allocation writes
"""

from dataclasses import replace
from datetime import date

import pytest

from capacity_planner.engine import PlanningEngine
from capacity_planner.errors import NotFoundError, ValidationError, WorkflowError

from conftest import Q1_END, Q1_START, RecordingDispatcher


def _walk(engine, scenario_id, *statuses):
    for status in statuses:
        engine.transition_status(scenario_id, status)


class TestTransitions:
    def test_happy_path_to_locked(self, engine, store):
        _walk(engine, "plan-a", "REVIEW", "APPROVED", "LOCKED")
        assert store.get_scenario("plan-a").status == "LOCKED"

    def test_review_can_return_to_draft(self, engine, store):
        _walk(engine, "plan-a", "REVIEW", "DRAFT")
        assert store.get_scenario("plan-a").status == "DRAFT"

    def test_skipping_a_step_is_rejected(self, engine):
        with pytest.raises(WorkflowError) as exc_info:
            engine.transition_status("plan-a", "LOCKED")
        assert exc_info.value.current_status == "DRAFT"
        assert exc_info.value.attempted_status == "LOCKED"

    def test_locked_is_terminal(self, engine):
        _walk(engine, "plan-a", "REVIEW", "APPROVED", "LOCKED")
        with pytest.raises(WorkflowError):
            engine.transition_status("plan-a", "REVIEW")

    def test_what_if_lock_takes_no_snapshot(self, engine, store):
        _walk(engine, "plan-a", "REVIEW", "APPROVED", "LOCKED")
        assert store.find_snapshot("plan-a") is None


class TestReadOnlyScenarios:
    @pytest.fixture()
    def proposals(self, engine):
        return [p.to_dict() for p in engine.auto_allocate("plan-a").proposed]

    def test_apply_on_locked_scenario_changes_nothing(self, engine, store, proposals):
        existing = engine.create_allocation("plan-a", "bob", "init-chk", Q1_START, Q1_END, 10)
        _walk(engine, "plan-a", "REVIEW", "APPROVED", "LOCKED")
        with pytest.raises(WorkflowError) as exc_info:
            engine.apply_auto_allocate("plan-a", proposals)
        assert exc_info.value.current_status == "LOCKED"
        assert store.allocations_for_scenario("plan-a") == [existing]

    def test_approved_rejects_manual_writes(self, engine):
        allocation = engine.create_allocation("plan-a", "bob", "init-chk", Q1_START, Q1_END, 10)
        _walk(engine, "plan-a", "REVIEW", "APPROVED")
        with pytest.raises(WorkflowError):
            engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 10)
        with pytest.raises(WorkflowError):
            engine.update_allocation(allocation.id, percentage=30)
        with pytest.raises(WorkflowError):
            engine.delete_allocation(allocation.id)
        with pytest.raises(WorkflowError):
            engine.update_priorities("plan-a", [{"initiativeId": "init-pay", "rank": 1}])

    def test_locked_scenario_keeps_stored_hours_on_ramp_recompute(self, engine, store):
        allocation = engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 50)
        _walk(engine, "plan-a", "REVIEW", "APPROVED", "LOCKED")
        store.put_employee(replace(store.get_employee("alice"), hours_per_week=10))
        with pytest.raises(WorkflowError):
            engine.recompute_ramp("plan-a")
        (row,) = store.allocation_periods(allocation.id)
        assert row.hours_in_period == pytest.approx(260.0)

    def test_draft_ramp_recompute_rebuilds_hours(self, engine, store):
        allocation = engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 50)
        store.put_employee(replace(store.get_employee("alice"), hours_per_week=10))
        assert engine.recompute_ramp("plan-a") == 1
        (row,) = store.allocation_periods(allocation.id)
        assert row.hours_in_period == pytest.approx(65.0)

    def test_locked_initiative_freezes_allocations(self, engine, store):
        store.put_initiative(replace(store.get_initiative("init-pay"), status="IN_EXECUTION"))
        with pytest.raises(WorkflowError):
            engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 10)


class TestApplyAutoAllocate:
    def test_replaces_existing_allocations(self, engine, store, dispatcher):
        engine.create_allocation("plan-a", "bob", "init-pay", Q1_START, Q1_END, 5)
        proposals = engine.auto_allocate("plan-a").proposed
        created = engine.apply_auto_allocate("plan-a", proposals)
        stored = store.allocations_for_scenario("plan-a")
        assert sorted(a.id for a in stored) == sorted(a.id for a in created)
        assert len(stored) == 3
        assert ("recompute", ("plan-a", "allocation_change")) in dispatcher.calls

    def test_materializes_allocation_periods(self, engine, store):
        created = engine.apply_auto_allocate("plan-a", engine.auto_allocate("plan-a").proposed)
        alice_pay = next(a for a in created if a.employee_id == "alice" and a.initiative_id == "init-pay")
        rows = store.allocation_periods(alice_pay.id)
        assert [(r.period_id, r.hours_in_period) for r in rows] == [("2026-Q1", pytest.approx(301.6))]

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_percentage_rejected(self, engine, store, bad):
        proposals = [p.to_dict() for p in engine.auto_allocate("plan-a").proposed]
        proposals[0]["percentage"] = bad
        with pytest.raises(ValidationError):
            engine.apply_auto_allocate("plan-a", proposals)
        assert store.allocations_for_scenario("plan-a") == []

    def test_non_object_entry_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.apply_auto_allocate("plan-a", ["x"])

    def test_write_failure_mid_batch_restores_previous_rows(self, engine, store, monkeypatch):
        existing = engine.create_allocation("plan-a", "bob", "init-chk", Q1_START, Q1_END, 10)
        existing_rows = store.allocation_periods(existing.id)
        proposals = engine.auto_allocate("plan-a").proposed
        real_put = store.put_allocation
        written = []

        def flaky_put(allocation):
            written.append(allocation.id)
            if len(written) == 2:
                raise RuntimeError("storage unavailable")
            return real_put(allocation)

        monkeypatch.setattr(store, "put_allocation", flaky_put)
        with pytest.raises(RuntimeError):
            engine.apply_auto_allocate("plan-a", proposals)
        assert store.allocations_for_scenario("plan-a") == [existing]
        assert store.allocation_periods(existing.id) == existing_rows
        assert store.allocation_periods(written[0]) == ()

    def test_unknown_employee_aborts_whole_batch(self, engine, store):
        existing = engine.create_allocation("plan-a", "bob", "init-chk", Q1_START, Q1_END, 10)
        proposals = [p.to_dict() for p in engine.auto_allocate("plan-a").proposed]
        proposals.append(dict(proposals[0], employeeId="ghost"))
        with pytest.raises(NotFoundError):
            engine.apply_auto_allocate("plan-a", proposals)
        assert store.allocations_for_scenario("plan-a") == [existing]

    def test_empty_proposal_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.apply_auto_allocate("plan-a", [])


class TestAllocationValidation:
    def test_dates_outside_scenario_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, date(2026, 4, 30), 10)

    def test_reversed_dates_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.create_allocation("plan-a", "alice", "init-pay", Q1_END, Q1_START, 10)

    def test_percentage_over_100_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 120)

    def test_unknown_update_field_rejected(self, engine):
        allocation = engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 10)
        with pytest.raises(ValidationError):
            engine.update_allocation(allocation.id, scenario_id="other")

    def test_partial_quarter_prorates_hours(self, engine, store):
        allocation = engine.create_allocation("plan-a", "alice", "init-pay", date(2026, 2, 15), Q1_END, 100)
        (row,) = store.allocation_periods(allocation.id)
        assert row.overlap_ratio == pytest.approx(45 / 90)
        assert row.hours_in_period == pytest.approx(260.0)

    def test_duplicate_rank_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.update_priorities(
                "plan-a",
                [{"initiativeId": "init-pay", "rank": 1}, {"initiativeId": "init-pay", "rank": 2}],
            )

    @pytest.mark.parametrize("entry", ["init-pay", 3, None])
    def test_ranking_entry_must_be_object(self, engine, entry):
        with pytest.raises(ValidationError):
            engine.update_priorities("plan-a", [entry])

    def test_ranking_unknown_initiative_rejected(self, engine):
        with pytest.raises(NotFoundError):
            engine.update_priorities("plan-a", [{"initiativeId": "ghost", "rank": 1}])


def test_dispatcher_failure_does_not_fail_the_write(store, scenario):
    engine = PlanningEngine(store, dispatcher=RecordingDispatcher(fail=True))
    engine.calculate("plan-a")
    engine.create_allocation("plan-a", "alice", "init-pay", Q1_START, Q1_END, 50)
    assert len(store.allocations_for_scenario("plan-a")) == 1
    assert engine.calculate("plan-a").cache_hit is False
