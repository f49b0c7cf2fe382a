"""
HTTP surface: routes map engine errors to 404 / 400 / 422.
"""

import pytest

from webapp.app import create_app


@pytest.fixture()
def client(engine, monkeypatch):
    monkeypatch.delenv("PORTFOLIO_DIR", raising=False)
    app = create_app(engine)
    app.config["TESTING"] = True
    return app.test_client()


def _allocate(client, **overrides):
    body = {
        "employeeId": "alice",
        "initiativeId": "init-pay",
        "startDate": "2026-01-01",
        "endDate": "2026-03-31",
        "percentage": 50,
    }
    body.update(overrides)
    return client.post("/scenarios/plan-a/allocations", json=body)


class TestCalculations:
    def test_get_calculations(self, client):
        assert _allocate(client).status_code == 201
        res = client.get("/scenarios/plan-a/calculations")
        assert res.status_code == 200
        data = res.get_json()
        assert data["summary"]["totalCapacityHours"] == 416.0
        assert data["cacheHit"] is False
        assert client.get("/scenarios/plan-a/calculations").get_json()["cacheHit"] is True

    def test_unknown_scenario_is_404(self, client):
        res = client.get("/scenarios/nope/calculations")
        assert res.status_code == 404
        assert res.get_json()["error"] == "Scenario id=nope not found"

    def test_capacity_demand_breakdown(self, client):
        _allocate(client)
        data = client.get("/scenarios/plan-a/capacity-demand").get_json()
        assert data["periodIds"] == ["2026-Q1"]
        assert {row["skill"] for row in data["capacity"]} == {"backend", "frontend"}


class TestAllocations:
    def test_invalid_dates_are_400(self, client):
        res = _allocate(client, endDate="2026-06-30")
        assert res.status_code == 400

    def test_missing_percentage_is_400(self, client):
        res = _allocate(client, percentage=None)
        assert res.status_code == 400
        assert res.get_json()["error"] == "percentage must be a number"

    def test_patch_and_delete(self, client):
        allocation_id = _allocate(client).get_json()["id"]
        res = client.patch(f"/allocations/{allocation_id}", json={"percentage": 25})
        assert res.get_json()["percentage"] == 25.0
        assert client.delete(f"/allocations/{allocation_id}").status_code == 204
        assert client.delete(f"/allocations/{allocation_id}").status_code == 404

    def test_auto_allocate_then_apply(self, client, store):
        proposal = client.post("/scenarios/plan-a/auto-allocate", json={}).get_json()
        assert len(proposal["proposedAllocations"]) == 3
        res = client.post(
            "/scenarios/plan-a/auto-allocate/apply",
            json={"proposedAllocations": proposal["proposedAllocations"]},
        )
        assert res.get_json()["created"] == 3
        assert len(store.allocations_for_scenario("plan-a")) == 3

    def test_non_object_entries_are_400(self, client):
        res = client.put("/scenarios/plan-a/priorities", json={"priorityRankings": ["init-pay"]})
        assert res.status_code == 400
        res = client.post("/scenarios/plan-a/auto-allocate/apply", json={"proposedAllocations": ["x"]})
        assert res.status_code == 400

    def test_nan_percentage_is_400(self, client, store):
        body = (
            '{"proposedAllocations": [{"employeeId": "alice", "initiativeId": "init-pay", '
            '"startDate": "2026-01-01", "endDate": "2026-03-31", "percentage": NaN}]}'
        )
        res = client.post(
            "/scenarios/plan-a/auto-allocate/apply", data=body, content_type="application/json"
        )
        assert res.status_code == 400
        assert store.allocations_for_scenario("plan-a") == []

    def test_priorities(self, client):
        res = client.put(
            "/scenarios/plan-a/priorities",
            json={"priorityRankings": [{"initiativeId": "init-chk", "rank": 1}, {"initiativeId": "init-pay", "rank": 2}]},
        )
        assert res.status_code == 200
        assert res.get_json()["priorityRankings"][0] == {"initiativeId": "init-chk", "rank": 1}


class TestLifecycle:
    def test_illegal_transition_is_422(self, client):
        res = client.post("/scenarios/plan-a/status", json={"status": "LOCKED"})
        assert res.status_code == 422
        data = res.get_json()
        assert data["currentStatus"] == "DRAFT"
        assert data["attemptedStatus"] == "LOCKED"

    def test_locked_scenario_rejects_apply_with_422(self, client):
        proposals = client.post("/scenarios/plan-a/auto-allocate", json={}).get_json()["proposedAllocations"]
        for status in ("REVIEW", "APPROVED", "LOCKED"):
            assert client.post("/scenarios/plan-a/status", json={"status": status}).status_code == 200
        res = client.post("/scenarios/plan-a/auto-allocate/apply", json={"proposedAllocations": proposals})
        assert res.status_code == 422
        assert res.get_json()["currentStatus"] == "LOCKED"

    def test_baseline_delta_and_drift(self, client, locked_baseline):
        assert client.get(f"/scenarios/{locked_baseline.id}/baseline").status_code == 200
        delta = client.get(f"/scenarios/{locked_baseline.id}/delta").get_json()
        assert delta["summary"]["totalCapacityDriftHours"] == 0
        drift = client.post(f"/scenarios/{locked_baseline.id}/drift-check").get_json()
        assert drift["driftsDetected"] is False
        assert client.get("/drift/alerts").get_json() == {"alerts": []}


class TestDriftSettings:
    def test_thresholds_round_trip(self, client):
        res = client.put("/drift/thresholds", json={"capacityThresholdPct": 8, "demandThresholdPct": 12})
        assert res.get_json() == {"capacityThresholdPct": 8.0, "demandThresholdPct": 12.0, "periodId": None}
        assert client.get("/drift/thresholds").get_json()["capacityThresholdPct"] == 8.0

    def test_acknowledge_requires_ids(self, client):
        assert client.post("/drift/alerts/acknowledge", json={}).status_code == 400


def test_token_ledger_on_legacy_scenario_is_422(client):
    assert client.get("/scenarios/plan-a/token-ledger").status_code == 422


def test_jobs_listing_without_job_store(client):
    assert client.get("/jobs").get_json() == {"jobs": []}
    assert client.get("/status/abc").status_code == 404
