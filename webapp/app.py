from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from typing import Dict, Optional

from dateutil import parser as dateparser
from flask import Flask, jsonify, request

from capacity_planner.engine import PlanningEngine
from capacity_planner.errors import NotFoundError, ValidationError, WorkflowError
from capacity_planner.io_utils import load_config, load_portfolio, save_portfolio_state
from capacity_planner.jobs import JobStore
from capacity_planner.models import PlanningConfig
from capacity_planner.periods import generate_periods
from capacity_planner.store import EntityStore


def _resolve_portfolio_dir() -> Optional[Path]:
    env_value = os.getenv("PORTFOLIO_DIR")
    if env_value:
        return Path(env_value).expanduser().resolve()
    return None


def _build_engine(portfolio_dir: Optional[Path]) -> PlanningEngine:
    if portfolio_dir is None:
        config = PlanningConfig()
        store = EntityStore()
        store.add_periods(generate_periods(*config.period_years))
        return PlanningEngine.with_job_store(store, config)
    config_path = portfolio_dir / "input" / "config.json"
    config = load_config(config_path) if config_path.is_file() else PlanningConfig()
    return PlanningEngine.with_job_store(load_portfolio(portfolio_dir, config), config)


def _body() -> Dict[str, object]:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("request body must be a JSON object")
    return data


def _date_field(data: Dict[str, object], name: str) -> date:
    value = data.get(name)
    if not value:
        raise ValidationError(f"{name} is required")
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValidationError(f"invalid date in '{name}': {value}") from exc


def _number_field(data: Dict[str, object], name: str) -> float:
    value = data.get(name)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValidationError(f"{name} must be a number")
    return float(value)


def _flag(name: str) -> bool:
    return request.args.get(name, "").lower() in {"1", "true", "yes"}


def create_app(engine: Optional[PlanningEngine] = None) -> Flask:
    app = Flask(__name__)
    portfolio_dir = _resolve_portfolio_dir()
    if engine is None:
        engine = _build_engine(portfolio_dir)
    app.config["ENGINE"] = engine
    app.config["PORTFOLIO_DIR"] = portfolio_dir

    def _persist() -> None:
        if portfolio_dir is not None:
            save_portfolio_state(engine.store, portfolio_dir)

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc: NotFoundError):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(ValidationError)
    def handle_validation(exc: ValidationError):
        return jsonify({"error": str(exc), "details": exc.details}), 400

    @app.errorhandler(WorkflowError)
    def handle_workflow(exc: WorkflowError):
        return jsonify(exc.to_dict()), 422

    # scenarios

    @app.get("/scenarios")
    def list_scenarios():
        return jsonify(
            {
                "scenarios": [
                    {
                        "id": s.id,
                        "name": s.name,
                        "periodId": s.period_id,
                        "status": s.status,
                        "scenarioType": s.scenario_type,
                        "planningMode": s.planning_mode,
                        "priorityRankings": [r.to_dict() for r in s.sorted_rankings()],
                    }
                    for s in engine.store.scenarios()
                ]
            }
        )

    @app.get("/scenarios/<scenario_id>/calculations")
    def get_calculations(scenario_id: str):
        result = engine.calculate(
            scenario_id, skip_cache=_flag("skipCache"), org_scope=request.args.get("orgScope")
        )
        return jsonify(result.to_dict())

    @app.get("/scenarios/<scenario_id>/capacity-demand")
    def get_capacity_demand(scenario_id: str):
        return jsonify(engine.capacity_demand(scenario_id, org_scope=request.args.get("orgScope")))

    @app.put("/scenarios/<scenario_id>/priorities")
    def put_priorities(scenario_id: str):
        rankings = _body().get("priorityRankings")
        if not isinstance(rankings, list):
            raise ValidationError("priorityRankings must be an array")
        scenario = engine.update_priorities(scenario_id, rankings)
        _persist()
        return jsonify({"priorityRankings": [r.to_dict() for r in scenario.sorted_rankings()]})

    @app.post("/scenarios/<scenario_id>/status")
    def post_status(scenario_id: str):
        status = _body().get("status")
        if not isinstance(status, str):
            raise ValidationError("status is required")
        scenario = engine.transition_status(scenario_id, status)  # type: ignore[arg-type]
        _persist()
        return jsonify({"id": scenario.id, "status": scenario.status})

    @app.post("/scenarios/<scenario_id>/revisions")
    def post_revision(scenario_id: str):
        name = _body().get("name")
        revision = engine.create_revision(scenario_id, str(name) if name else None)
        _persist()
        return jsonify({"id": revision.id, "name": revision.name, "revisionOfScenarioId": scenario_id}), 201

    # allocations

    @app.post("/scenarios/<scenario_id>/auto-allocate")
    def post_auto_allocate(scenario_id: str):
        data = _body()
        ceiling = data.get("maxAllocationPercentage")
        if ceiling is not None:
            ceiling = _number_field(data, "maxAllocationPercentage")
        result = engine.auto_allocate(scenario_id, ceiling)
        return jsonify(result.to_dict())

    @app.post("/scenarios/<scenario_id>/auto-allocate/apply")
    def post_apply(scenario_id: str):
        proposals = _body().get("proposedAllocations")
        if not isinstance(proposals, list):
            raise ValidationError("proposedAllocations must be an array")
        created = engine.apply_auto_allocate(scenario_id, proposals)
        _persist()
        return jsonify({"created": len(created), "allocationIds": [a.id for a in created]})

    @app.post("/scenarios/<scenario_id>/allocations")
    def post_allocation(scenario_id: str):
        data = _body()
        employee_id = data.get("employeeId")
        if not employee_id:
            raise ValidationError("employeeId is required")
        initiative_id = data.get("initiativeId")
        allocation = engine.create_allocation(
            scenario_id,
            str(employee_id),
            str(initiative_id) if initiative_id else None,
            _date_field(data, "startDate"),
            _date_field(data, "endDate"),
            _number_field(data, "percentage"),
        )
        _persist()
        return jsonify({"id": allocation.id}), 201

    @app.patch("/allocations/<allocation_id>")
    def patch_allocation(allocation_id: str):
        data = _body()
        changes: Dict[str, object] = {}
        if "startDate" in data:
            changes["start_date"] = _date_field(data, "startDate")
        if "endDate" in data:
            changes["end_date"] = _date_field(data, "endDate")
        if "percentage" in data:
            changes["percentage"] = _number_field(data, "percentage")
        if "initiativeId" in data:
            changes["initiative_id"] = data["initiativeId"] or None
        allocation = engine.update_allocation(allocation_id, **changes)
        _persist()
        return jsonify({"id": allocation.id, "percentage": allocation.percentage})

    @app.delete("/allocations/<allocation_id>")
    def delete_allocation(allocation_id: str):
        engine.delete_allocation(allocation_id)
        _persist()
        return "", 204

    @app.post("/scenarios/<scenario_id>/ramp/recompute")
    def post_recompute_ramp(scenario_id: str):
        return jsonify({"updated": engine.recompute_ramp(scenario_id)})

    # baseline, delta, drift

    @app.get("/scenarios/<scenario_id>/baseline")
    def get_baseline(scenario_id: str):
        return jsonify(engine.get_snapshot(scenario_id).to_dict())

    @app.get("/scenarios/<scenario_id>/delta")
    def get_delta(scenario_id: str):
        return jsonify(engine.compute_delta(scenario_id).to_dict())

    @app.get("/scenarios/<scenario_id>/revision-delta")
    def get_revision_delta(scenario_id: str):
        return jsonify(engine.compute_revision_delta(scenario_id).to_dict())

    @app.post("/scenarios/<scenario_id>/drift-check")
    def post_drift_check(scenario_id: str):
        result = engine.check_drift(scenario_id)
        _persist()
        return jsonify(result)

    @app.post("/drift/check-all")
    def post_check_all():
        if _flag("async") and engine.schedule_drift_check():
            return jsonify({"scheduled": True}), 202
        results = engine.check_all_baselines()
        _persist()
        return jsonify({"results": results})

    @app.get("/drift/thresholds")
    def get_thresholds():
        return jsonify(engine.get_thresholds(request.args.get("periodId")).to_dict())

    @app.put("/drift/thresholds")
    def put_thresholds():
        data = _body()
        period_id = data.get("periodId")
        threshold = engine.update_thresholds(
            _number_field(data, "capacityThresholdPct"),
            _number_field(data, "demandThresholdPct"),
            str(period_id) if period_id else None,
        )
        _persist()
        return jsonify(threshold.to_dict())

    @app.get("/drift/alerts")
    def get_alerts():
        alerts = engine.get_alerts(
            scenario_id=request.args.get("scenarioId"),
            status=request.args.get("status"),
            period_id=request.args.get("periodId"),
        )
        return jsonify({"alerts": [a.to_dict() for a in alerts]})

    def _alert_ids() -> list:
        ids = _body().get("alertIds")
        if not isinstance(ids, list) or not ids:
            raise ValidationError("alertIds must be a non-empty array")
        return [str(i) for i in ids]

    @app.post("/drift/alerts/acknowledge")
    def post_acknowledge():
        count = engine.acknowledge_alerts(_alert_ids())
        _persist()
        return jsonify({"acknowledged": count})

    @app.post("/drift/alerts/resolve")
    def post_resolve():
        count = engine.resolve_alerts(_alert_ids())
        _persist()
        return jsonify({"resolved": count})

    # token ledger

    @app.get("/scenarios/<scenario_id>/token-ledger")
    def get_token_ledger(scenario_id: str):
        return jsonify(engine.token_ledger(scenario_id).to_dict())

    # background jobs

    job_store = engine.dispatcher if isinstance(engine.dispatcher, JobStore) else None

    @app.get("/jobs")
    def list_jobs():
        jobs = job_store.list_jobs() if job_store is not None else []
        return jsonify({"jobs": [job.to_dict() for job in jobs]})

    @app.get("/status/<job_id>")
    def status_job(job_id: str):
        job = job_store.get_job(job_id) if job_store is not None else None
        if not job:
            return jsonify({"error": "job not found"}), 404
        return jsonify(job.to_dict())

    return app


if __name__ == "__main__":
    port = int(os.getenv("PORT", "5000"))
    create_app().run(debug=True, port=port)
