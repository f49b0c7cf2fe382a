from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .engine import PlanningEngine
from .errors import PlanningError
from .io_utils import (
    calculator_frames,
    delta_frames,
    ensure_directory,
    load_config,
    load_portfolio,
    proposal_frame,
    save_portfolio_state,
    write_csv,
)
from .models import PlanningConfig, SCENARIO_STATUSES


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Capacity vs demand planning tool (CSV/JSON in, CSV out)."
    )
    parser.add_argument(
        "--project-dir",
        required=True,
        help="Project directory containing input/, state/ and output/ subfolders",
    )
    parser.add_argument("--config", help="Path to configuration JSON file (overrides project-dir default)")
    parser.add_argument(
        "--outdir",
        default=None,
        help="Output directory for generated CSV files (default: <project-dir>/output)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print results without writing output files or saving state",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    calc = sub.add_parser("calculate", help="Demand vs capacity gap analysis for a scenario")
    calc.add_argument("scenario_id")
    calc.add_argument("--org-scope", help="Restrict capacity to an org unit path prefix")

    auto = sub.add_parser("auto-allocate", help="Propose allocations by priority rank")
    auto.add_argument("scenario_id")
    auto.add_argument("--max-pct", type=float, help="Per-employee allocation ceiling (default: config)")
    auto.add_argument("--apply", action="store_true", help="Replace the scenario's allocations with the proposal")

    transition = sub.add_parser("transition", help="Move a scenario to another lifecycle status")
    transition.add_argument("scenario_id")
    transition.add_argument("status", choices=SCENARIO_STATUSES)

    delta = sub.add_parser("delta", help="Compare a locked baseline against live data")
    delta.add_argument("scenario_id")
    delta.add_argument("--revision", action="store_true", help="Treat scenario_id as a revision of a baseline")

    drift = sub.add_parser("drift", help="Check locked baselines for drift")
    drift.add_argument("scenario_id", nargs="?", help="Check one scenario (default: every locked baseline)")

    ledger = sub.add_parser("ledger", help="Token supply vs demand for a TOKEN-mode scenario")
    ledger.add_argument("scenario_id")
    return parser.parse_args(argv)


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(level=level, format="%(levelname)s %(message)s")


def _resolve_config(args: argparse.Namespace, project_dir: Path) -> PlanningConfig:
    if args.config:
        path = Path(args.config)
        if not path.exists():
            raise ValueError(f"config file not found at {path}")
        return load_config(path)
    default_path = project_dir / "input" / "config.json"
    if default_path.exists():
        return load_config(default_path)
    return PlanningConfig()


def _print_calculation(engine: PlanningEngine, args: argparse.Namespace, outdir: Path) -> None:
    result = engine.calculate(args.scenario_id, org_scope=args.org_scope)
    summary = result.summary
    print(f"Scenario {result.scenario_id} ({', '.join(result.period_ids)})")
    print(
        f"- demand {summary['totalDemandHours']}h, capacity {summary['totalCapacityHours']}h, "
        f"gap {summary['overallGap']}h, utilization {summary['overallUtilizationPct']}%"
    )
    for row in result.issues["shortages"]:
        print(f"- shortage [{row['severity']}] {row['skill']} in {row['periodId']}: {row['shortageHours']}h")
    for row in result.issues["overallocations"]:
        print(f"- overallocated {row['employeeName']} in {row['periodId']}: {row['totalPct']}%")
    if args.dry_run:
        return
    for name, frame in calculator_frames(result).items():
        path = outdir / f"{name}.csv"
        write_csv(frame, path)
        print(f"Wrote {path}")


def _run_auto_allocate(engine: PlanningEngine, args: argparse.Namespace, outdir: Path) -> bool:
    result = engine.auto_allocate(args.scenario_id, args.max_pct)
    print("Proposed allocations:")
    if not result.proposed:
        print("- none")
    for p in result.proposed:
        print(f"- {p.employee_name} -> {p.initiative_title}: {p.percentage:g}% ({p.hours:g}h, {p.skill})")
    for warning in result.warnings:
        print(f"warning: {warning}")
    if args.dry_run:
        return False
    path = outdir / "proposed_allocations.csv"
    write_csv(proposal_frame(result), path)
    print(f"Wrote {path}")
    if not args.apply:
        return False
    created = engine.apply_auto_allocate(args.scenario_id, result.proposed)
    print(f"Applied {len(created)} allocation(s) to scenario {args.scenario_id}")
    return True


def _run_delta(engine: PlanningEngine, args: argparse.Namespace, outdir: Path) -> None:
    if args.revision:
        delta = engine.compute_revision_delta(args.scenario_id)
    else:
        delta = engine.compute_delta(args.scenario_id)
    summary = delta.summary
    print(f"Delta for {delta.scenario_id} vs snapshot of {delta.baseline_scenario_id} ({delta.snapshot_date})")
    print(
        f"- capacity drift {summary['totalCapacityDriftHours']}h ({summary['totalCapacityDriftPct']}%), "
        f"demand drift {summary['totalDemandDriftHours']}h ({summary['totalDemandDriftPct']}%)"
    )
    print(
        f"- allocations added {summary['allocationsAdded']}, removed {summary['allocationsRemoved']}, "
        f"modified {summary['allocationsModified']}"
    )
    if args.dry_run:
        return
    for name, frame in delta_frames(delta).items():
        path = outdir / f"{name}.csv"
        write_csv(frame, path)
        print(f"Wrote {path}")


def _run_drift(engine: PlanningEngine, args: argparse.Namespace) -> None:
    results = [engine.check_drift(args.scenario_id)] if args.scenario_id else engine.check_all_baselines()
    if not results:
        print("No locked baselines to check.")
    for item in results:
        if item["driftsDetected"]:
            print(
                f"- {item['scenarioId']}: DRIFT capacity {item['capacityDriftPct']}%, "
                f"demand {item['demandDriftPct']}%"
            )
        elif "reason" in item:
            print(f"- {item['scenarioId']}: skipped ({item['reason']})")
        else:
            print(f"- {item['scenarioId']}: within thresholds")


def _run_ledger(engine: PlanningEngine, args: argparse.Namespace) -> None:
    ledger = engine.token_ledger(args.scenario_id)
    print(f"Token ledger for {ledger.scenario_id} ({ledger.period_id})")
    for pool in ledger.pools:
        p90 = "n/a" if pool.demand_p90 is None else f"{pool.demand_p90:g}"
        print(
            f"- {pool.pool_name}: supply {pool.supply_tokens:g}, demand p50 {pool.demand_p50:g} "
            f"(p90 {p90}), delta {pool.delta:g}"
        )
    for item in ledger.explanations:
        print(f"  {item['message']}")


def main(argv: Optional[List[str]] = None) -> None:
    args = _parse_args(argv)
    project_dir = Path(args.project_dir).resolve()
    try:
        if not project_dir.exists():
            raise ValueError(f"project directory not found: {project_dir}")
        cfg = _resolve_config(args, project_dir)
        _configure_logging(cfg.logging_level)
        store = load_portfolio(project_dir, cfg)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)

    engine = PlanningEngine.with_job_store(store, cfg, run_async=False)
    outdir = Path(args.outdir) if args.outdir else project_dir / "output"
    if not args.dry_run:
        ensure_directory(outdir)

    changed = False
    try:
        if args.command == "calculate":
            _print_calculation(engine, args, outdir)
        elif args.command == "auto-allocate":
            changed = _run_auto_allocate(engine, args, outdir)
        elif args.command == "transition":
            scenario = engine.transition_status(args.scenario_id, args.status)
            print(f"Scenario {scenario.id} is now {scenario.status}")
            changed = True
        elif args.command == "delta":
            _run_delta(engine, args, outdir)
        elif args.command == "drift":
            _run_drift(engine, args)
            changed = True
        elif args.command == "ledger":
            _run_ledger(engine, args)
    except ValueError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(2)
    except PlanningError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    if changed and not args.dry_run:
        for path in save_portfolio_state(engine.store, project_dir):
            print(f"Saved {path}")


if __name__ == "__main__":
    main()
