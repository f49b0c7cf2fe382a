from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .allocations import build_allocation_periods
from .allocator import AutoAllocateResult
from .calculator import CalculatorResult
from .curves import distribute_over_periods
from .delta import DeltaResult
from .models import (
    Allocation,
    BaselineSnapshot,
    DOMAIN_COMPLEXITIES,
    DriftAlert,
    DriftThreshold,
    Employee,
    EmployeeDomainFamiliarity,
    EmployeeSkill,
    Initiative,
    PERIOD_TYPES,
    PlanningConfig,
    PriorityRanking,
    Scenario,
    ScenarioAssumptions,
    ScopeItem,
    SkillPool,
    TokenDemand,
    TokenSupply,
)
from .periods import generate_periods
from .store import EntityStore

_EMPLOYEE_REQUIRED_COLUMNS = {"id", "name", "hours_per_week", "skills"}
_ALLOCATION_REQUIRED_COLUMNS = {"id", "scenario_id", "employee_id", "start_date", "end_date", "percentage"}
_CALENDAR_REQUIRED_COLUMNS = {"employee_id", "period_id", "hours_available"}


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = [col for col in sorted(required) if col not in df.columns]
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_blank(value: object) -> bool:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return True
    return isinstance(value, str) and value.strip() == ""


def _parse_bool(value: object, field_name: str = "active") -> bool:
    if isinstance(value, bool):
        return value
    if _is_blank(value):
        raise ValueError(f"{field_name} column contains missing values")
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "t", "1", "yes", "y"}:
            return True
        if lowered in {"false", "f", "0", "no", "n"}:
            return False
    raise ValueError(f"cannot interpret boolean value '{value}'")


def _parse_date(value: object, field_name: str) -> date:
    if isinstance(value, date):
        return value
    if _is_blank(value):
        raise ValueError(f"missing date in '{field_name}'")
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _optional_str(value: object) -> Optional[str]:
    return None if _is_blank(value) else str(value).strip()


def _parse_skills_field(value: object, employee_id: str) -> Tuple[EmployeeSkill, ...]:
    """Parse ``name:proficiency;name:proficiency`` (proficiency defaults to 3)."""
    if _is_blank(value):
        return ()
    skills: List[EmployeeSkill] = []
    for part in str(value).split(";"):
        part = part.strip()
        if not part:
            continue
        name, _, level = part.partition(":")
        try:
            proficiency = int(level) if level.strip() else 3
        except ValueError as exc:
            raise ValueError(f"invalid proficiency '{level}' for {employee_id}") from exc
        skills.append(EmployeeSkill(name.strip(), proficiency))
    return tuple(skills)


def load_capacity_calendar(path: str | Path) -> Dict[str, Dict[str, float]]:
    df = pd.read_csv(path)
    _require_columns(df, _CALENDAR_REQUIRED_COLUMNS, "capacity_calendar.csv")
    try:
        df["hours_available"] = pd.to_numeric(df["hours_available"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'hours_available'") from exc
    if (df["hours_available"] < 0).any():
        raise ValueError("column 'hours_available' contains negative values")
    calendar: Dict[str, Dict[str, float]] = {}
    for row in df.itertuples(index=False):
        calendar.setdefault(str(row.employee_id), {})[str(row.period_id)] = float(row.hours_available)
    return calendar


def load_employees(
    path: str | Path, calendar: Optional[Mapping[str, Mapping[str, float]]] = None
) -> List[Employee]:
    df = pd.read_csv(path)
    if df.empty:
        raise ValueError("employees file is empty")
    _require_columns(df, _EMPLOYEE_REQUIRED_COLUMNS, "employees.csv")
    try:
        df["hours_per_week"] = pd.to_numeric(df["hours_per_week"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'hours_per_week'") from exc
    if (df["hours_per_week"] < 0).any():
        raise ValueError("column 'hours_per_week' contains negative values")
    calendar = calendar or {}
    employees: List[Employee] = []
    for record in df.to_dict(orient="records"):
        employee_id = str(record["id"])
        employees.append(
            Employee(
                id=employee_id,
                name=str(record["name"]),
                hours_per_week=float(record["hours_per_week"]),
                skills=_parse_skills_field(record.get("skills"), employee_id),
                capacity_calendar=dict(calendar.get(employee_id, {})),
                active=_parse_bool(record.get("active", True)),
                org_unit=_optional_str(record.get("org_unit")),
                employment_type=_optional_str(record.get("employment_type")) or "FULL_TIME",
            )
        )
    return employees


def _parse_scope_item(entry: Mapping[str, object], initiative_id: str, index: int) -> ScopeItem:
    demand = entry.get("skill_demand") or {}
    if not isinstance(demand, Mapping):
        raise ValueError(f"skill_demand must be an object in initiative {initiative_id}")
    if "distribution" in entry:
        distribution = entry["distribution"]
        if not isinstance(distribution, Mapping):
            raise ValueError(f"distribution must be an object in initiative {initiative_id}")
        fractions = {str(k): float(v) for k, v in distribution.items()}
    elif "periods" in entry:
        periods = entry["periods"]
        if not isinstance(periods, list):
            raise ValueError(f"periods must be an array in initiative {initiative_id}")
        fractions = distribute_over_periods(entry.get("curve", "uniform"), [str(p) for p in periods])
    else:
        fractions = {}
    return ScopeItem(
        id=str(entry.get("id") or f"{initiative_id}-{index + 1}"),
        name=str(entry.get("name", "")),
        skill_demand=tuple((str(skill), float(hours)) for skill, hours in demand.items()),
        period_distribution=fractions,
    )


def load_initiatives(path: str | Path) -> List[Initiative]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("initiatives file must be a JSON array")
    initiatives: List[Initiative] = []
    for entry in data:
        if not isinstance(entry, dict) or not entry.get("id"):
            raise ValueError("initiative entries must be objects with an id")
        initiative_id = str(entry["id"])
        complexity = str(entry.get("domain_complexity", "MEDIUM"))
        if complexity not in DOMAIN_COMPLEXITIES:
            raise ValueError(f"unsupported domain_complexity '{complexity}' for {initiative_id}")
        scope = entry.get("scope_items") or []
        if not isinstance(scope, list):
            raise ValueError(f"scope_items must be an array for {initiative_id}")
        initiatives.append(
            Initiative(
                id=initiative_id,
                title=str(entry.get("title", initiative_id)),
                status=str(entry.get("status", "PROPOSED")),
                scope_items=tuple(_parse_scope_item(item, initiative_id, idx) for idx, item in enumerate(scope)),
                domain_complexity=complexity,  # type: ignore[arg-type]
            )
        )
    return initiatives


def scenario_from_dict(entry: Mapping[str, object]) -> Scenario:
    if not isinstance(entry, Mapping):
        raise ValueError("scenario entries must be objects")
    if not entry.get("id") or not entry.get("period_id"):
        raise ValueError("scenario entries need id and period_id")
    rankings_raw = entry.get("priority_rankings") or []
    if not isinstance(rankings_raw, list):
        raise ValueError(f"priority_rankings must be an array for scenario {entry['id']}")
    rankings = []
    for item in rankings_raw:
        if not isinstance(item, Mapping) or not item.get("initiative_id"):
            raise ValueError(f"priority_rankings entries need initiative_id in scenario {entry['id']}")
        rank = item.get("rank")
        if not isinstance(rank, int) or isinstance(rank, bool):
            raise ValueError(f"rank must be an integer in scenario {entry['id']}")
        rankings.append(PriorityRanking(str(item["initiative_id"]), rank))
    assumptions = entry.get("assumptions") or {}
    profiles = assumptions.get("ramp_profiles")  # type: ignore[union-attr]
    return Scenario(
        id=str(entry["id"]),
        name=str(entry.get("name", entry["id"])),
        period_id=str(entry["period_id"]),
        status=str(entry.get("status", "DRAFT")),  # type: ignore[arg-type]
        scenario_type=str(entry.get("scenario_type", "WHAT_IF")),  # type: ignore[arg-type]
        priority_rankings=tuple(rankings),
        planning_mode=str(entry.get("planning_mode", "LEGACY")),  # type: ignore[arg-type]
        assumptions=ScenarioAssumptions(
            ramp_enabled=bool(assumptions.get("ramp_enabled", False)),  # type: ignore[union-attr]
            ramp_profiles={k: tuple(v) for k, v in profiles.items()} if profiles else None,
        ),
        extra_period_ids=tuple(str(p) for p in entry.get("extra_period_ids") or ()),  # type: ignore[union-attr]
        revision_of_scenario_id=_optional_str(entry.get("revision_of_scenario_id")),
    )


def scenario_to_dict(scenario: Scenario) -> Dict[str, object]:
    profiles = scenario.assumptions.ramp_profiles
    return {
        "id": scenario.id,
        "name": scenario.name,
        "period_id": scenario.period_id,
        "status": scenario.status,
        "scenario_type": scenario.scenario_type,
        "priority_rankings": [
            {"initiative_id": r.initiative_id, "rank": r.rank} for r in scenario.priority_rankings
        ],
        "planning_mode": scenario.planning_mode,
        "assumptions": {
            "ramp_enabled": scenario.assumptions.ramp_enabled,
            "ramp_profiles": {k: list(v) for k, v in profiles.items()} if profiles else None,
        },
        "extra_period_ids": list(scenario.extra_period_ids),
        "revision_of_scenario_id": scenario.revision_of_scenario_id,
    }


def load_scenarios(path: str | Path) -> List[Scenario]:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("scenarios file must be a JSON array")
    return [scenario_from_dict(entry) for entry in data]


def load_allocations(path: str | Path) -> List[Allocation]:
    df = pd.read_csv(path)
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, "allocations.csv")
    try:
        df["percentage"] = pd.to_numeric(df["percentage"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'percentage'") from exc
    allocations: List[Allocation] = []
    for record in df.to_dict(orient="records"):
        allocations.append(
            Allocation(
                id=str(record["id"]),
                scenario_id=str(record["scenario_id"]),
                employee_id=str(record["employee_id"]),
                initiative_id=_optional_str(record.get("initiative_id")),
                start_date=_parse_date(record["start_date"], "start_date"),
                end_date=_parse_date(record["end_date"], "end_date"),
                percentage=float(record["percentage"]),
            )
        )
    return allocations


def allocations_frame(allocations: Sequence[Allocation]) -> pd.DataFrame:
    columns = ["id", "scenario_id", "employee_id", "initiative_id", "start_date", "end_date", "percentage"]
    rows = [
        {
            "id": a.id,
            "scenario_id": a.scenario_id,
            "employee_id": a.employee_id,
            "initiative_id": a.initiative_id or "",
            "start_date": a.start_date.isoformat(),
            "end_date": a.end_date.isoformat(),
            "percentage": a.percentage,
        }
        for a in allocations
    ]
    return pd.DataFrame(rows, columns=columns)


def load_familiarity(path: str | Path) -> List[EmployeeDomainFamiliarity]:
    df = pd.read_csv(path)
    _require_columns(df, {"employee_id", "initiative_id", "familiarity_level"}, "familiarity.csv")
    return [
        EmployeeDomainFamiliarity(str(r.employee_id), str(r.initiative_id), float(r.familiarity_level))
        for r in df.itertuples(index=False)
    ]


def load_token_ledger(path: str | Path, store: EntityStore) -> None:
    """Load skill pools plus per-scenario token supply and demand."""
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("token ledger file must be a JSON object")
    for pool in data.get("skill_pools", []):
        store.put_skill_pool(SkillPool(str(pool["id"]), str(pool["name"]), bool(pool.get("active", True))))
    for row in data.get("supply", []):
        store.put_token_supply(TokenSupply(str(row["scenario_id"]), str(row["skill_pool_id"]), float(row["tokens"])))
    for row in data.get("demand", []):
        p90 = row.get("tokens_p90")
        store.add_token_demand(
            TokenDemand(
                scenario_id=str(row["scenario_id"]),
                initiative_id=str(row["initiative_id"]),
                skill_pool_id=str(row["skill_pool_id"]),
                tokens_p50=float(row["tokens_p50"]),
                tokens_p90=None if p90 is None else float(p90),
            )
        )


def _number(data: Mapping[str, object], key: str, default: float, minimum: float = 0.0) -> float:
    value = data.get(key, default)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise ValueError(f"{key} must be a number")
    if value < minimum:
        raise ValueError(f"{key} must be at least {minimum}")
    return float(value)


def load_config(path: str | Path) -> PlanningConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    ceiling = _number(data, "allocation_ceiling_pct", 100.0)
    if not 0 < ceiling <= 100:
        raise ValueError("allocation_ceiling_pct must be in (0, 100]")
    granularity = data.get("period_granularity", "QUARTER")
    if granularity not in PERIOD_TYPES:
        raise ValueError(f"period_granularity must be one of {', '.join(PERIOD_TYPES)}")
    ttl = data.get("cache_ttl_seconds", 300)
    if not isinstance(ttl, int) or ttl <= 0:
        raise ValueError("cache_ttl_seconds must be a positive integer")
    years = data.get("period_years")
    if years is None:
        period_years = PlanningConfig().period_years
    else:
        if not isinstance(years, list) or len(years) != 2 or not all(isinstance(y, int) for y in years):
            raise ValueError("period_years must be a [start_year, end_year] pair of integers")
        if years[1] < years[0]:
            raise ValueError("period_years end must not be earlier than start")
        period_years = (years[0], years[1])
    profiles_raw = data.get("ramp_profiles")
    ramp_profiles = dict(PlanningConfig().ramp_profiles)
    if profiles_raw is not None:
        if not isinstance(profiles_raw, dict):
            raise ValueError("ramp_profiles must be an object")
        for complexity, profile in profiles_raw.items():
            if complexity not in DOMAIN_COMPLEXITIES:
                raise ValueError(f"unknown domain complexity '{complexity}' in ramp_profiles")
            if not isinstance(profile, list) or not all(0 <= float(v) <= 1 for v in profile):
                raise ValueError(f"ramp_profiles[{complexity}] must be an array of values in [0, 1]")
            ramp_profiles[complexity] = tuple(float(v) for v in profile)
    return PlanningConfig(
        allocation_ceiling_pct=ceiling,
        period_granularity=granularity,
        hours_per_week=_number(data, "hours_per_week", 40.0),
        cache_ttl_seconds=ttl,
        capacity_threshold_pct=_number(data, "capacity_threshold_pct", 5.0),
        demand_threshold_pct=_number(data, "demand_threshold_pct", 10.0),
        ramp_profiles=ramp_profiles,
        period_years=period_years,
        logging_level=str(data.get("logging_level", "INFO")),
    )


def _snapshot_from_dict(entry: Mapping[str, object]) -> BaselineSnapshot:
    return BaselineSnapshot(
        id=str(entry["id"]),
        scenario_id=str(entry["scenarioId"]),
        snapshot_date=str(entry["snapshotDate"]),
        capacity=tuple(entry.get("capacity", [])),  # type: ignore[arg-type]
        demand=tuple(entry.get("demand", [])),  # type: ignore[arg-type]
        allocations=tuple(entry.get("allocations", [])),  # type: ignore[arg-type]
        summary=dict(entry.get("summary", {})),  # type: ignore[arg-type]
    )


def _alert_from_dict(entry: Mapping[str, object]) -> DriftAlert:
    return DriftAlert(
        id=str(entry["id"]),
        scenario_id=str(entry["scenarioId"]),
        period_id=str(entry["periodId"]),
        status=str(entry["status"]),  # type: ignore[arg-type]
        capacity_drift_pct=float(entry["capacityDriftPct"]),  # type: ignore[arg-type]
        demand_drift_pct=float(entry["demandDriftPct"]),  # type: ignore[arg-type]
        net_gap_drift=float(entry["netGapDrift"]),  # type: ignore[arg-type]
        detected_at=str(entry["detectedAt"]),
        acknowledged_at=_optional_str(entry.get("acknowledgedAt")),
        resolved_at=_optional_str(entry.get("resolvedAt")),
    )


def _read_json_list(path: Path) -> List[Mapping[str, object]]:
    if not path.is_file():
        return []
    data = json.loads(path.read_text())
    if not isinstance(data, list):
        raise ValueError(f"{path.name} must be a JSON array")
    return data


def load_portfolio(project_dir: str | Path, config: PlanningConfig) -> EntityStore:
    """Build an entity store from ``<project_dir>/input`` and ``<project_dir>/state``."""
    root = Path(project_dir)
    input_dir = root / "input"
    state_dir = root / "state"
    store = EntityStore()
    store.add_periods(generate_periods(*config.period_years))

    calendar_path = input_dir / "capacity_calendar.csv"
    calendar = load_capacity_calendar(calendar_path) if calendar_path.is_file() else {}
    for employee in load_employees(input_dir / "employees.csv", calendar):
        store.put_employee(employee)
    for initiative in load_initiatives(input_dir / "initiatives.json"):
        store.put_initiative(initiative)
    familiarity_path = input_dir / "familiarity.csv"
    if familiarity_path.is_file():
        for record in load_familiarity(familiarity_path):
            store.put_familiarity(record)
    scenarios = {s.id: s for s in load_scenarios(input_dir / "scenarios.json")}
    for scenario in scenarios.values():
        store.put_scenario(scenario)

    allocations_path = input_dir / "allocations.csv"
    if allocations_path.is_file():
        for allocation in load_allocations(allocations_path):
            store.put_allocation(allocation)
            rows = build_allocation_periods(store, config, scenarios[allocation.scenario_id], allocation)
            store.replace_allocation_periods(allocation.id, rows)

    ledger_path = input_dir / "token_ledger.json"
    if ledger_path.is_file():
        load_token_ledger(ledger_path, store)

    for entry in _read_json_list(state_dir / "baselines.json"):
        store.add_snapshot(_snapshot_from_dict(entry))
    for entry in _read_json_list(state_dir / "drift_alerts.json"):
        store.put_alert(_alert_from_dict(entry))
    for entry in _read_json_list(state_dir / "drift_thresholds.json"):
        store.put_threshold(
            DriftThreshold(
                capacity_threshold_pct=float(entry["capacityThresholdPct"]),  # type: ignore[arg-type]
                demand_threshold_pct=float(entry["demandThresholdPct"]),  # type: ignore[arg-type]
                period_id=_optional_str(entry.get("periodId")),
            )
        )
    return store


def save_portfolio_state(store: EntityStore, project_dir: str | Path) -> List[Path]:
    """Write back everything the engine can change."""
    root = Path(project_dir)
    input_dir = ensure_directory(root / "input")
    state_dir = ensure_directory(root / "state")
    written: List[Path] = []

    scenarios_path = input_dir / "scenarios.json"
    scenarios_path.write_text(json.dumps([scenario_to_dict(s) for s in store.scenarios()], indent=2) + "\n")
    written.append(scenarios_path)

    allocations: List[Allocation] = []
    for scenario in store.scenarios():
        allocations.extend(store.allocations_for_scenario(scenario.id))
    allocations_path = input_dir / "allocations.csv"
    write_csv(allocations_frame(allocations), allocations_path)
    written.append(allocations_path)

    for name, payload in (
        ("baselines.json", [s.to_dict() for s in store.snapshots()]),
        ("drift_alerts.json", [a.to_dict() for a in store.alerts()]),
        ("drift_thresholds.json", [t.to_dict() for t in store.thresholds()]),
    ):
        path = state_dir / name
        path.write_text(json.dumps(payload, indent=2) + "\n")
        written.append(path)
    return written


def calculator_frames(result: CalculatorResult) -> Dict[str, pd.DataFrame]:
    return {
        "gap_analysis": pd.DataFrame(result.gap_analysis),
        "shortages": pd.DataFrame(
            [{k: v for k, v in row.items() if k != "affectedInitiatives"} for row in result.issues["shortages"]]
        ),
        "overallocations": pd.DataFrame(result.issues["overallocations"]),
        "binding_constraints": pd.DataFrame(result.binding_constraints),
    }


def proposal_frame(result: AutoAllocateResult) -> pd.DataFrame:
    return pd.DataFrame([p.to_dict() for p in result.proposed])


def delta_frames(delta: DeltaResult) -> Dict[str, pd.DataFrame]:
    return {
        "capacity_delta": pd.DataFrame(delta.capacity),
        "demand_delta": pd.DataFrame(delta.demand),
        "allocation_delta": pd.DataFrame(delta.allocations),
    }


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
