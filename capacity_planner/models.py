from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Literal, Mapping, Optional, Tuple


Skill = str

PeriodType = Literal["WEEK", "MONTH", "QUARTER"]
ScenarioStatus = Literal["DRAFT", "REVIEW", "APPROVED", "LOCKED"]
ScenarioType = Literal["WHAT_IF", "BASELINE", "REVISION"]
PlanningMode = Literal["LEGACY", "TOKEN"]
AlertStatus = Literal["ACTIVE", "ACKNOWLEDGED", "RESOLVED"]
DomainComplexity = Literal["LOW", "MEDIUM", "HIGH", "VERY_HIGH"]

PERIOD_TYPES: Tuple[str, ...] = ("WEEK", "MONTH", "QUARTER")
SCENARIO_STATUSES: Tuple[str, ...] = ("DRAFT", "REVIEW", "APPROVED", "LOCKED")
SCENARIO_TYPES: Tuple[str, ...] = ("WHAT_IF", "BASELINE", "REVISION")
DOMAIN_COMPLEXITIES: Tuple[str, ...] = ("LOW", "MEDIUM", "HIGH", "VERY_HIGH")

MAX_PROFICIENCY = 5
WEEKS_PER_QUARTER = 13

# Initiative statuses past which allocations are frozen.
LOCKED_INITIATIVE_STATUSES: Tuple[str, ...] = ("RESOURCING", "IN_EXECUTION", "COMPLETE")

DEFAULT_RAMP_PROFILES: Dict[str, Tuple[float, ...]] = {
    "LOW": (0.9, 1.0, 1.0),
    "MEDIUM": (0.75, 0.9, 1.0),
    "HIGH": (0.5, 0.75, 0.9),
    "VERY_HIGH": (0.3, 0.6, 0.85),
}


@dataclass(frozen=True)
class Period:
    """Calendar bucket; inclusive on both ends."""

    id: str
    type: PeriodType
    start_date: date
    end_date: date
    label: str
    year: int
    ordinal: int
    parent_id: Optional[str] = None

    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    def weeks(self) -> float:
        if self.type == "QUARTER":
            return float(WEEKS_PER_QUARTER)
        return self.days() / 7.0


@dataclass(frozen=True)
class EmployeeSkill:
    name: Skill
    proficiency: int


@dataclass(frozen=True)
class Employee:
    """Staff member with weekly baseline and optional per-period overrides."""

    id: str
    name: str
    hours_per_week: float
    skills: Tuple[EmployeeSkill, ...] = ()
    capacity_calendar: Mapping[str, float] = field(default_factory=dict)
    active: bool = True
    org_unit: Optional[str] = None
    employment_type: str = "FULL_TIME"

    def proficiency(self, skill: Skill) -> Optional[int]:
        for entry in self.skills:
            if entry.name == skill:
                return entry.proficiency
        return None

    def base_hours(self, period: Period) -> float:
        override = self.capacity_calendar.get(period.id)
        if override is not None:
            return float(override)
        return self.hours_per_week * period.weeks()

    def in_org_scope(self, scope: Optional[str]) -> bool:
        if not scope:
            return True
        if not self.org_unit:
            return False
        return self.org_unit == scope or self.org_unit.startswith(scope.rstrip("/") + "/")


@dataclass(frozen=True)
class ScopeItem:
    id: str
    name: str
    skill_demand: Tuple[Tuple[Skill, float], ...] = ()
    period_distribution: Mapping[str, float] = field(default_factory=dict)

    def hours_for(self, skill: Skill) -> float:
        return sum(hours for name, hours in self.skill_demand if name == skill)

    def distribution(self, period_id: str) -> float:
        return float(self.period_distribution.get(period_id, 0.0))


@dataclass(frozen=True)
class Initiative:
    id: str
    title: str
    status: str = "PROPOSED"
    scope_items: Tuple[ScopeItem, ...] = ()
    domain_complexity: DomainComplexity = "MEDIUM"

    def total_skill_demand(self) -> Dict[Skill, float]:
        """Unweighted hours per skill summed across scope items, first-seen order."""
        totals: Dict[Skill, float] = {}
        for item in self.scope_items:
            for skill, hours in item.skill_demand:
                totals[skill] = totals.get(skill, 0.0) + hours
        return totals

    def required_skills(self) -> Tuple[Skill, ...]:
        return tuple(self.total_skill_demand())

    def is_locked(self) -> bool:
        return self.status in LOCKED_INITIATIVE_STATUSES


@dataclass(frozen=True)
class PriorityRanking:
    initiative_id: str
    rank: int

    def to_dict(self) -> Dict[str, object]:
        return {"initiativeId": self.initiative_id, "rank": self.rank}


@dataclass(frozen=True)
class ScenarioAssumptions:
    ramp_enabled: bool = False
    ramp_profiles: Optional[Mapping[str, Tuple[float, ...]]] = None


@dataclass(frozen=True)
class Scenario:
    id: str
    name: str
    period_id: str
    status: ScenarioStatus = "DRAFT"
    scenario_type: ScenarioType = "WHAT_IF"
    priority_rankings: Tuple[PriorityRanking, ...] = ()
    planning_mode: PlanningMode = "LEGACY"
    assumptions: ScenarioAssumptions = field(default_factory=ScenarioAssumptions)
    extra_period_ids: Tuple[str, ...] = ()
    revision_of_scenario_id: Optional[str] = None

    def period_ids(self) -> Tuple[str, ...]:
        return (self.period_id,) + tuple(pid for pid in self.extra_period_ids if pid != self.period_id)

    def sorted_rankings(self) -> Tuple[PriorityRanking, ...]:
        # sorted() is stable, equal ranks keep list position
        return tuple(sorted(self.priority_rankings, key=lambda r: r.rank))


@dataclass(frozen=True)
class Allocation:
    id: str
    scenario_id: str
    employee_id: str
    initiative_id: Optional[str]
    start_date: date
    end_date: date
    percentage: float


@dataclass(frozen=True)
class AllocationPeriod:
    allocation_id: str
    period_id: str
    hours_in_period: float
    overlap_ratio: float
    ramp_modifier: float = 1.0


@dataclass(frozen=True)
class EmployeeDomainFamiliarity:
    employee_id: str
    initiative_id: str
    familiarity_level: float


@dataclass(frozen=True)
class BaselineSnapshot:
    """Frozen serialization of a locked baseline; payloads are plain data."""

    id: str
    scenario_id: str
    snapshot_date: str
    capacity: Tuple[Mapping[str, object], ...]
    demand: Tuple[Mapping[str, object], ...]
    allocations: Tuple[Mapping[str, object], ...]
    summary: Mapping[str, object]

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "scenarioId": self.scenario_id,
            "snapshotDate": self.snapshot_date,
            "capacity": [dict(entry) for entry in self.capacity],
            "demand": [dict(entry) for entry in self.demand],
            "allocations": [dict(entry) for entry in self.allocations],
            "summary": dict(self.summary),
        }


@dataclass(frozen=True)
class DriftAlert:
    id: str
    scenario_id: str
    period_id: str
    status: AlertStatus
    capacity_drift_pct: float
    demand_drift_pct: float
    net_gap_drift: float
    detected_at: str
    acknowledged_at: Optional[str] = None
    resolved_at: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "scenarioId": self.scenario_id,
            "periodId": self.period_id,
            "status": self.status,
            "capacityDriftPct": self.capacity_drift_pct,
            "demandDriftPct": self.demand_drift_pct,
            "netGapDrift": self.net_gap_drift,
            "detectedAt": self.detected_at,
            "acknowledgedAt": self.acknowledged_at,
            "resolvedAt": self.resolved_at,
        }


@dataclass(frozen=True)
class DriftThreshold:
    capacity_threshold_pct: float
    demand_threshold_pct: float
    period_id: Optional[str] = None

    def to_dict(self) -> Dict[str, object]:
        return {
            "capacityThresholdPct": self.capacity_threshold_pct,
            "demandThresholdPct": self.demand_threshold_pct,
            "periodId": self.period_id,
        }


@dataclass(frozen=True)
class SkillPool:
    id: str
    name: str
    active: bool = True


@dataclass(frozen=True)
class TokenSupply:
    scenario_id: str
    skill_pool_id: str
    tokens: float


@dataclass(frozen=True)
class TokenDemand:
    scenario_id: str
    initiative_id: str
    skill_pool_id: str
    tokens_p50: float
    tokens_p90: Optional[float] = None


@dataclass(frozen=True)
class PlanningConfig:
    allocation_ceiling_pct: float = 100.0
    period_granularity: PeriodType = "QUARTER"
    hours_per_week: float = 40.0
    cache_ttl_seconds: int = 300
    capacity_threshold_pct: float = 5.0
    demand_threshold_pct: float = 10.0
    ramp_profiles: Mapping[str, Tuple[float, ...]] = field(
        default_factory=lambda: dict(DEFAULT_RAMP_PROFILES)
    )
    period_years: Tuple[int, int] = (2026, 2026)
    logging_level: str = "INFO"
