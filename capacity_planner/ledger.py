from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .errors import WorkflowError
from .store import EntityStore


def _fmt(value: float) -> str:
    return f"{value:g}"


@dataclass(frozen=True)
class PoolEntry:
    pool_name: str
    supply_tokens: float
    demand_p50: float
    demand_p90: Optional[float]

    @property
    def delta(self) -> float:
        return self.supply_tokens - self.demand_p50

    def explanation(self) -> str:
        name = self.pool_name[:1].upper() + self.pool_name[1:]
        if self.supply_tokens == 0 and self.demand_p50 == 0:
            return f"{name} has no supply or demand configured."
        if self.supply_tokens == 0:
            return f"{name} has {_fmt(self.demand_p50)} tokens of demand but no supply allocated."
        if self.demand_p50 == 0:
            return f"{name} has {_fmt(self.supply_tokens)} tokens of supply with no demand against it."
        if self.delta < 0:
            return (
                f"{name} throughput is constrained because demand exceeds "
                f"calibrated capacity by {_fmt(abs(self.delta))} tokens."
            )
        if self.delta == 0:
            return f"{name} supply exactly matches demand at {_fmt(self.supply_tokens)} tokens."
        return f"{name} has {_fmt(self.delta)} tokens of surplus capacity."

    def to_dict(self) -> Dict[str, object]:
        return {
            "poolName": self.pool_name,
            "supplyTokens": self.supply_tokens,
            "demandP50": self.demand_p50,
            "demandP90": self.demand_p90,
            "delta": self.delta,
        }


@dataclass(frozen=True)
class TokenLedger:
    scenario_id: str
    period_id: str
    pools: List[PoolEntry] = field(default_factory=list)

    def pool(self, name: str) -> Optional[PoolEntry]:
        for entry in self.pools:
            if entry.pool_name == name:
                return entry
        return None

    @property
    def binding_constraints(self) -> List[Dict[str, object]]:
        rows = [{"poolName": p.pool_name, "deficit": abs(p.delta)} for p in self.pools if p.delta < 0]
        rows.sort(key=lambda row: -float(row["deficit"]))  # type: ignore[arg-type]
        return rows

    @property
    def explanations(self) -> List[Dict[str, str]]:
        return [
            {"skillPool": p.pool_name, "message": p.explanation()}
            for p in self.pools
            if p.supply_tokens > 0 or p.demand_p50 > 0
        ]

    def to_dict(self) -> Dict[str, object]:
        return {
            "scenarioId": self.scenario_id,
            "periodId": self.period_id,
            "pools": [p.to_dict() for p in self.pools],
            "bindingConstraints": self.binding_constraints,
            "explanations": self.explanations,
        }


def build_token_ledger(store: EntityStore, scenario_id: str) -> TokenLedger:
    """Supply vs demand per active skill pool for a TOKEN-mode scenario.

    P90 demand is only summed when every contributing entry carries one.
    """
    scenario = store.get_scenario(scenario_id)
    if scenario.planning_mode != "TOKEN":
        raise WorkflowError(
            "Token ledger is only available for scenarios using TOKEN planning mode",
            current_status=scenario.planning_mode,
        )
    supply: Dict[str, float] = {}
    for row in store.token_supply(scenario_id):
        supply[row.skill_pool_id] = supply.get(row.skill_pool_id, 0.0) + row.tokens
    p50: Dict[str, float] = {}
    p90: Dict[str, Optional[float]] = {}
    for row in store.token_demand(scenario_id):
        p50[row.skill_pool_id] = p50.get(row.skill_pool_id, 0.0) + row.tokens_p50
        if row.skill_pool_id not in p90:
            p90[row.skill_pool_id] = row.tokens_p90
        else:
            current = p90[row.skill_pool_id]
            p90[row.skill_pool_id] = (
                None if current is None or row.tokens_p90 is None else current + row.tokens_p90
            )
    pools = [
        PoolEntry(
            pool_name=pool.name,
            supply_tokens=supply.get(pool.id, 0.0),
            demand_p50=p50.get(pool.id, 0.0),
            demand_p90=p90.get(pool.id),
        )
        for pool in store.skill_pools()
    ]
    return TokenLedger(scenario_id=scenario_id, period_id=scenario.period_id, pools=pools)
