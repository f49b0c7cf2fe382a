from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Sequence, Tuple

from .models import Initiative, PriorityRanking, Skill

Cell = Tuple[str, Skill]


@dataclass(frozen=True)
class DemandResult:
    """Demand hours keyed by (period id, skill) plus a rank-ordered breakdown."""

    cells: Dict[Cell, float] = field(default_factory=dict)
    breakdown: List[Dict[str, object]] = field(default_factory=list)

    def total_hours(self) -> float:
        return sum(self.cells.values())

    def hours(self, period_id: str, skill: Skill) -> float:
        return self.cells.get((period_id, skill), 0.0)

    def by_skill(self) -> Dict[Skill, float]:
        totals: Dict[Skill, float] = {}
        for (_, skill), hours in self.cells.items():
            totals[skill] = totals.get(skill, 0.0) + hours
        return totals


def aggregate_demand(
    rankings: Sequence[PriorityRanking],
    initiatives: Mapping[str, Initiative],
    period_ids: Sequence[str],
) -> DemandResult:
    """Sum hours x distribution[period] by (period, skill).

    Totals do not depend on ranking order; the breakdown is listed in rank
    order. Rankings naming unknown initiatives contribute nothing.
    """
    cells: Dict[Cell, float] = {}
    breakdown: List[Dict[str, object]] = []
    for ranking in sorted(rankings, key=lambda r: r.rank):
        initiative = initiatives.get(ranking.initiative_id)
        if initiative is None:
            continue
        per_cell: Dict[Cell, float] = {}
        for item in initiative.scope_items:
            for skill, hours in item.skill_demand:
                for period_id in period_ids:
                    contribution = hours * item.distribution(period_id)
                    if contribution == 0:
                        continue
                    key = (period_id, skill)
                    per_cell[key] = per_cell.get(key, 0.0) + contribution
        for (period_id, skill), hours in per_cell.items():
            cells[(period_id, skill)] = cells.get((period_id, skill), 0.0) + hours
            breakdown.append(
                {
                    "initiative_id": initiative.id,
                    "title": initiative.title,
                    "rank": ranking.rank,
                    "period_id": period_id,
                    "skill": skill,
                    "hours": hours,
                }
            )
    return DemandResult(cells=cells, breakdown=breakdown)
