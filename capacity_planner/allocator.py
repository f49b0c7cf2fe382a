"""Greedy priority-ordered matcher.

Initiatives are served in ascending rank; for each skill the most proficient
employees with remaining budget are drawn first. The result is deterministic
for a fixed ranking order and never touches stored state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from dateutil import parser as dateparser

from .errors import ValidationError
from .models import Employee, Initiative, Period, PriorityRanking, Skill
from .periods import span_of

EPSILON = 1e-6


@dataclass(frozen=True)
class ProposedAllocation:
    employee_id: str
    initiative_id: str
    percentage: float
    hours: float
    start_date: date
    end_date: date
    skill: str = ""
    employee_name: str = ""
    initiative_title: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "employeeId": self.employee_id,
            "employeeName": self.employee_name,
            "initiativeId": self.initiative_id,
            "initiativeTitle": self.initiative_title,
            "skill": self.skill,
            "percentage": self.percentage,
            "hours": self.hours,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "ProposedAllocation":
        if not isinstance(data, Mapping):
            raise ValidationError("proposed allocation entries must be objects", {"entry": data})

        def _pick(*names: str) -> object:
            for name in names:
                if name in data and data[name] is not None:
                    return data[name]
            return None

        employee_id = _pick("employeeId", "employee_id")
        initiative_id = _pick("initiativeId", "initiative_id")
        start_raw = _pick("startDate", "start_date")
        end_raw = _pick("endDate", "end_date")
        percentage = _pick("percentage")
        if not employee_id or not initiative_id or start_raw is None or end_raw is None or percentage is None:
            raise ValidationError(
                "proposed allocation requires employeeId, initiativeId, startDate, endDate and percentage",
                {"entry": dict(data)},
            )
        try:
            start = start_raw if isinstance(start_raw, date) else dateparser.isoparse(str(start_raw)).date()
            end = end_raw if isinstance(end_raw, date) else dateparser.isoparse(str(end_raw)).date()
            pct = float(percentage)  # type: ignore[arg-type]
            hours = float(_pick("hours") or 0.0)  # type: ignore[arg-type]
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid proposed allocation: {exc}", {"entry": dict(data)}) from exc
        return cls(
            employee_id=str(employee_id),
            initiative_id=str(initiative_id),
            percentage=pct,
            hours=hours,
            start_date=start,
            end_date=end,
            skill=str(_pick("skill") or ""),
            employee_name=str(_pick("employeeName", "employee_name") or ""),
            initiative_title=str(_pick("initiativeTitle", "initiative_title") or ""),
        )


@dataclass(frozen=True)
class Shortage:
    initiative_id: str
    initiative_title: str
    rank: int
    skill: Skill
    shortage_hours: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "initiativeId": self.initiative_id,
            "initiativeTitle": self.initiative_title,
            "rank": self.rank,
            "skill": self.skill,
            "shortageHours": self.shortage_hours,
        }


@dataclass(frozen=True)
class AutoAllocateResult:
    proposed: Tuple[ProposedAllocation, ...]
    coverage: Tuple[Dict[str, object], ...]
    warnings: Tuple[str, ...]
    shortages: Tuple[Shortage, ...] = ()
    summary: Dict[str, object] = field(default_factory=dict)

    def coverage_for(self, initiative_id: str) -> Optional[Dict[str, object]]:
        for entry in self.coverage:
            if entry["initiativeId"] == initiative_id:
                return entry
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            "proposedAllocations": [p.to_dict() for p in self.proposed],
            "coverage": [dict(entry) for entry in self.coverage],
            "warnings": list(self.warnings),
            "shortages": [s.to_dict() for s in self.shortages],
            "summary": dict(self.summary),
        }


def _skill_index(employees: Sequence[Employee]) -> Dict[Skill, List[Tuple[Employee, int]]]:
    index: Dict[Skill, List[Tuple[Employee, int]]] = {}
    for employee in employees:
        for skill in employee.skills:
            index.setdefault(skill.name, []).append((employee, skill.proficiency))
    for skill in index:
        # stable: equal proficiency keeps roster order
        index[skill].sort(key=lambda entry: -entry[1])
    return index


def _coverage_pct(allocated: float, demand: float) -> int:
    if demand <= EPSILON:
        return 100
    return min(100, round(allocated / demand * 100))


def _consolidate(rows: Sequence[ProposedAllocation]) -> List[ProposedAllocation]:
    merged: Dict[Tuple[str, str], ProposedAllocation] = {}
    for row in rows:
        key = (row.employee_id, row.initiative_id)
        existing = merged.get(key)
        if existing is None:
            merged[key] = row
            continue
        merged[key] = ProposedAllocation(
            employee_id=row.employee_id,
            initiative_id=row.initiative_id,
            percentage=existing.percentage + row.percentage,
            hours=round(existing.hours + row.hours, 2),
            start_date=existing.start_date,
            end_date=existing.end_date,
            skill=f"{existing.skill}, {row.skill}",
            employee_name=existing.employee_name,
            initiative_title=existing.initiative_title,
        )
    return list(merged.values())


def propose_allocations(
    rankings: Sequence[PriorityRanking],
    initiatives: Mapping[str, Initiative],
    employees: Sequence[Employee],
    periods: Sequence[Period],
    ceiling_pct: float = 100.0,
) -> AutoAllocateResult:
    """Build an allocation proposal without writing anything.

    Skill demand is the initiative's total scope-item hours (not weighted by
    period distribution). Each draw takes
    ``min(budget, ceil(remaining / available * 100))`` percent of an
    employee's available hours across ``periods``.
    """
    if not rankings:
        raise ValidationError("scenario has no priority rankings to allocate against")
    if ceiling_pct <= 0 or ceiling_pct > 100:
        raise ValidationError("max allocation percentage must be in (0, 100]")
    start, end = span_of(periods)
    active = [e for e in employees if e.active]
    index = _skill_index(active)
    available_hours = {e.id: sum(e.base_hours(p) for p in periods) for e in active}
    budget = {e.id: float(ceiling_pct) for e in active}

    raw: List[ProposedAllocation] = []
    coverage: List[Dict[str, object]] = []
    warnings: List[str] = []
    shortages: List[Shortage] = []

    for ranking in sorted(rankings, key=lambda r: r.rank):
        initiative = initiatives.get(ranking.initiative_id)
        if initiative is None:
            warnings.append(f'Initiative "{ranking.initiative_id}" (rank {ranking.rank}) not found; skipped')
            continue
        skill_rows: List[Dict[str, object]] = []
        for skill, demand in initiative.total_skill_demand().items():
            if demand <= EPSILON:
                skill_rows.append({"skill": skill, "demandHours": 0.0, "allocatedHours": 0.0, "coveragePct": 100})
                continue
            remaining = demand
            candidates = index.get(skill, [])
            if not candidates:
                warnings.append(
                    f'No employees with skill "{skill}" for initiative "{initiative.title}" (rank {ranking.rank})'
                )
            for employee, _ in candidates:
                if remaining <= EPSILON:
                    break
                left = budget[employee.id]
                total = available_hours[employee.id]
                if left <= EPSILON or total <= EPSILON:
                    continue
                pct = min(left, math.ceil(remaining / total * 100))
                hours = total * pct / 100
                budget[employee.id] = left - pct
                remaining -= hours
                raw.append(
                    ProposedAllocation(
                        employee_id=employee.id,
                        initiative_id=initiative.id,
                        percentage=pct,
                        hours=round(hours, 2),
                        start_date=start,
                        end_date=end,
                        skill=skill,
                        employee_name=employee.name,
                        initiative_title=initiative.title,
                    )
                )
            allocated = demand - max(0.0, remaining)
            if remaining > EPSILON:
                shortage = round(remaining, 2)
                shortages.append(Shortage(initiative.id, initiative.title, ranking.rank, skill, shortage))
                if candidates:
                    warnings.append(
                        f'Insufficient capacity for skill "{skill}" on initiative "{initiative.title}" '
                        f"(rank {ranking.rank}): {round(remaining)}h shortage"
                    )
            skill_rows.append(
                {
                    "skill": skill,
                    "demandHours": round(demand, 2),
                    "allocatedHours": round(allocated, 2),
                    "coveragePct": _coverage_pct(allocated, demand),
                }
            )
        total_demand = sum(float(row["demandHours"]) for row in skill_rows)
        total_allocated = sum(float(row["allocatedHours"]) for row in skill_rows)
        coverage.append(
            {
                "initiativeId": initiative.id,
                "initiativeTitle": initiative.title,
                "rank": ranking.rank,
                "skills": skill_rows,
                "overallCoveragePct": _coverage_pct(total_allocated, total_demand),
            }
        )

    proposed = _consolidate(raw)
    summary = {
        "totalAllocations": len(proposed),
        "employeesUsed": len({p.employee_id for p in proposed}),
        "initiativesCovered": len({p.initiative_id for p in proposed}),
        "totalHoursAllocated": round(sum(p.hours for p in proposed), 2),
    }
    return AutoAllocateResult(
        proposed=tuple(proposed),
        coverage=tuple(coverage),
        warnings=tuple(warnings),
        shortages=tuple(shortages),
        summary=summary,
    )
