from __future__ import annotations

from typing import Dict, Mapping, Sequence, Tuple

from .models import Allocation, DEFAULT_RAMP_PROFILES, Scenario
from .store import EntityStore

MIN_RAMP_MODIFIER = 0.1
MAX_RAMP_MODIFIER = 1.0


def average_profile(profile: Sequence[float]) -> float:
    if not profile:
        return 1.0
    return sum(profile) / len(profile)


def compute_modifier(familiarity_level: float, profile: Sequence[float]) -> float:
    """Blend familiarity with the average ramp profile, clamped to [0.1, 1.0]."""
    if familiarity_level >= 1.0:
        return 1.0
    modifier = familiarity_level + (1.0 - familiarity_level) * average_profile(profile)
    return max(MIN_RAMP_MODIFIER, min(MAX_RAMP_MODIFIER, modifier))


def ramp_breakdown(
    store: EntityStore,
    scenario: Scenario,
    allocation: Allocation,
    default_profiles: Mapping[str, Tuple[float, ...]] = DEFAULT_RAMP_PROFILES,
) -> Dict[str, object]:
    if not scenario.assumptions.ramp_enabled:
        return {"source": "ramp_disabled", "modifier": 1.0}
    initiative = store.find_initiative(allocation.initiative_id) if allocation.initiative_id else None
    if initiative is None:
        return {"source": "no_initiative", "modifier": 1.0}
    record = store.familiarity(allocation.employee_id, initiative.id)
    familiarity_level = record.familiarity_level if record else 0.0
    if familiarity_level >= 1.0:
        return {"source": "familiar", "modifier": 1.0, "familiarity": 1.0}
    profiles = scenario.assumptions.ramp_profiles or default_profiles
    profile = profiles.get(initiative.domain_complexity) or profiles.get("MEDIUM") or ()
    return {
        "source": "ramp_applied",
        "familiarity": familiarity_level,
        "domain_complexity": initiative.domain_complexity,
        "profile": list(profile),
        "modifier": compute_modifier(familiarity_level, profile),
    }


def ramp_modifier(
    store: EntityStore,
    scenario: Scenario,
    allocation: Allocation,
    default_profiles: Mapping[str, Tuple[float, ...]] = DEFAULT_RAMP_PROFILES,
) -> float:
    return float(ramp_breakdown(store, scenario, allocation, default_profiles)["modifier"])
