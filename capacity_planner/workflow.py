from __future__ import annotations

from typing import Dict, Tuple

from .errors import WorkflowError
from .models import Initiative, Scenario, ScenarioStatus

SCENARIO_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "DRAFT": ("REVIEW",),
    "REVIEW": ("DRAFT", "APPROVED"),
    "APPROVED": ("REVIEW", "LOCKED"),
    "LOCKED": (),
}

READ_ONLY_STATUSES: Tuple[str, ...] = ("APPROVED", "LOCKED")


def is_scenario_editable(scenario: Scenario) -> bool:
    return scenario.status not in READ_ONLY_STATUSES


def assert_scenario_editable(scenario: Scenario, action: str) -> None:
    if not is_scenario_editable(scenario):
        raise WorkflowError(
            f"Scenario {scenario.id} is {scenario.status}; cannot {action}",
            current_status=scenario.status,
        )


def assert_initiative_editable(initiative: Initiative) -> None:
    if initiative.is_locked():
        raise WorkflowError(
            f"Initiative {initiative.id} is {initiative.status}; allocations are frozen",
            current_status=initiative.status,
        )


def check_transition(scenario: Scenario, target: ScenarioStatus) -> None:
    allowed = SCENARIO_TRANSITIONS.get(scenario.status, ())
    if target not in allowed:
        raise WorkflowError(
            f"Cannot move scenario {scenario.id} from {scenario.status} to {target}",
            current_status=scenario.status,
            attempted_status=target,
        )
