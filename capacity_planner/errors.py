"""Exception types raised by the planning engine.

Transport layers map them once: NotFoundError -> 404, ValidationError -> 400,
WorkflowError -> 422.
"""

from __future__ import annotations

from typing import Dict, Optional


class PlanningError(Exception):
    """Base class for engine errors."""


class NotFoundError(PlanningError, LookupError):
    def __init__(self, resource: str, resource_id: Optional[str] = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(PlanningError, ValueError):
    """Input was well-formed but broke a business rule."""

    def __init__(self, message: str, details: Optional[Dict[str, object]] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class WorkflowError(PlanningError, RuntimeError):
    """Operation not allowed in the entity's current lifecycle state."""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        attempted_status: Optional[str] = None,
    ) -> None:
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(message)

    def to_dict(self) -> Dict[str, object]:
        return {
            "error": str(self),
            "currentStatus": self.current_status,
            "attemptedStatus": self.attempted_status,
        }
