"""Errors raised by the workflow definition store."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from rest_framework.exceptions import NotFound, ValidationError


@dataclass(frozen=True)
class Violation:
    """One structural problem found while saving a workflow."""

    code: str
    message: str
    step: Optional[str] = None

    def as_dict(self) -> Dict[str, str]:
        payload = {"code": self.code, "message": self.message}
        if self.step is not None:
            payload["step"] = self.step
        return payload


class WorkflowNotFound(NotFound):
    default_detail = "Workflow not found."
    default_code = "workflow_not_found"


class WorkflowValidationError(ValidationError):
    """Carries every violation found in a workflow, not just the first."""

    def __init__(self, violations: Iterable[Violation]) -> None:
        self.violations: List[Violation] = list(violations)
        super().__init__({"errors": [violation.as_dict() for violation in self.violations]})
