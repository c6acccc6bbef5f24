"""Immutable snapshots of workflow definitions and the drafts used to save them."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Tuple

from .models import Workflow, WorkflowStep


@dataclass(frozen=True)
class StepDefinition:
    step_code: str
    step_name: str
    order: int
    category_code: int
    workgroup_id: Optional[int] = None
    allowed_next_steps: FrozenSet[str] = frozenset()
    allowed_previous_steps: FrozenSet[str] = frozenset()

    @property
    def is_cancellation(self) -> bool:
        return self.category_code == WorkflowStep.CANCELLED

    @classmethod
    def from_model(cls, step: WorkflowStep) -> "StepDefinition":
        return cls(
            step_code=step.step_code,
            step_name=step.step_name,
            order=step.order,
            category_code=step.category_code,
            workgroup_id=step.workgroup_id,
            allowed_next_steps=frozenset(step.allowed_next_steps or ()),
            allowed_previous_steps=frozenset(step.allowed_previous_steps or ()),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    """The whole step graph of a workflow as read at ``version``."""

    id: int
    name: str
    is_active: bool
    version: int
    steps: Tuple[StepDefinition, ...]

    def step(self, step_code: Optional[str]) -> Optional[StepDefinition]:
        for candidate in self.steps:
            if candidate.step_code == step_code:
                return candidate
        return None

    def first_step(self) -> Optional[StepDefinition]:
        return self.steps[0] if self.steps else None

    @classmethod
    def from_model(cls, workflow: Workflow) -> "WorkflowDefinition":
        steps = sorted(workflow.steps.all(), key=lambda step: (step.order, step.id))
        return cls(
            id=workflow.pk,
            name=workflow.name,
            is_active=workflow.is_active,
            version=workflow.version,
            steps=tuple(StepDefinition.from_model(step) for step in steps),
        )


@dataclass
class StepDraft:
    """A step as submitted by an administrator, before validation."""

    step_name: str
    category_code: int = WorkflowStep.NEW
    workgroup_id: Optional[int] = None
    allowed_next_steps: List[str] = field(default_factory=list)
    allowed_previous_steps: List[str] = field(default_factory=list)
    step_code: Optional[str] = None


@dataclass
class WorkflowDraft:
    name: str
    steps: List[StepDraft] = field(default_factory=list)
    description: str = ""
    # None keeps the stored flag; new workflows start active.
    is_active: Optional[bool] = None
