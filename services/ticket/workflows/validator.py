"""Decides whether a ticket may move from one workflow step to another.

The rules, checked in order:

1. moving to the step the ticket is already in is denied;
2. any step in the Cancelled category (40) can be reached from anywhere;
3. steps whose ``order`` differs by one can always reach each other;
4. a jump is allowed when the source lists the target in
   ``allowed_next_steps`` or the target lists the source in
   ``allowed_previous_steps``. The lists are not symmetric.

Everything else is denied. Denial is an ordinary return value.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Union

from .definitions import StepDefinition, WorkflowDefinition

NO_OP = "no-op transition"
NOT_PERMITTED = "transition not permitted by workflow"
UNKNOWN_TARGET = "unknown target step"


@dataclass(frozen=True)
class Allow:
    allowed = True


@dataclass(frozen=True)
class Deny:
    reason: str
    allowed = False


Decision = Union[Allow, Deny]


class TransitionValidator:
    def is_allowed(
        self,
        workflow: WorkflowDefinition,
        from_step_code: Optional[str],
        to_step_code: str,
    ) -> Decision:
        if from_step_code == to_step_code:
            return Deny(NO_OP)

        to_step = workflow.step(to_step_code)
        if to_step is None:
            return Deny(UNKNOWN_TARGET)

        if to_step.is_cancellation:
            return Allow()

        # A ticket parked in a code this workflow no longer knows can only be cancelled.
        from_step = workflow.step(from_step_code)
        if from_step is None:
            return Deny(NOT_PERMITTED)

        if abs(to_step.order - from_step.order) == 1:
            return Allow()

        if (
            to_step.step_name in from_step.allowed_next_steps
            or from_step.step_name in to_step.allowed_previous_steps
        ):
            return Allow()

        return Deny(NOT_PERMITTED)

    def allowed_steps(
        self, workflow: WorkflowDefinition, from_step_code: Optional[str]
    ) -> List[StepDefinition]:
        """Every step reachable from ``from_step_code``, in workflow order."""

        return [
            step
            for step in workflow.steps
            if self.is_allowed(workflow, from_step_code, step.step_code).allowed
        ]
