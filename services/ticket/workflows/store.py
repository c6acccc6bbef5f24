"""Durable storage for workflow definitions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from django.db import transaction

from .definitions import StepDraft, WorkflowDefinition, WorkflowDraft
from .exceptions import Violation, WorkflowNotFound, WorkflowValidationError
from .models import Workflow, WorkflowStep

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {
    WorkflowStep.NEW,
    WorkflowStep.IN_PROGRESS,
    WorkflowStep.CLOSED,
    WorkflowStep.CANCELLED,
}


@dataclass
class _PlannedStep:
    step_name: str
    category_code: int
    workgroup_id: Optional[int]
    allowed_next_steps: List[str] = field(default_factory=list)
    allowed_previous_steps: List[str] = field(default_factory=list)
    step_code: Optional[str] = None


def normalize_category(category_code: int) -> int:
    if category_code == WorkflowStep.LEGACY_CANCELLED:
        return WorkflowStep.CANCELLED
    return category_code


class WorkflowDefinitionStore:
    """Reads and writes whole workflow graphs.

    Reads return a :class:`WorkflowDefinition` snapshot stamped with the
    workflow version. Every structural save bumps that version so a reader
    holding an older snapshot can tell the graph moved underneath it.
    """

    def get(self, workflow_id: Optional[int]) -> WorkflowDefinition:
        if workflow_id is None:
            raise WorkflowNotFound()
        workflow = Workflow.objects.prefetch_related("steps").filter(pk=workflow_id).first()
        if workflow is None:
            raise WorkflowNotFound()
        return WorkflowDefinition.from_model(workflow)

    def save(self, draft: WorkflowDraft, workflow_id: Optional[int] = None) -> WorkflowDefinition:
        """Validate ``draft`` and persist it as a new or existing workflow.

        All violations are collected before anything is written. Steps keep
        their code when resubmitted with it or under an existing name; other
        steps get a freshly minted code. References to renamed steps follow
        the rename, references to removed steps are dropped.
        """

        with transaction.atomic():
            workflow: Optional[Workflow] = None
            existing: List[WorkflowStep] = []
            if workflow_id is not None:
                workflow = Workflow.objects.select_for_update().filter(pk=workflow_id).first()
                if workflow is None:
                    raise WorkflowNotFound()
                existing = list(workflow.steps.all())

            name = (draft.name or "").strip()
            violations = self._check_name(name, workflow)
            planned, step_violations = self._plan_steps(draft.steps, existing)
            violations.extend(step_violations)
            if violations:
                logger.info(
                    "Rejected workflow %r with %d violation(s)", name, len(violations)
                )
                raise WorkflowValidationError(violations)

            if workflow is None:
                workflow = Workflow.objects.create(
                    name=name,
                    description=draft.description or "",
                    is_active=True if draft.is_active is None else draft.is_active,
                )
            else:
                workflow.name = name
                workflow.description = draft.description or ""
                if draft.is_active is not None:
                    workflow.is_active = draft.is_active
                workflow.version += 1
                workflow.steps.all().delete()

            for order, plan in enumerate(planned, start=1):
                step_code = plan.step_code
                if step_code is None:
                    workflow.last_step_number += 1
                    step_code = f"{workflow.pk}-{workflow.last_step_number:02d}"
                WorkflowStep.objects.create(
                    workflow=workflow,
                    step_code=step_code,
                    step_name=plan.step_name,
                    order=order,
                    category_code=plan.category_code,
                    workgroup_id=plan.workgroup_id,
                    allowed_next_steps=plan.allowed_next_steps,
                    allowed_previous_steps=plan.allowed_previous_steps,
                )
            workflow.save()

        logger.info(
            "Saved workflow %s (%s) at version %s with %d step(s)",
            workflow.pk,
            workflow.name,
            workflow.version,
            len(planned),
        )
        return self.get(workflow.pk)

    def is_current(self, definition: WorkflowDefinition) -> bool:
        """Whether the stored workflow is still at the snapshot's version."""

        return Workflow.objects.filter(pk=definition.id, version=definition.version).exists()

    def set_active(self, workflow_id: int, active: bool) -> WorkflowDefinition:
        updated = Workflow.objects.filter(pk=workflow_id).update(is_active=active)
        if not updated:
            raise WorkflowNotFound()
        logger.info("Workflow %s active=%s", workflow_id, active)
        return self.get(workflow_id)

    def _check_name(self, name: str, workflow: Optional[Workflow]) -> List[Violation]:
        if not name:
            return [Violation("blank_name", "Workflow name must not be empty.")]
        clashes = Workflow.objects.filter(name=name)
        if workflow is not None:
            clashes = clashes.exclude(pk=workflow.pk)
        if clashes.exists():
            return [Violation("duplicate_name", f"A workflow named {name!r} already exists.")]
        return []

    def _plan_steps(
        self, drafts: List[StepDraft], existing: List[WorkflowStep]
    ) -> Tuple[List[_PlannedStep], List[Violation]]:
        violations: List[Violation] = []
        if not drafts:
            violations.append(Violation("no_steps", "A workflow needs at least one step."))

        by_code = {step.step_code: step for step in existing}
        by_name = {step.step_name: step for step in existing}
        explicit_codes = {draft.step_code for draft in drafts if draft.step_code}

        planned: List[_PlannedStep] = []
        claimed_codes: Set[str] = set()
        renamed: Dict[str, str] = {}

        for position, draft in enumerate(drafts, start=1):
            step_name = (draft.step_name or "").strip()
            label = step_name or f"#{position}"

            if not step_name:
                violations.append(
                    Violation("blank_step_name", f"Step {position} has no name.", label)
                )
            elif any(plan.step_name == step_name for plan in planned):
                violations.append(
                    Violation(
                        "duplicate_step_name",
                        f"Step name {step_name!r} is used more than once.",
                        label,
                    )
                )

            category_code = normalize_category(draft.category_code)
            if category_code not in VALID_CATEGORIES:
                violations.append(
                    Violation(
                        "invalid_category",
                        f"Category {draft.category_code!r} is not one of 10, 20, 30, 40.",
                        label,
                    )
                )

            source: Optional[WorkflowStep] = None
            if draft.step_code:
                source = by_code.get(draft.step_code)
                if source is None:
                    violations.append(
                        Violation(
                            "unknown_step_code",
                            f"Step code {draft.step_code!r} does not belong to this workflow.",
                            label,
                        )
                    )
                elif source.step_code in claimed_codes:
                    violations.append(
                        Violation(
                            "duplicate_step_code",
                            f"Step code {draft.step_code!r} is used more than once.",
                            label,
                        )
                    )
                    source = None
            else:
                candidate = by_name.get(step_name)
                if (
                    candidate is not None
                    and candidate.step_code not in explicit_codes
                    and candidate.step_code not in claimed_codes
                ):
                    source = candidate

            if source is not None:
                claimed_codes.add(source.step_code)
                if step_name and source.step_name != step_name:
                    renamed[source.step_name] = step_name

            planned.append(
                _PlannedStep(
                    step_name=step_name,
                    category_code=category_code,
                    workgroup_id=draft.workgroup_id,
                    allowed_next_steps=list(draft.allowed_next_steps or []),
                    allowed_previous_steps=list(draft.allowed_previous_steps or []),
                    step_code=source.step_code if source is not None else None,
                )
            )

        names = {plan.step_name for plan in planned if plan.step_name}
        removed = {
            step.step_name
            for step in existing
            if step.step_code not in claimed_codes and step.step_name not in names
        }

        for position, plan in enumerate(planned, start=1):
            label = plan.step_name or f"#{position}"
            plan.allowed_next_steps = self._rewrite_references(
                plan.allowed_next_steps, renamed, removed
            )
            plan.allowed_previous_steps = self._rewrite_references(
                plan.allowed_previous_steps, renamed, removed
            )
            for reference in plan.allowed_next_steps + plan.allowed_previous_steps:
                if plan.step_name and reference == plan.step_name:
                    violations.append(
                        Violation(
                            "self_reference",
                            f"Step {label!r} cannot list itself as a transition.",
                            label,
                        )
                    )
                elif reference not in names:
                    violations.append(
                        Violation(
                            "dangling_reference",
                            f"Step {label!r} references unknown step {reference!r}.",
                            label,
                        )
                    )

        return planned, violations

    @staticmethod
    def _rewrite_references(
        references: Iterable[str],
        renamed: Dict[str, str],
        removed: Set[str],
    ) -> List[str]:
        rewritten: List[str] = []
        for reference in references:
            reference = (reference or "").strip()
            # Names refer to the stored graph, so swapped names follow their codes.
            reference = renamed.get(reference, reference)
            if reference in removed:
                continue
            if reference not in rewritten:
                rewritten.append(reference)
        return rewritten
