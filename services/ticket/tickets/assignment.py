"""Derives the owning workgroup and responsible employee for a step."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from directory.services import EmployeeDirectory, WorkgroupDirectory
from workflows.definitions import StepDefinition


@dataclass(frozen=True)
class Assignment:
    workgroup_id: Optional[int] = None
    responsible_employee_id: Optional[int] = None


class AssignmentResolver:
    """Picks the first active member of the step's workgroup.

    The choice is recomputed from scratch on every transition and never
    balances load: the same roster always yields the same employee.
    """

    def __init__(
        self,
        employees: Optional[EmployeeDirectory] = None,
        workgroups: Optional[WorkgroupDirectory] = None,
    ) -> None:
        self.employees = employees or EmployeeDirectory()
        self.workgroups = workgroups or WorkgroupDirectory()

    def resolve(self, step: StepDefinition) -> Assignment:
        if step.workgroup_id is None:
            return Assignment()
        members = self.employees.list_by_workgroup(step.workgroup_id)
        if not members:
            return Assignment(workgroup_id=step.workgroup_id)
        return Assignment(
            workgroup_id=step.workgroup_id,
            responsible_employee_id=members[0].id,
        )

    def workgroup_name(self, workgroup_id: Optional[int]) -> Optional[str]:
        workgroup = self.workgroups.get(workgroup_id)
        return workgroup.name if workgroup is not None else None
