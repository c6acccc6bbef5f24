"""Read-only lookups the transition engine performs against the directory."""
from __future__ import annotations

from typing import List, Optional

from .models import Employee, Workgroup


class EmployeeDirectory:
    """Lists the employees that currently belong to a workgroup."""

    def list_by_workgroup(self, workgroup_id: int) -> List[Employee]:
        """Return active members of ``workgroup_id`` ordered by id.

        The order is stable so that callers picking the first entry get the
        same employee for an unchanged roster.
        """

        return list(
            Employee.objects.filter(workgroup_id=workgroup_id, is_active=True).order_by("id")
        )


class WorkgroupDirectory:
    def get(self, workgroup_id: Optional[int]) -> Optional[Workgroup]:
        if workgroup_id is None:
            return None
        return Workgroup.objects.filter(pk=workgroup_id).first()
