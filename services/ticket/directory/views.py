"""API views for the workgroup and employee directory."""
from __future__ import annotations

from rest_framework import viewsets
from rest_framework.filters import OrderingFilter, SearchFilter

from .models import Employee, Workgroup
from .serializers import EmployeeSerializer, WorkgroupSerializer


class WorkgroupViewSet(viewsets.ModelViewSet):
    queryset = Workgroup.objects.all()
    serializer_class = WorkgroupSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "created_at"]
    ordering = ["name"]


class EmployeeViewSet(viewsets.ModelViewSet):
    queryset = Employee.objects.select_related("workgroup").all()
    serializer_class = EmployeeSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["name", "email"]
    ordering_fields = ["name", "created_at"]
    ordering = ["name"]

    def get_queryset(self):  # type: ignore[override]
        queryset = super().get_queryset()
        workgroup = self.request.query_params.get("workgroup")
        if workgroup:
            queryset = queryset.filter(workgroup_id=workgroup)
        return queryset
