"""Serializers for directory records."""
from __future__ import annotations

from rest_framework import serializers

from .models import Employee, Workgroup


class WorkgroupSerializer(serializers.ModelSerializer):
    class Meta:
        model = Workgroup
        fields = [
            "id",
            "name",
            "description",
            "created_at",
            "updated_at",
        ]


class EmployeeSerializer(serializers.ModelSerializer):
    workgroup_name = serializers.CharField(source="workgroup.name", read_only=True, default=None)

    class Meta:
        model = Employee
        fields = [
            "id",
            "name",
            "email",
            "workgroup",
            "workgroup_name",
            "is_active",
            "created_at",
            "updated_at",
        ]
