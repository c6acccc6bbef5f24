"""Serializers for workflow entities."""
from __future__ import annotations

from typing import Any, Dict, Optional

from rest_framework import serializers

from .definitions import StepDraft, WorkflowDraft
from .models import Workflow, WorkflowStep
from .store import WorkflowDefinitionStore


class WorkflowStepSerializer(serializers.ModelSerializer):
    # Structural rules live in the store so every violation is reported together.
    step_code = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    step_name = serializers.CharField(max_length=255, allow_blank=True)
    category_code = serializers.IntegerField(default=WorkflowStep.NEW)
    workgroup_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    allowed_next_steps = serializers.ListField(
        child=serializers.CharField(allow_blank=True), required=False, default=list
    )
    allowed_previous_steps = serializers.ListField(
        child=serializers.CharField(allow_blank=True), required=False, default=list
    )

    class Meta:
        model = WorkflowStep
        fields = [
            "step_code",
            "step_name",
            "order",
            "category_code",
            "workgroup_id",
            "allowed_next_steps",
            "allowed_previous_steps",
        ]
        read_only_fields = ["order"]


class WorkflowSerializer(serializers.ModelSerializer):
    name = serializers.CharField(max_length=255, allow_blank=True)
    steps = WorkflowStepSerializer(many=True)

    class Meta:
        model = Workflow
        fields = [
            "id",
            "name",
            "description",
            "version",
            "is_active",
            "steps",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["version"]

    def create(self, validated_data):  # type: ignore[override]
        definition = WorkflowDefinitionStore().save(_build_draft(validated_data))
        return Workflow.objects.prefetch_related("steps").get(pk=definition.id)

    def update(self, instance, validated_data):  # type: ignore[override]
        definition = WorkflowDefinitionStore().save(
            _build_draft(validated_data, instance), workflow_id=instance.pk
        )
        return Workflow.objects.prefetch_related("steps").get(pk=definition.id)


def _build_draft(validated_data: Dict[str, Any], instance: Optional[Workflow] = None) -> WorkflowDraft:
    """Merge submitted fields over the stored workflow for partial updates."""

    steps = validated_data.get("steps")
    if steps is None and instance is not None:
        steps = [
            {
                "step_code": step.step_code,
                "step_name": step.step_name,
                "category_code": step.category_code,
                "workgroup_id": step.workgroup_id,
                "allowed_next_steps": step.allowed_next_steps,
                "allowed_previous_steps": step.allowed_previous_steps,
            }
            for step in instance.steps.all()
        ]

    return WorkflowDraft(
        name=validated_data.get("name", instance.name if instance else ""),
        description=validated_data.get("description", instance.description if instance else ""),
        is_active=validated_data.get("is_active"),
        steps=[
            StepDraft(
                step_code=step.get("step_code") or None,
                step_name=step.get("step_name", ""),
                category_code=step.get("category_code", WorkflowStep.NEW),
                workgroup_id=step.get("workgroup_id"),
                allowed_next_steps=list(step.get("allowed_next_steps") or []),
                allowed_previous_steps=list(step.get("allowed_previous_steps") or []),
            )
            for step in steps or []
        ],
    )
