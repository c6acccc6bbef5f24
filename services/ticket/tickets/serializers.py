"""Serializers for ticket entities."""
from __future__ import annotations

from typing import Any, Dict, Optional

from rest_framework import serializers

from workflows.definitions import WorkflowDefinition
from workflows.exceptions import WorkflowNotFound
from workflows.store import WorkflowDefinitionStore

from .assignment import AssignmentResolver
from .models import Ticket, TransitionHistoryEntry, TransitionSubmission


class TicketSerializer(serializers.ModelSerializer):
    current_step_name = serializers.SerializerMethodField()
    workgroup_name = serializers.SerializerMethodField()

    class Meta:
        model = Ticket
        fields = [
            "id",
            "title",
            "description",
            "priority",
            "requester_id",
            "workflow_id",
            "current_step_code",
            "current_step_name",
            "workgroup_id",
            "workgroup_name",
            "responsible_employee_id",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "current_step_code",
            "workgroup_id",
            "responsible_employee_id",
        ]

    def validate_workflow_id(self, value: int) -> int:
        try:
            definition = WorkflowDefinitionStore().get(value)
        except WorkflowNotFound:
            raise serializers.ValidationError("Unknown workflow.")
        if not definition.is_active:
            raise serializers.ValidationError("Workflow is not active.")
        self._definitions()[value] = definition
        return value

    def create(self, validated_data: Dict[str, Any]) -> Ticket:  # type: ignore[override]
        definition = self._definitions()[validated_data["workflow_id"]]
        first_step = definition.first_step()
        return Ticket.objects.create(
            current_step_code=first_step.step_code,
            workgroup_id=first_step.workgroup_id,
            **validated_data,
        )

    def get_current_step_name(self, obj: Ticket) -> Optional[str]:
        definition = self._definition_for(obj.workflow_id)
        if definition is None:
            return None
        step = definition.step(obj.current_step_code)
        return step.step_name if step is not None else None

    def get_workgroup_name(self, obj: Ticket) -> Optional[str]:
        return AssignmentResolver().workgroup_name(obj.workgroup_id)

    def _definitions(self) -> Dict[int, Optional[WorkflowDefinition]]:
        # Shared across the list so each workflow is read once per response.
        return self.root.context.setdefault("workflow_definitions", {})

    def _definition_for(self, workflow_id: int) -> Optional[WorkflowDefinition]:
        cache = self._definitions()
        if workflow_id not in cache:
            try:
                cache[workflow_id] = WorkflowDefinitionStore().get(workflow_id)
            except WorkflowNotFound:
                cache[workflow_id] = None
        return cache[workflow_id]


class TransitionRequestSerializer(serializers.Serializer):
    step_code = serializers.CharField(max_length=64)
    actor = serializers.CharField(max_length=255)


class TransitionHistoryEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = TransitionHistoryEntry
        fields = [
            "id",
            "ticket",
            "activity_type",
            "field_name",
            "old_value",
            "new_value",
            "changed_by",
            "timestamp",
        ]
        read_only_fields = fields


class TransitionSubmissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = TransitionSubmission
        fields = [
            "id",
            "client_reference",
            "status",
            "ticket",
            "step_code",
            "actor",
            "reason",
            "error_message",
            "created_at",
            "updated_at",
            "completed_at",
        ]


class TransitionSubmissionRequestSerializer(serializers.Serializer):
    ticket = serializers.PrimaryKeyRelatedField(queryset=Ticket.objects.all())
    step_code = serializers.CharField(max_length=64)
    actor = serializers.CharField(max_length=255)
    client_reference = serializers.UUIDField(required=False)
