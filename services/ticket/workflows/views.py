"""API views for workflows."""
from __future__ import annotations

from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.response import Response

from .models import Workflow
from .serializers import WorkflowSerializer
from .store import WorkflowDefinitionStore


class WorkflowViewSet(viewsets.ModelViewSet):
    queryset = Workflow.objects.prefetch_related("steps").all()
    serializer_class = WorkflowSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["name", "description"]
    ordering_fields = ["name", "updated_at"]
    ordering = ["name"]

    def perform_destroy(self, instance):  # type: ignore[override]
        # Tickets keep pointing at their workflow, so deletion only deactivates it.
        WorkflowDefinitionStore().set_active(instance.pk, False)

    @action(detail=True, methods=["post"], url_path="publish")
    def publish(self, request, *args, **kwargs):  # type: ignore[override]
        """Activate a workflow definition."""

        return self._set_active(True)

    @action(detail=True, methods=["post"], url_path="deactivate")
    def deactivate(self, request, *args, **kwargs):  # type: ignore[override]
        """Hide a workflow from new tickets without touching existing ones."""

        return self._set_active(False)

    def _set_active(self, active: bool) -> Response:
        workflow = self.get_object()
        WorkflowDefinitionStore().set_active(workflow.pk, active)
        workflow.refresh_from_db()
        serializer = self.get_serializer(workflow)
        return Response(serializer.data)
