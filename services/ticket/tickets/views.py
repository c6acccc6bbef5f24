"""API views for tickets and their workflow transitions."""
from __future__ import annotations

import uuid
from typing import Dict

from django.db.models import Count
from django.utils import timezone
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action, api_view
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.request import Request
from rest_framework.response import Response

from .executor import Denied, TransitionExecutor
from .models import Ticket, TransitionSubmission
from .serializers import (
    TicketSerializer,
    TransitionHistoryEntrySerializer,
    TransitionRequestSerializer,
    TransitionSubmissionRequestSerializer,
    TransitionSubmissionSerializer,
)
from .tasks import process_transition_submission


class TicketViewSet(
    mixins.CreateModelMixin,
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = Ticket.objects.all()
    serializer_class = TicketSerializer
    filter_backends = [SearchFilter, OrderingFilter]
    search_fields = ["title", "description", "current_step_code", "priority"]
    ordering_fields = ["created_at", "updated_at", "priority"]
    ordering = ["-created_at"]

    @action(detail=True, methods=["post"], url_path="transition")
    def transition(self, request: Request, pk=None) -> Response:
        """Move the ticket to another step of its workflow."""

        payload = TransitionRequestSerializer(data=request.data)
        payload.is_valid(raise_exception=True)
        outcome = TransitionExecutor().transition(
            pk, payload.validated_data["step_code"], payload.validated_data["actor"]
        )
        if isinstance(outcome, Denied):
            return Response({"reason": outcome.reason}, status=status.HTTP_409_CONFLICT)

        serializer = self.get_serializer(outcome.ticket)
        return Response(
            {"ticket": serializer.data, "appliedStepName": outcome.applied_step_name}
        )

    @action(detail=True, methods=["get"], url_path="allowed-steps")
    def allowed_steps(self, request: Request, pk=None) -> Response:
        """List the steps the ticket may move to from where it is now."""

        steps = TransitionExecutor().allowed_steps(pk)
        return Response(
            [
                {
                    "stepCode": step.step_code,
                    "stepName": step.step_name,
                    "categoryCode": step.category_code,
                }
                for step in steps
            ]
        )

    @action(detail=True, methods=["get"], url_path="history")
    def history(self, request: Request, pk=None) -> Response:
        ticket = self.get_object()
        serializer = TransitionHistoryEntrySerializer(ticket.history.all(), many=True)
        return Response(serializer.data)


class TransitionSubmissionViewSet(
    mixins.CreateModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    queryset = TransitionSubmission.objects.select_related("ticket").all()
    serializer_class = TransitionSubmissionSerializer
    lookup_field = "id"
    lookup_value_regex = r"[0-9a-f\-]+"

    def create(self, request: Request, *args, **kwargs):  # type: ignore[override]
        payload_serializer = TransitionSubmissionRequestSerializer(data=request.data)
        payload_serializer.is_valid(raise_exception=True)
        data = payload_serializer.validated_data

        client_reference = data.get("client_reference")
        if client_reference is not None:
            submission = TransitionSubmission.objects.filter(
                client_reference=client_reference
            ).first()
            if submission is not None:
                # Replays of a finished request report the recorded outcome.
                if submission.status == TransitionSubmission.FAILED:
                    submission.status = TransitionSubmission.PENDING
                    submission.error_message = ""
                    submission.completed_at = None
                    submission.save(
                        update_fields=["status", "error_message", "completed_at", "updated_at"]
                    )
                if submission.status in {
                    TransitionSubmission.PENDING,
                    TransitionSubmission.PROCESSING,
                }:
                    process_transition_submission.delay(str(submission.id))
                    submission.refresh_from_db()
                serializer = self.get_serializer(submission)
                status_code = (
                    status.HTTP_202_ACCEPTED
                    if submission.status
                    in {TransitionSubmission.PENDING, TransitionSubmission.PROCESSING}
                    else status.HTTP_200_OK
                )
                return Response(serializer.data, status=status_code)

        submission = TransitionSubmission.objects.create(
            client_reference=client_reference or uuid.uuid4(),
            ticket=data["ticket"],
            step_code=data["step_code"],
            actor=data["actor"],
        )

        process_transition_submission.delay(str(submission.id))
        serializer = self.get_serializer(submission)
        return Response(serializer.data, status=status.HTTP_202_ACCEPTED)


@api_view(["GET"])
def health(request: Request):  # type: ignore[override]
    """Readiness endpoint for orchestration tooling."""

    return Response({"status": "ok"})


@api_view(["GET"])
def queue_metrics(_: Request) -> Response:
    """Provide observability data for the transition queue."""

    totals: Dict[str, int] = {value: 0 for value, _label in TransitionSubmission.STATUS_CHOICES}

    for entry in (
        TransitionSubmission.objects.values("status").order_by().annotate(total=Count("id"))
    ):
        status_value = entry.get("status")
        if status_value in totals:
            totals[status_value] = int(entry.get("total", 0))

    oldest_pending = (
        TransitionSubmission.objects.filter(
            status__in=[TransitionSubmission.PENDING, TransitionSubmission.PROCESSING]
        )
        .order_by("created_at")
        .first()
    )
    if oldest_pending is not None:
        wait_seconds = max(
            int((timezone.now() - oldest_pending.created_at).total_seconds()),
            0,
        )
    else:
        wait_seconds = 0

    return Response(
        {
            "pending": totals[TransitionSubmission.PENDING],
            "processing": totals[TransitionSubmission.PROCESSING],
            "completed": totals[TransitionSubmission.COMPLETED],
            "denied": totals[TransitionSubmission.DENIED],
            "failed": totals[TransitionSubmission.FAILED],
            "oldestPendingSeconds": wait_seconds,
        }
    )
