"""Tests for ticket transitions, assignment and the ticket API."""
from __future__ import annotations

import uuid
from typing import Any, Dict
from unittest import mock

from celery.exceptions import Retry
from django.db import DatabaseError
from django.db.models import F
from django.test import TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from directory.models import Employee, Workgroup
from workflows.definitions import StepDraft, WorkflowDraft
from workflows.models import Workflow, WorkflowStep
from workflows.store import WorkflowDefinitionStore
from workflows.validator import NO_OP, NOT_PERMITTED

from .assignment import Assignment, AssignmentResolver
from .exceptions import StepNotFound, TicketNotFound, TransitionConflict, TransitionSystemError
from .executor import WORKFLOW_MISSING, Denied, TransitionExecutor, Transitioned
from .models import HistoryEntryImmutable, Ticket, TransitionHistoryEntry, TransitionSubmission
from .tasks import process_transition_submission


class SupportWorkflowMixin:
    """Support workflow: Open -> InProgress -> Resolved, plus Cancelled."""

    def setUp(self) -> None:  # type: ignore[override]
        super().setUp()  # type: ignore[misc]
        self.desk = Workgroup.objects.create(name="Service Desk")
        self.engineering = Workgroup.objects.create(name="Engineering")
        self.alice = Employee.objects.create(
            name="Alice", email="alice@example.com", workgroup=self.engineering
        )
        self.bob = Employee.objects.create(
            name="Bob", email="bob@example.com", workgroup=self.engineering
        )
        self.workflow = WorkflowDefinitionStore().save(
            WorkflowDraft(
                name="Support",
                steps=[
                    StepDraft("Open", WorkflowStep.NEW, workgroup_id=self.desk.id),
                    StepDraft(
                        "InProgress", WorkflowStep.IN_PROGRESS, workgroup_id=self.engineering.id
                    ),
                    StepDraft("Resolved", WorkflowStep.CLOSED),
                    StepDraft("Cancelled", WorkflowStep.CANCELLED),
                ],
            )
        )
        self.open, self.progress, self.resolved, self.cancelled = self.workflow.steps
        self.ticket = Ticket.objects.create(
            title="Printer jammed",
            workflow_id=self.workflow.id,
            current_step_code=self.open.step_code,
            workgroup_id=self.desk.id,
        )

    def ticket_state(self) -> Dict[str, Any]:
        return Ticket.objects.values().get(pk=self.ticket.pk)


class AssignmentResolverTests(SupportWorkflowMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.resolver = AssignmentResolver()

    def test_step_without_workgroup(self) -> None:
        self.assertEqual(self.resolver.resolve(self.resolved), Assignment())

    def test_workgroup_without_members(self) -> None:
        self.assertEqual(
            self.resolver.resolve(self.open), Assignment(workgroup_id=self.desk.id)
        )

    def test_first_active_member_by_id(self) -> None:
        expected = Assignment(
            workgroup_id=self.engineering.id, responsible_employee_id=self.alice.id
        )
        self.assertEqual(self.resolver.resolve(self.progress), expected)
        self.assertEqual(self.resolver.resolve(self.progress), expected)

        self.alice.is_active = False
        self.alice.save()
        self.assertEqual(
            self.resolver.resolve(self.progress).responsible_employee_id, self.bob.id
        )

    def test_workgroup_name(self) -> None:
        self.assertEqual(self.resolver.workgroup_name(self.engineering.id), "Engineering")
        self.assertIsNone(self.resolver.workgroup_name(None))


class RacingStore(WorkflowDefinitionStore):
    """Simulates a concurrent edit landing right after the snapshot is read."""

    def __init__(self, race, times: int = 1) -> None:
        self.race = race
        self.remaining = times

    def get(self, workflow_id):  # type: ignore[override]
        definition = super().get(workflow_id)
        if self.remaining:
            self.remaining -= 1
            self.race()
        return definition


class TransitionExecutorTests(SupportWorkflowMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.executor = TransitionExecutor()

    def test_successful_transition_reassigns_and_records_history(self) -> None:
        outcome = self.executor.transition(self.ticket.pk, self.progress.step_code, "casey")

        self.assertIsInstance(outcome, Transitioned)
        self.assertEqual(outcome.applied_step_name, "InProgress")
        state = self.ticket_state()
        self.assertEqual(state["current_step_code"], self.progress.step_code)
        self.assertEqual(state["workgroup_id"], self.engineering.id)
        self.assertEqual(state["responsible_employee_id"], self.alice.id)

        entry = TransitionHistoryEntry.objects.get(ticket=self.ticket)
        self.assertEqual(entry.field_name, "status")
        self.assertEqual(entry.activity_type, "status_change")
        self.assertEqual(entry.old_value, "Open")
        self.assertEqual(entry.new_value, "InProgress")
        self.assertEqual(entry.changed_by, "casey")

    def test_step_without_workgroup_clears_assignment(self) -> None:
        self.executor.transition(self.ticket.pk, self.progress.step_code, "casey")
        self.executor.transition(self.ticket.pk, self.resolved.step_code, "casey")

        state = self.ticket_state()
        self.assertIsNone(state["workgroup_id"])
        self.assertIsNone(state["responsible_employee_id"])

    def test_denied_transition_changes_nothing(self) -> None:
        before = self.ticket_state()

        outcome = self.executor.transition(self.ticket.pk, self.resolved.step_code, "casey")

        self.assertEqual(outcome, Denied(NOT_PERMITTED))
        self.assertEqual(self.ticket_state(), before)
        self.assertFalse(TransitionHistoryEntry.objects.exists())

    def test_same_step_is_denied(self) -> None:
        outcome = self.executor.transition(self.ticket.pk, self.open.step_code, "casey")
        self.assertEqual(outcome, Denied(NO_OP))

    def test_cancel_from_anywhere(self) -> None:
        outcome = self.executor.transition(self.ticket.pk, self.cancelled.step_code, "casey")
        self.assertIsInstance(outcome, Transitioned)
        self.assertEqual(outcome.ticket.current_step_code, self.cancelled.step_code)

    def test_missing_workflow_is_denied(self) -> None:
        orphan = Ticket.objects.create(
            title="Orphan", workflow_id=self.workflow.id + 100, current_step_code="x-01"
        )
        outcome = self.executor.transition(orphan.pk, self.progress.step_code, "casey")
        self.assertEqual(outcome, Denied(WORKFLOW_MISSING))
        self.assertEqual(self.executor.allowed_steps(orphan.pk), [])

    def test_missing_ticket_and_step(self) -> None:
        with self.assertRaises(TicketNotFound):
            self.executor.transition(self.ticket.pk + 100, self.progress.step_code, "casey")
        with self.assertRaises(TicketNotFound):
            self.executor.transition("not-a-number", self.progress.step_code, "casey")
        with self.assertRaises(StepNotFound):
            self.executor.transition(self.ticket.pk, "nowhere", "casey")

    def test_ticket_in_unknown_step_can_only_be_cancelled(self) -> None:
        Ticket.objects.filter(pk=self.ticket.pk).update(current_step_code="CANCELLED")

        outcome = self.executor.transition(self.ticket.pk, self.open.step_code, "casey")
        self.assertEqual(outcome, Denied(NOT_PERMITTED))

        outcome = self.executor.transition(self.ticket.pk, self.cancelled.step_code, "casey")
        self.assertIsInstance(outcome, Transitioned)
        self.assertEqual(outcome.history_entry.old_value, "CANCELLED")

    def test_one_history_entry_per_applied_transition(self) -> None:
        path = [self.progress, self.open, self.progress, self.resolved]
        for step in path:
            self.executor.transition(self.ticket.pk, step.step_code, "casey")
        self.executor.transition(self.ticket.pk, self.open.step_code, "casey")  # denied

        entries = list(TransitionHistoryEntry.objects.filter(ticket=self.ticket))
        self.assertEqual(
            [(entry.old_value, entry.new_value) for entry in entries],
            [
                ("Open", "InProgress"),
                ("InProgress", "Open"),
                ("Open", "InProgress"),
                ("InProgress", "Resolved"),
            ],
        )

    def test_allowed_steps(self) -> None:
        names = [step.step_name for step in self.executor.allowed_steps(self.ticket.pk)]
        self.assertEqual(names, ["InProgress", "Cancelled"])

    def test_concurrent_step_change_is_retried_with_fresh_data(self) -> None:
        def move_elsewhere() -> None:
            Ticket.objects.filter(pk=self.ticket.pk).update(
                current_step_code=self.progress.step_code
            )

        executor = TransitionExecutor(store=RacingStore(move_elsewhere), conflict_retries=1)
        outcome = executor.transition(self.ticket.pk, self.cancelled.step_code, "casey")

        self.assertIsInstance(outcome, Transitioned)
        entry = TransitionHistoryEntry.objects.get(ticket=self.ticket)
        self.assertEqual(entry.old_value, "InProgress")

    def test_recurring_conflict_is_raised(self) -> None:
        steps = iter([self.progress, self.open])

        def keep_moving() -> None:
            Ticket.objects.filter(pk=self.ticket.pk).update(
                current_step_code=next(steps).step_code
            )

        executor = TransitionExecutor(store=RacingStore(keep_moving, times=2), conflict_retries=1)
        with self.assertRaises(TransitionConflict):
            executor.transition(self.ticket.pk, self.cancelled.step_code, "casey")
        self.assertFalse(TransitionHistoryEntry.objects.exists())

    def test_workflow_edit_during_transition_is_retried(self) -> None:
        def bump_version() -> None:
            Workflow.objects.filter(pk=self.workflow.id).update(version=F("version") + 1)

        executor = TransitionExecutor(store=RacingStore(bump_version), conflict_retries=1)
        outcome = executor.transition(self.ticket.pk, self.progress.step_code, "casey")
        self.assertIsInstance(outcome, Transitioned)

        executor = TransitionExecutor(store=RacingStore(bump_version), conflict_retries=0)
        with self.assertRaises(TransitionConflict):
            executor.transition(self.ticket.pk, self.resolved.step_code, "casey")

    def test_storage_failure_rolls_back(self) -> None:
        before = self.ticket_state()
        resolver = mock.Mock(spec=AssignmentResolver)
        resolver.resolve.side_effect = DatabaseError("connection lost")

        executor = TransitionExecutor(resolver=resolver)
        with self.assertRaises(TransitionSystemError):
            executor.transition(self.ticket.pk, self.progress.step_code, "casey")

        self.assertEqual(self.ticket_state(), before)
        self.assertFalse(TransitionHistoryEntry.objects.exists())

    def test_history_is_append_only(self) -> None:
        outcome = self.executor.transition(self.ticket.pk, self.progress.step_code, "casey")
        entry = outcome.history_entry

        entry.new_value = "Tampered"
        with self.assertRaises(HistoryEntryImmutable):
            entry.save()
        with self.assertRaises(HistoryEntryImmutable):
            entry.delete()
        with self.assertRaises(HistoryEntryImmutable):
            TransitionHistoryEntry.objects.filter(ticket=self.ticket).update(new_value="Tampered")
        with self.assertRaises(HistoryEntryImmutable):
            self.ticket.history.all().delete()
        self.assertEqual(TransitionHistoryEntry.objects.get().new_value, "InProgress")

    def test_history_failure_rolls_back_the_step_change(self) -> None:
        before = self.ticket_state()

        with mock.patch.object(
            TransitionHistoryEntry.objects, "create", side_effect=DatabaseError("disk full")
        ):
            with self.assertRaises(TransitionSystemError):
                self.executor.transition(self.ticket.pk, self.progress.step_code, "casey")

        after = self.ticket_state()
        self.assertEqual(after["current_step_code"], self.open.step_code)
        self.assertEqual(after["workgroup_id"], self.desk.id)
        self.assertIsNone(after["responsible_employee_id"])
        self.assertEqual(after, before)
        self.assertFalse(TransitionHistoryEntry.objects.exists())


class TicketApiTests(SupportWorkflowMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = APIClient()

    def _transition(self, ticket_id: int, step_code: str, actor: str = "casey"):
        return self.client.post(
            reverse("ticket-transition", args=[ticket_id]),
            {"step_code": step_code, "actor": actor},
            format="json",
        )

    def test_create_ticket_starts_at_first_step(self) -> None:
        payload = {
            "title": "Laptop provisioning",
            "workflow_id": self.workflow.id,
            "priority": "high",
        }
        response = self.client.post(reverse("ticket-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["current_step_code"], self.open.step_code)
        self.assertEqual(response.data["current_step_name"], "Open")
        self.assertEqual(response.data["workgroup_name"], "Service Desk")
        self.assertIsNone(response.data["responsible_employee_id"])

    def test_create_ticket_requires_active_workflow(self) -> None:
        WorkflowDefinitionStore().set_active(self.workflow.id, False)
        payload = {"title": "Laptop", "workflow_id": self.workflow.id}
        response = self.client.post(reverse("ticket-list"), payload, format="json")
        self.assertEqual(response.status_code, 400)

        payload = {"title": "Laptop", "workflow_id": self.workflow.id + 100}
        response = self.client.post(reverse("ticket-list"), payload, format="json")
        self.assertEqual(response.status_code, 400)

    def test_transition(self) -> None:
        response = self._transition(self.ticket.pk, self.progress.step_code)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["appliedStepName"], "InProgress")
        ticket = response.data["ticket"]
        self.assertEqual(ticket["current_step_code"], self.progress.step_code)
        self.assertEqual(ticket["workgroup_name"], "Engineering")
        self.assertEqual(ticket["responsible_employee_id"], self.alice.id)

    def test_denied_transition_returns_reason(self) -> None:
        response = self._transition(self.ticket.pk, self.resolved.step_code)
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.data["reason"], NOT_PERMITTED)

    def test_missing_ticket_or_step(self) -> None:
        response = self._transition(self.ticket.pk + 100, self.progress.step_code)
        self.assertEqual(response.status_code, 404)

        response = self._transition(self.ticket.pk, "nowhere")
        self.assertEqual(response.status_code, 404)

    def test_transition_requires_actor(self) -> None:
        response = self.client.post(
            reverse("ticket-transition", args=[self.ticket.pk]),
            {"step_code": self.progress.step_code},
            format="json",
        )
        self.assertEqual(response.status_code, 400)

    def test_conflict_and_system_error_are_distinct(self) -> None:
        with mock.patch(
            "tickets.views.TransitionExecutor.transition", side_effect=TransitionConflict()
        ):
            response = self._transition(self.ticket.pk, self.progress.step_code)
        self.assertEqual(response.status_code, 503)

        with mock.patch(
            "tickets.views.TransitionExecutor.transition", side_effect=TransitionSystemError()
        ):
            response = self._transition(self.ticket.pk, self.progress.step_code)
        self.assertEqual(response.status_code, 500)

    def test_allowed_steps(self) -> None:
        response = self.client.get(reverse("ticket-allowed-steps", args=[self.ticket.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.data,
            [
                {
                    "stepCode": self.progress.step_code,
                    "stepName": "InProgress",
                    "categoryCode": WorkflowStep.IN_PROGRESS,
                },
                {
                    "stepCode": self.cancelled.step_code,
                    "stepName": "Cancelled",
                    "categoryCode": WorkflowStep.CANCELLED,
                },
            ],
        )

        response = self.client.get(reverse("ticket-allowed-steps", args=[self.ticket.pk + 100]))
        self.assertEqual(response.status_code, 404)

    def test_history(self) -> None:
        self._transition(self.ticket.pk, self.progress.step_code, actor="dana")
        response = self.client.get(reverse("ticket-history", args=[self.ticket.pk]))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["old_value"], "Open")
        self.assertEqual(response.data[0]["new_value"], "InProgress")
        self.assertEqual(response.data[0]["changed_by"], "dana")


class TransitionSubmissionApiTests(SupportWorkflowMixin, TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.client = APIClient()

    def _submit(self, step_code: str, **extra):
        payload = {"ticket": self.ticket.pk, "step_code": step_code, "actor": "bulk-cancel"}
        payload.update(extra)
        with self.settings(CELERY_TASK_ALWAYS_EAGER=True, CELERY_TASK_EAGER_PROPAGATES=True):
            return self.client.post(
                reverse("transition-submission-list"), payload, format="json"
            )

    def _queued(self, step_code: str) -> TransitionSubmission:
        return TransitionSubmission.objects.create(
            ticket=self.ticket, step_code=step_code, actor="bulk-cancel"
        )

    def _detail(self, submission_id: str):
        return self.client.get(reverse("transition-submission-detail", args=[submission_id]))

    def test_submit_transition_via_queue(self) -> None:
        response = self._submit(self.cancelled.step_code)
        self.assertEqual(response.status_code, 202)

        detail = self._detail(response.data["id"])
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.data["status"], TransitionSubmission.COMPLETED)
        self.assertEqual(self.ticket_state()["current_step_code"], self.cancelled.step_code)
        self.assertEqual(
            TransitionHistoryEntry.objects.get(ticket=self.ticket).changed_by, "bulk-cancel"
        )

    def test_denied_submission_records_reason(self) -> None:
        response = self._submit(self.resolved.step_code)
        detail = self._detail(response.data["id"])
        self.assertEqual(detail.data["status"], TransitionSubmission.DENIED)
        self.assertEqual(detail.data["reason"], NOT_PERMITTED)

    def test_unknown_step_fails_without_retry(self) -> None:
        response = self._submit("nowhere")
        detail = self._detail(response.data["id"])
        self.assertEqual(detail.data["status"], TransitionSubmission.FAILED)
        self.assertTrue(detail.data["error_message"])

    def test_replayed_reference_is_not_applied_twice(self) -> None:
        reference = str(uuid.uuid4())
        first = self._submit(self.progress.step_code, client_reference=reference)
        self.assertEqual(first.status_code, 202)

        replay = self._submit(self.progress.step_code, client_reference=reference)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.data["id"], first.data["id"])
        self.assertEqual(replay.data["status"], TransitionSubmission.COMPLETED)
        self.assertEqual(TransitionHistoryEntry.objects.filter(ticket=self.ticket).count(), 1)

    def test_conflicts_fail_the_submission_once_retries_run_out(self) -> None:
        submission = self._queued(self.progress.step_code)

        with mock.patch.object(
            TransitionExecutor, "transition", side_effect=TransitionConflict()
        ):
            process_transition_submission.apply(
                args=[str(submission.id)], retries=process_transition_submission.max_retries
            )

        submission.refresh_from_db()
        self.assertEqual(submission.status, TransitionSubmission.FAILED)
        self.assertEqual(submission.error_message, str(TransitionConflict.default_detail))
        self.assertEqual(self.ticket_state()["current_step_code"], self.open.step_code)

    def test_conflict_is_requeued_and_retried(self) -> None:
        submission = self._queued(self.progress.step_code)

        with mock.patch.object(
            TransitionExecutor, "transition", side_effect=TransitionConflict()
        ):
            with self.assertRaises(Retry):
                process_transition_submission.apply(args=[str(submission.id)])

        submission.refresh_from_db()
        self.assertEqual(submission.status, TransitionSubmission.PENDING)

        process_transition_submission.apply(args=[str(submission.id)], retries=1)
        submission.refresh_from_db()
        self.assertEqual(submission.status, TransitionSubmission.COMPLETED)
        self.assertEqual(self.ticket_state()["current_step_code"], self.progress.step_code)

    def test_unexpected_error_does_not_strand_the_submission(self) -> None:
        submission = self._queued(self.progress.step_code)

        with mock.patch.object(
            WorkflowDefinitionStore, "get", side_effect=DatabaseError("connection lost")
        ):
            with self.assertRaises(Retry):
                process_transition_submission.apply(args=[str(submission.id)])

        submission.refresh_from_db()
        self.assertEqual(submission.status, TransitionSubmission.PENDING)

        replay = self._submit(
            self.progress.step_code, client_reference=str(submission.client_reference)
        )
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.data["status"], TransitionSubmission.COMPLETED)
        self.assertEqual(self.ticket_state()["current_step_code"], self.progress.step_code)

    def test_unexpected_error_fails_the_submission_once_retries_run_out(self) -> None:
        submission = self._queued(self.progress.step_code)

        with mock.patch.object(
            WorkflowDefinitionStore, "get", side_effect=DatabaseError("connection lost")
        ):
            process_transition_submission.apply(
                args=[str(submission.id)], retries=process_transition_submission.max_retries
            )

        submission.refresh_from_db()
        self.assertEqual(submission.status, TransitionSubmission.FAILED)
        self.assertEqual(submission.error_message, "connection lost")

    def test_queue_metrics_endpoint(self) -> None:
        self._submit(self.resolved.step_code)
        response = self.client.get(reverse("ticket-queue-metrics"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["denied"], 1)
        self.assertEqual(response.data["pending"], 0)
        self.assertIn("oldestPendingSeconds", response.data)

    def test_health(self) -> None:
        response = self.client.get(reverse("ticket-health"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "ok")
