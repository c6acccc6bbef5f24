"""Tests for workflow definitions, the transition rules and the workflow API."""
from __future__ import annotations

from typing import Iterable, List

from django.test import SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from .definitions import StepDefinition, StepDraft, WorkflowDefinition, WorkflowDraft
from .exceptions import WorkflowNotFound, WorkflowValidationError
from .models import Workflow, WorkflowStep
from .store import WorkflowDefinitionStore
from .validator import NO_OP, NOT_PERMITTED, UNKNOWN_TARGET, Allow, Deny, TransitionValidator


def _step(
    code: str,
    name: str,
    order: int,
    category: int = WorkflowStep.NEW,
    next_steps: Iterable[str] = (),
    previous_steps: Iterable[str] = (),
) -> StepDefinition:
    return StepDefinition(
        step_code=code,
        step_name=name,
        order=order,
        category_code=category,
        allowed_next_steps=frozenset(next_steps),
        allowed_previous_steps=frozenset(previous_steps),
    )


def _workflow(*steps: StepDefinition) -> WorkflowDefinition:
    return WorkflowDefinition(id=1, name="Support", is_active=True, version=1, steps=tuple(steps))


def _support(open_next: Iterable[str] = (), resolved_previous: Iterable[str] = ()) -> WorkflowDefinition:
    return _workflow(
        _step("1-01", "Open", 1, WorkflowStep.NEW, next_steps=open_next),
        _step("1-02", "InProgress", 2, WorkflowStep.IN_PROGRESS),
        _step("1-03", "Resolved", 3, WorkflowStep.CLOSED, previous_steps=resolved_previous),
        _step("1-04", "Cancelled", 4, WorkflowStep.CANCELLED),
    )


class TransitionValidatorTests(SimpleTestCase):
    def setUp(self) -> None:
        self.validator = TransitionValidator()

    def test_self_transition_is_denied_for_every_step(self) -> None:
        workflow = _support()
        for step in workflow.steps:
            self.assertEqual(
                self.validator.is_allowed(workflow, step.step_code, step.step_code), Deny(NO_OP)
            )

    def test_support_scenario(self) -> None:
        workflow = _support()
        self.assertEqual(self.validator.is_allowed(workflow, "1-01", "1-03"), Deny(NOT_PERMITTED))
        self.assertEqual(self.validator.is_allowed(workflow, "1-01", "1-04"), Allow())
        self.assertEqual(self.validator.is_allowed(workflow, "1-02", "1-03"), Allow())

    def test_adjacent_steps_reach_each_other_without_lists(self) -> None:
        workflow = _support()
        for first, second in zip(workflow.steps, workflow.steps[1:]):
            self.assertTrue(
                self.validator.is_allowed(workflow, first.step_code, second.step_code).allowed
            )
            self.assertTrue(
                self.validator.is_allowed(workflow, second.step_code, first.step_code).allowed
            )

    def test_every_cancelled_step_is_reachable_from_anywhere(self) -> None:
        workflow = _workflow(
            _step("2-01", "New", 1),
            _step("2-02", "Triage", 2, WorkflowStep.IN_PROGRESS),
            _step("2-03", "Withdrawn", 3, WorkflowStep.CANCELLED),
            _step("2-04", "Fix", 4, WorkflowStep.IN_PROGRESS),
            _step("2-05", "Done", 5, WorkflowStep.CLOSED),
            _step("2-06", "Rejected", 6, WorkflowStep.CANCELLED),
        )
        cancelled = [step for step in workflow.steps if step.is_cancellation]
        for target in cancelled:
            for source in workflow.steps:
                if source == target:
                    continue
                self.assertEqual(
                    self.validator.is_allowed(workflow, source.step_code, target.step_code),
                    Allow(),
                    f"{source.step_name} -> {target.step_name}",
                )

    def test_cancellation_is_not_a_way_out(self) -> None:
        workflow = _support()
        self.assertEqual(self.validator.is_allowed(workflow, "1-04", "1-01"), Deny(NOT_PERMITTED))
        self.assertEqual(self.validator.is_allowed(workflow, "1-04", "1-03"), Allow())

    def test_next_list_allows_jump_but_not_the_way_back(self) -> None:
        workflow = _support(open_next=["Resolved"])
        self.assertEqual(self.validator.is_allowed(workflow, "1-01", "1-03"), Allow())
        self.assertEqual(self.validator.is_allowed(workflow, "1-03", "1-01"), Deny(NOT_PERMITTED))

    def test_previous_list_allows_jump_into_the_step(self) -> None:
        workflow = _support(resolved_previous=["Open"])
        self.assertEqual(self.validator.is_allowed(workflow, "1-01", "1-03"), Allow())
        self.assertEqual(self.validator.is_allowed(workflow, "1-03", "1-01"), Deny(NOT_PERMITTED))

    def test_way_back_needs_its_own_declaration(self) -> None:
        workflow = _workflow(
            _step("1-01", "Open", 1, next_steps=["Resolved"]),
            _step("1-02", "InProgress", 2, WorkflowStep.IN_PROGRESS),
            _step("1-03", "Resolved", 3, WorkflowStep.CLOSED, next_steps=["Open"]),
        )
        self.assertEqual(self.validator.is_allowed(workflow, "1-03", "1-01"), Allow())

    def test_unknown_current_step_can_only_be_cancelled(self) -> None:
        workflow = _support()
        self.assertEqual(self.validator.is_allowed(workflow, "CANCELLED", "1-04"), Allow())
        self.assertEqual(self.validator.is_allowed(workflow, "CANCELLED", "1-01"), Deny(NOT_PERMITTED))
        self.assertEqual(self.validator.is_allowed(workflow, None, "1-02"), Deny(NOT_PERMITTED))

    def test_unknown_target_is_denied(self) -> None:
        self.assertEqual(
            self.validator.is_allowed(_support(), "1-01", "9-99"), Deny(UNKNOWN_TARGET)
        )

    def test_allowed_steps_uses_the_same_rules(self) -> None:
        names = [step.step_name for step in self.validator.allowed_steps(_support(), "1-01")]
        self.assertEqual(names, ["InProgress", "Cancelled"])

        names = [
            step.step_name
            for step in self.validator.allowed_steps(_support(open_next=["Resolved"]), "1-01")
        ]
        self.assertEqual(names, ["InProgress", "Resolved", "Cancelled"])


def _draft(name: str, *steps: StepDraft) -> WorkflowDraft:
    return WorkflowDraft(name=name, steps=list(steps))


class WorkflowDefinitionStoreTests(TestCase):
    def setUp(self) -> None:
        self.store = WorkflowDefinitionStore()

    def _codes(self, definition: WorkflowDefinition) -> List[str]:
        return [step.step_code for step in definition.steps]

    def test_save_assigns_codes_and_order(self) -> None:
        definition = self.store.save(
            _draft(
                "Support",
                StepDraft("Open"),
                StepDraft("InProgress", WorkflowStep.IN_PROGRESS, workgroup_id=7),
                StepDraft("Resolved", WorkflowStep.CLOSED),
            )
        )

        pk = definition.id
        self.assertEqual(self._codes(definition), [f"{pk}-01", f"{pk}-02", f"{pk}-03"])
        self.assertEqual([step.order for step in definition.steps], [1, 2, 3])
        self.assertEqual(definition.steps[1].workgroup_id, 7)
        self.assertEqual(definition.version, 1)
        self.assertTrue(definition.is_active)
        self.assertEqual(self.store.get(pk), definition)

    def test_save_reports_every_violation(self) -> None:
        with self.assertRaises(WorkflowValidationError) as caught:
            self.store.save(
                _draft(
                    "Broken",
                    StepDraft("Open", allowed_next_steps=["Open"]),
                    StepDraft("Open"),
                    StepDraft("", category_code=55),
                    StepDraft("Review", allowed_previous_steps=["Nowhere"]),
                )
            )

        codes = sorted(violation.code for violation in caught.exception.violations)
        self.assertEqual(
            codes,
            [
                "blank_step_name",
                "dangling_reference",
                "duplicate_step_name",
                "invalid_category",
                "self_reference",
            ],
        )
        self.assertEqual(caught.exception.status_code, 400)
        self.assertFalse(Workflow.objects.exists())

    def test_blank_name_and_no_steps(self) -> None:
        with self.assertRaises(WorkflowValidationError) as caught:
            self.store.save(_draft("  "))

        codes = {violation.code for violation in caught.exception.violations}
        self.assertEqual(codes, {"blank_name", "no_steps"})

    def test_duplicate_workflow_name(self) -> None:
        self.store.save(_draft("Support", StepDraft("Open")))
        with self.assertRaises(WorkflowValidationError) as caught:
            self.store.save(_draft("Support", StepDraft("Open")))

        self.assertEqual(caught.exception.violations[0].code, "duplicate_name")

    def test_legacy_cancelled_category_is_stored_as_cancelled(self) -> None:
        legacy = self.store.save(
            _draft(
                "Legacy",
                StepDraft("Open"),
                StepDraft("Doing", WorkflowStep.IN_PROGRESS),
                StepDraft("Done", WorkflowStep.CLOSED),
                StepDraft("Dropped", WorkflowStep.LEGACY_CANCELLED),
            )
        )
        current = self.store.save(
            _draft(
                "Current",
                StepDraft("Open"),
                StepDraft("Doing", WorkflowStep.IN_PROGRESS),
                StepDraft("Done", WorkflowStep.CLOSED),
                StepDraft("Dropped", WorkflowStep.CANCELLED),
            )
        )

        self.assertEqual(legacy.steps[3].category_code, WorkflowStep.CANCELLED)
        self.assertEqual(
            WorkflowStep.objects.get(workflow_id=legacy.id, step_name="Dropped").category_code,
            WorkflowStep.CANCELLED,
        )
        validator = TransitionValidator()
        for position in range(4):
            self.assertEqual(
                [s.step_name for s in validator.allowed_steps(legacy, legacy.steps[position].step_code)],
                [s.step_name for s in validator.allowed_steps(current, current.steps[position].step_code)],
            )

    def test_update_keeps_codes_and_never_reuses_them(self) -> None:
        created = self.store.save(
            _draft("Support", StepDraft("A"), StepDraft("B"), StepDraft("C"))
        )
        pk = created.id

        updated = self.store.save(
            _draft("Support", StepDraft("A"), StepDraft("C"), StepDraft("D")), workflow_id=pk
        )

        self.assertEqual(self._codes(updated), [f"{pk}-01", f"{pk}-03", f"{pk}-04"])
        self.assertEqual([step.order for step in updated.steps], [1, 2, 3])
        self.assertEqual(updated.version, 2)
        self.assertFalse(self.store.is_current(created))
        self.assertTrue(self.store.is_current(updated))

    def test_removed_step_is_pruned_from_allow_lists(self) -> None:
        created = self.store.save(
            _draft(
                "Support",
                StepDraft("A", allowed_next_steps=["C"]),
                StepDraft("B"),
                StepDraft("C", allowed_previous_steps=["A"]),
            )
        )

        updated = self.store.save(
            _draft("Support", StepDraft("A", allowed_next_steps=["C"]), StepDraft("B")),
            workflow_id=created.id,
        )

        self.assertEqual(updated.steps[0].allowed_next_steps, frozenset())

    def test_renamed_step_keeps_code_and_references(self) -> None:
        created = self.store.save(
            _draft(
                "Support",
                StepDraft("A", allowed_next_steps=["C"]),
                StepDraft("B"),
                StepDraft("C"),
            )
        )
        code_c = created.steps[2].step_code

        updated = self.store.save(
            _draft(
                "Support",
                StepDraft("A", allowed_next_steps=["C"]),
                StepDraft("B"),
                StepDraft("Closed", step_code=code_c),
            ),
            workflow_id=created.id,
        )

        self.assertEqual(updated.steps[2].step_code, code_c)
        self.assertEqual(updated.steps[0].allowed_next_steps, frozenset({"Closed"}))

    def test_swapped_names_follow_their_codes(self) -> None:
        created = self.store.save(
            _draft(
                "Support",
                StepDraft("A"),
                StepDraft("B"),
                StepDraft("C", allowed_next_steps=["A"]),
                StepDraft("D", allowed_previous_steps=["B"]),
            )
        )
        code_a, code_b = created.steps[0].step_code, created.steps[1].step_code

        updated = self.store.save(
            _draft(
                "Support",
                StepDraft("B", step_code=code_a),
                StepDraft("A", step_code=code_b),
                StepDraft("C", allowed_next_steps=["A"]),
                StepDraft("D", allowed_previous_steps=["B"]),
            ),
            workflow_id=created.id,
        )

        self.assertEqual(updated.step(code_a).step_name, "B")
        self.assertEqual(updated.steps[2].allowed_next_steps, frozenset({"B"}))
        self.assertEqual(updated.steps[3].allowed_previous_steps, frozenset({"A"}))

    def test_unknown_step_code_is_a_violation(self) -> None:
        created = self.store.save(_draft("Support", StepDraft("A")))
        with self.assertRaises(WorkflowValidationError) as caught:
            self.store.save(
                _draft("Support", StepDraft("A", step_code="elsewhere-01")),
                workflow_id=created.id,
            )

        self.assertEqual(caught.exception.violations[0].code, "unknown_step_code")
        self.assertEqual(self.store.get(created.id).version, 1)

    def test_missing_workflow(self) -> None:
        with self.assertRaises(WorkflowNotFound):
            self.store.get(404)
        with self.assertRaises(WorkflowNotFound):
            self.store.get(None)
        with self.assertRaises(WorkflowNotFound):
            self.store.save(_draft("Ghost", StepDraft("A")), workflow_id=404)

    def test_set_active(self) -> None:
        created = self.store.save(_draft("Support", StepDraft("A")))
        self.assertFalse(self.store.set_active(created.id, False).is_active)
        self.assertTrue(self.store.set_active(created.id, True).is_active)
        with self.assertRaises(WorkflowNotFound):
            self.store.set_active(404, True)


class WorkflowApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def _create(self, **overrides):
        payload = {
            "name": "Onboarding Workflow",
            "description": "Standard onboarding flow",
            "steps": [
                {"step_name": "Collect paperwork", "category_code": 10, "workgroup_id": 3},
                {
                    "step_name": "Provision equipment",
                    "category_code": 20,
                    "allowed_next_steps": ["Done"],
                },
                {"step_name": "Done", "category_code": 30},
                {"step_name": "Withdrawn", "category_code": 90},
            ],
        }
        payload.update(overrides)
        return self.client.post(reverse("workflow-list"), payload, format="json")

    def test_create_workflow(self) -> None:
        response = self._create()
        self.assertEqual(response.status_code, 201)
        steps = response.data["steps"]
        self.assertEqual([step["order"] for step in steps], [1, 2, 3, 4])
        self.assertEqual(steps[3]["category_code"], WorkflowStep.CANCELLED)
        self.assertEqual(steps[0]["workgroup_id"], 3)
        self.assertTrue(all(step["step_code"] for step in steps))

        response = self.client.get(reverse("workflow-list"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)

    def test_invalid_workflow_lists_all_errors(self) -> None:
        response = self._create(
            name="",
            steps=[
                {"step_name": "Open", "allowed_next_steps": ["Missing"]},
                {"step_name": "Open"},
            ],
        )
        self.assertEqual(response.status_code, 400)
        codes = sorted(error["code"] for error in response.data["errors"])
        self.assertEqual(codes, ["blank_name", "dangling_reference", "duplicate_step_name"])

    def test_partial_update_keeps_steps(self) -> None:
        created = self._create().data
        response = self.client.patch(
            reverse("workflow-detail", args=[created["id"]]),
            {"description": "Revised"},
            format="json",
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["description"], "Revised")
        self.assertEqual(response.data["version"], 2)
        self.assertEqual(
            [step["step_code"] for step in response.data["steps"]],
            [step["step_code"] for step in created["steps"]],
        )

    def test_publish_and_deactivate_workflow(self) -> None:
        workflow_id = self._create().data["id"]

        response = self.client.post(reverse("workflow-deactivate", args=[workflow_id]), format="json")
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.data["is_active"])

        response = self.client.post(reverse("workflow-publish", args=[workflow_id]), format="json")
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.data["is_active"])

    def test_delete_only_deactivates(self) -> None:
        workflow_id = self._create().data["id"]

        response = self.client.delete(reverse("workflow-detail", args=[workflow_id]))
        self.assertEqual(response.status_code, 204)
        self.assertFalse(Workflow.objects.get(pk=workflow_id).is_active)
