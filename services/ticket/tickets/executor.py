"""Moves tickets between the steps of their workflow.

:class:`TransitionExecutor` is the only code path that changes a ticket's
step. A transition is validated against a snapshot of the workflow, then
applied in one database transaction that locks the ticket row, re-checks
that neither the ticket's step nor the workflow version moved since they
were read, re-derives the assignment and appends a history entry.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from django.conf import settings
from django.db import DatabaseError, transaction

from workflows.definitions import StepDefinition, WorkflowDefinition
from workflows.exceptions import WorkflowNotFound
from workflows.store import WorkflowDefinitionStore
from workflows.validator import Deny, TransitionValidator

from .assignment import AssignmentResolver
from .exceptions import StepNotFound, TicketNotFound, TransitionConflict, TransitionSystemError
from .models import Ticket, TransitionHistoryEntry

logger = logging.getLogger(__name__)

WORKFLOW_MISSING = "workflow missing"


@dataclass(frozen=True)
class Transitioned:
    ticket: Ticket
    applied_step_name: str
    history_entry: TransitionHistoryEntry


@dataclass(frozen=True)
class Denied:
    reason: str


TransitionOutcome = Union[Transitioned, Denied]


class TransitionExecutor:
    def __init__(
        self,
        store: Optional[WorkflowDefinitionStore] = None,
        validator: Optional[TransitionValidator] = None,
        resolver: Optional[AssignmentResolver] = None,
        conflict_retries: Optional[int] = None,
    ) -> None:
        self.store = store or WorkflowDefinitionStore()
        self.validator = validator or TransitionValidator()
        self.resolver = resolver or AssignmentResolver()
        if conflict_retries is None:
            conflict_retries = settings.TICKET_TRANSITION_CONFLICT_RETRIES
        self.conflict_retries = conflict_retries

    def transition(self, ticket_id: int, to_step_code: str, actor: str) -> TransitionOutcome:
        """Move ``ticket_id`` to ``to_step_code`` on behalf of ``actor``.

        Returns :class:`Transitioned` or :class:`Denied`. Raises
        :class:`TicketNotFound` or :class:`StepNotFound` for unknown
        references, :class:`TransitionConflict` when the ticket keeps
        changing underneath us, and :class:`TransitionSystemError` when
        storage fails. Nothing is written unless the result is
        :class:`Transitioned`.
        """

        attempt = 0
        while True:
            try:
                return self._attempt(ticket_id, to_step_code, actor)
            except TransitionConflict:
                if attempt >= self.conflict_retries:
                    logger.warning(
                        "Ticket %s transition to %s conflicted %d time(s), giving up",
                        ticket_id,
                        to_step_code,
                        attempt + 1,
                    )
                    raise
                attempt += 1
                logger.info(
                    "Ticket %s changed during transition to %s, retrying", ticket_id, to_step_code
                )

    def allowed_steps(self, ticket_id: int) -> List[StepDefinition]:
        ticket = self._load_ticket(ticket_id)
        try:
            definition = self.store.get(ticket.workflow_id)
        except WorkflowNotFound:
            return []
        return self.validator.allowed_steps(definition, ticket.current_step_code)

    def _attempt(self, ticket_id: int, to_step_code: str, actor: str) -> TransitionOutcome:
        ticket = self._load_ticket(ticket_id)
        try:
            definition = self.store.get(ticket.workflow_id)
        except WorkflowNotFound:
            logger.info("Ticket %s references missing workflow %s", ticket.pk, ticket.workflow_id)
            return Denied(WORKFLOW_MISSING)

        to_step = definition.step(to_step_code)
        if to_step is None and to_step_code != ticket.current_step_code:
            raise StepNotFound()

        decision = self.validator.is_allowed(definition, ticket.current_step_code, to_step_code)
        if isinstance(decision, Deny):
            logger.info(
                "Ticket %s: %s -> %s denied: %s",
                ticket.pk,
                ticket.current_step_code,
                to_step_code,
                decision.reason,
            )
            return Denied(decision.reason)

        try:
            with transaction.atomic():
                outcome = self._apply(ticket, definition, to_step, actor)
        except DatabaseError as exc:
            logger.exception("Ticket %s transition to %s failed", ticket.pk, to_step_code)
            raise TransitionSystemError() from exc

        logger.info(
            "Ticket %s moved %s -> %s by %s",
            ticket.pk,
            outcome.history_entry.old_value,
            outcome.applied_step_name,
            actor,
        )
        return outcome

    def _apply(
        self,
        ticket: Ticket,
        definition: WorkflowDefinition,
        to_step: StepDefinition,
        actor: str,
    ) -> Transitioned:
        locked = Ticket.objects.select_for_update().filter(pk=ticket.pk).first()
        if locked is None:
            raise TicketNotFound()
        if (
            locked.current_step_code != ticket.current_step_code
            or locked.workflow_id != ticket.workflow_id
        ):
            raise TransitionConflict()
        if not self.store.is_current(definition):
            raise TransitionConflict()

        from_step = definition.step(ticket.current_step_code)
        assignment = self.resolver.resolve(to_step)

        locked.current_step_code = to_step.step_code
        locked.workgroup_id = assignment.workgroup_id
        locked.responsible_employee_id = assignment.responsible_employee_id
        locked.save(
            update_fields=[
                "current_step_code",
                "workgroup_id",
                "responsible_employee_id",
                "updated_at",
            ]
        )
        entry = TransitionHistoryEntry.objects.create(
            ticket=locked,
            activity_type=TransitionHistoryEntry.STATUS_CHANGE,
            field_name=TransitionHistoryEntry.STATUS_FIELD,
            # The old step may have been removed from the workflow since.
            old_value=from_step.step_name if from_step is not None else ticket.current_step_code,
            new_value=to_step.step_name,
            changed_by=actor,
        )
        return Transitioned(ticket=locked, applied_step_name=to_step.step_name, history_entry=entry)

    @staticmethod
    def _load_ticket(ticket_id: int) -> Ticket:
        try:
            ticket = Ticket.objects.filter(pk=ticket_id).first()
        except (TypeError, ValueError):
            ticket = None
        if ticket is None:
            raise TicketNotFound()
        return ticket
