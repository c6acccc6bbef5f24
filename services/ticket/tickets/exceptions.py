"""Errors raised while transitioning tickets.

A denied transition is not an error: it comes back from the executor as a
:class:`tickets.executor.Denied` value. These exceptions cover missing
records and failures of the unit of work itself.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.exceptions import APIException, NotFound


class TicketNotFound(NotFound):
    default_detail = "Ticket not found."
    default_code = "ticket_not_found"


class StepNotFound(NotFound):
    default_detail = "Step not found in the ticket's workflow."
    default_code = "step_not_found"


class TransitionConflict(APIException):
    """The ticket or its workflow changed between load and commit."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "The ticket changed while it was being transitioned. Retry with fresh data."
    default_code = "transition_conflict"


class TransitionSystemError(APIException):
    """Storage failed inside the transition's unit of work; nothing was committed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = "The transition could not be recorded."
    default_code = "transition_failed"
