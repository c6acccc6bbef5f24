"""Background tasks for the ticket service."""
from __future__ import annotations

import logging

from celery import shared_task
from django.db import transaction
from rest_framework.exceptions import NotFound

from .exceptions import TransitionConflict, TransitionSystemError
from .executor import Denied, TransitionExecutor
from .models import TransitionSubmission

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=3, default_retry_delay=5)
def process_transition_submission(self, submission_id: str) -> None:
    """Apply a queued transition through the same executor as the HTTP API."""

    submission: TransitionSubmission | None = None
    try:
        with transaction.atomic():
            submission = (
                TransitionSubmission.objects.select_for_update().get(id=submission_id)
            )
            if submission.status in {
                TransitionSubmission.COMPLETED,
                TransitionSubmission.DENIED,
            }:
                logger.info("Submission %s already finished", submission_id)
                return
            if submission.status == TransitionSubmission.PROCESSING:
                logger.info("Submission %s already processing", submission_id)
                return
            submission.mark_processing()

        outcome = TransitionExecutor().transition(
            submission.ticket_id, submission.step_code, submission.actor
        )
        if isinstance(outcome, Denied):
            submission.mark_denied(outcome.reason)
            logger.info("Submission %s denied: %s", submission_id, outcome.reason)
            return
        submission.mark_completed()
        logger.info(
            "Ticket %s moved to %s from submission %s",
            submission.ticket_id,
            outcome.applied_step_name,
            submission_id,
        )
    except TransitionSubmission.DoesNotExist:
        logger.warning("Submission %s does not exist", submission_id)
    except NotFound as exc:
        # Missing tickets or steps will not appear on a retry.
        logger.warning("Submission %s references a missing record: %s", submission_id, exc)
        if submission is not None:
            submission.mark_failed(str(exc.detail))
    except (TransitionConflict, TransitionSystemError) as exc:
        logger.warning("Submission %s hit a transient failure: %s", submission_id, exc)
        _retry_or_fail(self, submission, exc, str(exc.detail))
    except Exception as exc:
        logger.exception("Processing submission %s failed", submission_id)
        _retry_or_fail(self, submission, exc, str(exc))


def _retry_or_fail(
    task, submission: TransitionSubmission | None, exc: Exception, message: str
) -> None:
    """Put the submission back in the queue, or fail it once retries run out."""

    if submission is not None:
        if task.request.retries >= task.max_retries:
            submission.mark_failed(message)
            return
        submission.status = TransitionSubmission.PENDING
        submission.save(update_fields=["status", "updated_at"])
    raise task.retry(exc=exc, countdown=min(60, 2 ** task.request.retries))
