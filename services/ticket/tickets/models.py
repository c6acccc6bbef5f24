"""Database models for tickets and their transition history."""
from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone


class Ticket(models.Model):
    """A ticket moving through the steps of a workflow."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    PRIORITY_CHOICES = [
        (LOW, "Low"),
        (MEDIUM, "Medium"),
        (HIGH, "High"),
    ]

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    priority = models.CharField(max_length=16, choices=PRIORITY_CHOICES, default=MEDIUM)
    requester_id = models.IntegerField(null=True, blank=True)
    # Changed only by tickets.executor.TransitionExecutor once the ticket exists.
    workflow_id = models.IntegerField()
    current_step_code = models.CharField(max_length=64)
    workgroup_id = models.IntegerField(null=True, blank=True)
    responsible_employee_id = models.IntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at", "id"]

    def __str__(self) -> str:
        return f"{self.title} ({self.current_step_code})"


class HistoryEntryImmutable(Exception):
    pass


class TransitionHistoryQuerySet(models.QuerySet):
    def update(self, **kwargs):  # type: ignore[override]
        raise HistoryEntryImmutable("History entries cannot be modified")

    def delete(self):  # type: ignore[override]
        raise HistoryEntryImmutable("History entries cannot be deleted")


class TransitionHistoryEntry(models.Model):
    """Append-only audit record of a ticket's step changes."""

    STATUS_CHANGE = "status_change"
    STATUS_FIELD = "status"

    ticket = models.ForeignKey(Ticket, related_name="history", on_delete=models.PROTECT)
    activity_type = models.CharField(max_length=32, default=STATUS_CHANGE)
    field_name = models.CharField(max_length=64, default=STATUS_FIELD)
    old_value = models.CharField(max_length=255, null=True, blank=True)
    new_value = models.CharField(max_length=255, null=True, blank=True)
    changed_by = models.CharField(max_length=255)
    timestamp = models.DateTimeField(default=timezone.now)

    objects = TransitionHistoryQuerySet.as_manager()

    class Meta:
        ordering = ["timestamp", "id"]
        verbose_name_plural = "transition history entries"

    def save(self, *args, **kwargs):  # type: ignore[override]
        if self.pk is not None:
            raise HistoryEntryImmutable("History entries cannot be modified")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):  # type: ignore[override]
        raise HistoryEntryImmutable("History entries cannot be deleted")

    def __str__(self) -> str:
        return f"{self.ticket_id}: {self.old_value} -> {self.new_value}"


class TransitionSubmission(models.Model):
    """Queue-backed transition request used for bulk moves."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    DENIED = "denied"
    FAILED = "failed"

    STATUS_CHOICES = [
        (PENDING, "Pending"),
        (PROCESSING, "Processing"),
        (COMPLETED, "Completed"),
        (DENIED, "Denied"),
        (FAILED, "Failed"),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    client_reference = models.UUIDField(default=uuid.uuid4, unique=True, editable=False)
    status = models.CharField(max_length=32, choices=STATUS_CHOICES, default=PENDING)
    ticket = models.ForeignKey(
        "Ticket",
        on_delete=models.CASCADE,
        related_name="transition_submissions",
    )
    step_code = models.CharField(max_length=64)
    actor = models.CharField(max_length=255)
    reason = models.CharField(max_length=255, blank=True)
    error_message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="tickets_submission_status_idx"),
            models.Index(fields=["client_reference"], name="tickets_submission_ref_idx"),
        ]

    def mark_processing(self) -> None:
        self.status = self.PROCESSING
        self.save(update_fields=["status", "updated_at"])

    def mark_completed(self) -> None:
        self._finish(self.COMPLETED)

    def mark_denied(self, reason: str) -> None:
        self.reason = reason
        self._finish(self.DENIED)

    def mark_failed(self, message: str) -> None:
        self.error_message = message
        self._finish(self.FAILED)

    def _finish(self, status: str) -> None:
        self.status = status
        self.completed_at = timezone.now()
        self.save(
            update_fields=["status", "reason", "error_message", "completed_at", "updated_at"]
        )
