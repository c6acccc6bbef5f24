"""Database models for workflow definitions."""
from __future__ import annotations

from django.db import models


class Workflow(models.Model):
    """A named, ordered set of steps a ticket moves through."""

    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    version = models.PositiveIntegerField(default=1)
    is_active = models.BooleanField(default=True)
    last_step_number = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "version"]

    def __str__(self) -> str:
        return f"{self.name} v{self.version}"


class WorkflowStep(models.Model):
    """An ordered step inside a workflow."""

    NEW = 10
    IN_PROGRESS = 20
    CLOSED = 30
    CANCELLED = 40
    # Older clients submit 90 for cancelled steps; it is stored as 40.
    LEGACY_CANCELLED = 90

    CATEGORY_CHOICES = [
        (NEW, "New"),
        (IN_PROGRESS, "In Progress"),
        (CLOSED, "Closed"),
        (CANCELLED, "Cancelled"),
    ]

    workflow = models.ForeignKey(Workflow, related_name="steps", on_delete=models.CASCADE)
    step_code = models.CharField(max_length=64)
    step_name = models.CharField(max_length=255)
    order = models.PositiveIntegerField(default=1)
    category_code = models.PositiveSmallIntegerField(choices=CATEGORY_CHOICES, default=NEW)
    workgroup_id = models.IntegerField(null=True, blank=True)
    allowed_next_steps = models.JSONField(default=list, blank=True)
    allowed_previous_steps = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["order", "id"]
        unique_together = [
            ("workflow", "order"),
            ("workflow", "step_code"),
            ("workflow", "step_name"),
        ]

    def __str__(self) -> str:
        return f"{self.order}. {self.step_name}"
