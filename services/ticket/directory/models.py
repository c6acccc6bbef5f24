"""Database models for the workgroup and employee directory."""
from __future__ import annotations

from django.db import models


class Workgroup(models.Model):
    """A team that can own tickets sitting in a workflow step."""

    name = models.CharField(max_length=255, unique=True)
    description = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self) -> str:
        return self.name


class Employee(models.Model):
    """A person who can be made responsible for a ticket."""

    name = models.CharField(max_length=255)
    email = models.EmailField(unique=True)
    workgroup = models.ForeignKey(
        Workgroup,
        related_name="employees",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "email"]

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"
