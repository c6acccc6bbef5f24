# Generated manually for initial schema.
from __future__ import annotations

from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):
    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Workflow",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255, unique=True)),
                ("description", models.TextField(blank=True)),
                ("version", models.PositiveIntegerField(default=1)),
                ("is_active", models.BooleanField(default=True)),
                ("last_step_number", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={"ordering": ["name", "version"]},
        ),
        migrations.CreateModel(
            name="WorkflowStep",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("step_code", models.CharField(max_length=64)),
                ("step_name", models.CharField(max_length=255)),
                ("order", models.PositiveIntegerField(default=1)),
                (
                    "category_code",
                    models.PositiveSmallIntegerField(
                        choices=[(10, "New"), (20, "In Progress"), (30, "Closed"), (40, "Cancelled")],
                        default=10,
                    ),
                ),
                ("workgroup_id", models.IntegerField(blank=True, null=True)),
                ("allowed_next_steps", models.JSONField(blank=True, default=list)),
                ("allowed_previous_steps", models.JSONField(blank=True, default=list)),
                (
                    "workflow",
                    models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="steps", to="workflows.workflow"),
                ),
            ],
            options={
                "ordering": ["order", "id"],
                "unique_together": {
                    ("workflow", "order"),
                    ("workflow", "step_code"),
                    ("workflow", "step_name"),
                },
            },
        ),
    ]
