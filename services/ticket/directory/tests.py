"""Tests for the directory API and lookups."""
from __future__ import annotations

from django.test import TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from .models import Employee, Workgroup
from .services import EmployeeDirectory, WorkgroupDirectory


class DirectoryApiTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def test_create_workgroup_and_employee(self) -> None:
        response = self.client.post(
            reverse("workgroup-list"), {"name": "Service Desk"}, format="json"
        )
        self.assertEqual(response.status_code, 201)
        workgroup_id = response.data["id"]

        payload = {
            "name": "Casey Agent",
            "email": "casey@example.com",
            "workgroup": workgroup_id,
        }
        response = self.client.post(reverse("employee-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["workgroup_name"], "Service Desk")

        response = self.client.get(reverse("employee-list"), {"workgroup": workgroup_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)

    def test_employee_without_workgroup(self) -> None:
        payload = {"name": "Robin", "email": "robin@example.com"}
        response = self.client.post(reverse("employee-list"), payload, format="json")
        self.assertEqual(response.status_code, 201)
        self.assertIsNone(response.data["workgroup"])
        self.assertIsNone(response.data["workgroup_name"])


class DirectoryLookupTests(TestCase):
    def setUp(self) -> None:
        self.workgroup = Workgroup.objects.create(name="Field Support")

    def test_list_by_workgroup_is_ordered_by_id_and_skips_inactive(self) -> None:
        # Names sort opposite to ids so ordering by name would be caught.
        first = Employee.objects.create(
            name="Zed", email="zed@example.com", workgroup=self.workgroup
        )
        Employee.objects.create(
            name="Amy", email="amy@example.com", workgroup=self.workgroup, is_active=False
        )
        third = Employee.objects.create(
            name="Bob", email="bob@example.com", workgroup=self.workgroup
        )
        Employee.objects.create(name="Out", email="out@example.com")

        members = EmployeeDirectory().list_by_workgroup(self.workgroup.id)

        self.assertEqual([employee.id for employee in members], [first.id, third.id])

    def test_workgroup_lookup(self) -> None:
        directory = WorkgroupDirectory()
        self.assertEqual(directory.get(self.workgroup.id).name, "Field Support")
        self.assertIsNone(directory.get(None))
        self.assertIsNone(directory.get(self.workgroup.id + 100))
