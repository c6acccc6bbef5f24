"""Route registration for directory endpoints."""
from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from .views import EmployeeViewSet, WorkgroupViewSet

router = DefaultRouter()
router.register("workgroups", WorkgroupViewSet, basename="workgroup")
router.register("employees", EmployeeViewSet, basename="employee")

urlpatterns = [
    path("", include(router.urls)),
]
