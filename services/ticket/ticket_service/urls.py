"""URL configuration for the ticket workflow service."""
from django.urls import include, path

urlpatterns = [
    path("api/", include("directory.urls")),
    path("api/", include("workflows.urls")),
    path("api/", include("tickets.urls")),
]
