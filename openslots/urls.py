"""
URL configuration for the openslots project.

Only JSON API endpoints are exposed; there is no HTML front end.
"""

from django.urls import include, path

urlpatterns = [
    path("providers/", include("providers.urls")),
    path("appointments/", include("appointments.urls")),
]
