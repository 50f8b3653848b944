from django.urls import path

from . import api_views

app_name = "providers"

urlpatterns = [
    path(
        "api/<int:provider_id>/availability/",
        api_views.ProviderAvailabilityAPIView.as_view(),
        name="api_availability",
    ),
    path(
        "api/<int:provider_id>/slots/",
        api_views.ProviderSlotsAPIView.as_view(),
        name="api_slots",
    ),
]
