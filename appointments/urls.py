from django.urls import path

from . import api_views

app_name = "appointments"

urlpatterns = [
    path(
        "api/book/",
        api_views.BookAppointmentAPIView.as_view(),
        name="api_book_appointment",
    ),
    path(
        "api/<int:appointment_id>/",
        api_views.AppointmentDetailAPIView.as_view(),
        name="api_appointment_detail",
    ),
    path(
        "api/<int:appointment_id>/<str:action>/",
        api_views.AppointmentTransitionAPIView.as_view(),
        name="api_appointment_transition",
    ),
]
