from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    SchedulingError,
    ValidationError,
    WindowViolation,
)
from .models import Appointment
from .serializers import (
    ActivityLogEntrySerializer,
    AppointmentResponseSerializer,
    BookAppointmentSerializer,
    RescheduleSerializer,
    TransitionSerializer,
)
from .services import AppointmentLifecycle

ERROR_STATUS = [
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PreconditionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
    (WindowViolation, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def error_response(exc: SchedulingError):
    """Render a scheduling error as {"detail", "code", "context"}."""
    http_status = status.HTTP_400_BAD_REQUEST
    for error_class, mapped in ERROR_STATUS:
        if isinstance(exc, error_class):
            http_status = mapped
            break
    return Response(
        {"detail": exc.message, "code": exc.code, "context": exc.context},
        status=http_status,
    )


def _actor(request):
    return request.user.get_username() or "system"


def _result_response(result, http_status=status.HTTP_200_OK):
    data = {
        "appointment": AppointmentResponseSerializer(result.appointment).data,
        "warnings": result.warnings,
    }
    if result.replaced is not None:
        data["replaced"] = AppointmentResponseSerializer(result.replaced).data
    return Response(data, status=http_status)


class BookAppointmentAPIView(APIView):
    """
    POST /appointments/api/book/

    Request body:
        {
            "client_id": 7,
            "provider_id": 5,
            "service_id": 3,
            "appointment_date": "2026-02-16",
            "start_time": "10:00",
            "duration_minutes": 60,     (optional)
            "notes": "First visit"      (optional)
        }

    Success Response (201):
        {"appointment": {...}, "warnings": [...]}

    Error Responses:
        400: Validation errors.
        404: Client, provider or service not found.
        409: Slot unavailable, inactive provider, or service not offered.
    """

    permission_classes = [IsAuthenticated]

    def post(self, request):
        serializer = BookAppointmentSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        try:
            result = AppointmentLifecycle().book(
                client_id=data["client_id"],
                provider_id=data["provider_id"],
                service_id=data["service_id"],
                appointment_date=data["appointment_date"],
                start_time=data["start_time"],
                duration_minutes=data.get("duration_minutes"),
                notes=data.get("notes", ""),
                actor=_actor(request),
            )
        except SchedulingError as e:
            return error_response(e)

        return _result_response(result, status.HTTP_201_CREATED)


class AppointmentDetailAPIView(APIView):
    """
    GET /appointments/api/<appointment_id>/

    Returns the appointment and its activity log.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, appointment_id):
        try:
            appointment = Appointment.objects.select_related(
                "client", "provider", "service"
            ).get(pk=appointment_id)
        except Appointment.DoesNotExist:
            return error_response(NotFoundError("Appointment", appointment_id))

        return Response(
            {
                "appointment": AppointmentResponseSerializer(appointment).data,
                "activity": ActivityLogEntrySerializer(appointment.activity.all(), many=True).data,
            },
            status=status.HTTP_200_OK,
        )


class AppointmentTransitionAPIView(APIView):
    """
    POST /appointments/api/<appointment_id>/<action>/

    action is one of: confirm, cancel, reschedule, check-in, no-show, complete.

    Error Responses:
        400: Validation errors.
        404: Appointment not found.
        409: Illegal status transition or slot unavailable.
        422: Outside the check-in / no-show time window.
    """

    permission_classes = [IsAuthenticated]

    ACTIONS = ("confirm", "cancel", "reschedule", "check-in", "no-show", "complete")

    def post(self, request, appointment_id, action):
        if action not in self.ACTIONS:
            return Response(
                {"detail": f"Unknown action '{action}'.", "code": "unknown_action"},
                status=status.HTTP_404_NOT_FOUND,
            )

        serializer_class = RescheduleSerializer if action == "reschedule" else TransitionSerializer
        serializer = serializer_class(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = serializer.validated_data
        lifecycle = AppointmentLifecycle()
        actor = _actor(request)
        notes = data.get("notes", "")

        try:
            if action == "confirm":
                result = lifecycle.confirm(appointment_id, actor=actor, notes=notes)
            elif action == "cancel":
                result = lifecycle.cancel(appointment_id, data.get("reason", ""), actor=actor, notes=notes)
            elif action == "reschedule":
                result = lifecycle.reschedule(
                    appointment_id,
                    new_date=data.get("new_date"),
                    new_start_time=data.get("new_start_time"),
                    new_provider_id=data.get("new_provider_id"),
                    actor=actor,
                    notes=notes,
                )
            elif action == "check-in":
                result = lifecycle.check_in(appointment_id, actor=actor, notes=notes)
            elif action == "no-show":
                result = lifecycle.mark_no_show(appointment_id, actor=actor, notes=notes)
            else:
                result = lifecycle.complete(
                    appointment_id,
                    data.get("completion_notes", ""),
                    actor=actor,
                    notes=notes,
                )
        except SchedulingError as e:
            return error_response(e)

        return _result_response(result)
