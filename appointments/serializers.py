from rest_framework import serializers

from .models import ActivityLogEntry, Appointment


class BookAppointmentSerializer(serializers.Serializer):
    """
    Request serializer for booking an appointment.

    Validates the request shape before it reaches the booking service,
    which performs the business-logic validation.
    """

    client_id = serializers.IntegerField()
    provider_id = serializers.IntegerField()
    service_id = serializers.IntegerField()
    appointment_date = serializers.DateField(
        help_text="Desired date in YYYY-MM-DD format.",
    )
    start_time = serializers.TimeField(
        help_text="Desired start time in HH:MM format.",
    )
    duration_minutes = serializers.IntegerField(
        required=False,
        min_value=1,
        help_text="Defaults to the service's first allowed duration.",
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class RescheduleSerializer(serializers.Serializer):
    new_date = serializers.DateField(required=False)
    new_start_time = serializers.TimeField(required=False)
    new_provider_id = serializers.IntegerField(required=False)
    notes = serializers.CharField(required=False, allow_blank=True, default="")

    def validate(self, attrs):
        if not any(attrs.get(k) is not None for k in ("new_date", "new_start_time", "new_provider_id")):
            raise serializers.ValidationError(
                "Provide at least one of new_date, new_start_time or new_provider_id."
            )
        return attrs


class TransitionSerializer(serializers.Serializer):
    """Body for confirm / cancel / check-in / no-show / complete."""

    notes = serializers.CharField(required=False, allow_blank=True, default="")
    reason = serializers.CharField(required=False, allow_blank=True, default="")
    completion_notes = serializers.CharField(required=False, allow_blank=True, default="")


class ActivityLogEntrySerializer(serializers.ModelSerializer):
    class Meta:
        model = ActivityLogEntry
        fields = ["id", "actor", "action", "old_value", "new_value", "note", "created_at"]
        read_only_fields = fields


class AppointmentResponseSerializer(serializers.ModelSerializer):
    """
    Response serializer for an appointment.

    Returns the full appointment details after any lifecycle operation.
    """

    client_name = serializers.CharField(source="client.name", read_only=True)
    provider_name = serializers.CharField(source="provider.name", read_only=True)
    service_name = serializers.CharField(source="service.name", read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)
    start_time = serializers.TimeField(format="%H:%M", read_only=True)
    end_time = serializers.TimeField(format="%H:%M", read_only=True)

    class Meta:
        model = Appointment
        fields = [
            "id",
            "client",
            "client_name",
            "provider",
            "provider_name",
            "service",
            "service_name",
            "appointment_date",
            "start_time",
            "end_time",
            "duration_minutes",
            "status",
            "status_display",
            "notes",
            "external_calendar_ref",
            "rescheduled_from",
            "checked_in_at",
            "completed_at",
            "cancelled_at",
            "cancellation_reason",
            "created_at",
        ]
        read_only_fields = fields
