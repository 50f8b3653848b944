from rest_framework import serializers


class AvailabilityQuerySerializer(serializers.Serializer):
    date = serializers.DateField(help_text="Target date in YYYY-MM-DD format.")


class SlotQuerySerializer(serializers.Serializer):
    """Query parameters for slot browsing."""

    date = serializers.DateField(help_text="Target date in YYYY-MM-DD format.")
    duration = serializers.IntegerField(
        min_value=1,
        help_text="Requested appointment length in minutes.",
    )
    exclude_appointment_id = serializers.IntegerField(
        required=False,
        help_text="Ignore this appointment's own booking (reschedule previews).",
    )


class WindowSerializer(serializers.Serializer):
    """A free [start, end) window rendered as HH:MM strings."""

    start = serializers.SerializerMethodField()
    end = serializers.SerializerMethodField()

    def get_start(self, window):
        return f"{window.start // 60:02d}:{window.start % 60:02d}"

    def get_end(self, window):
        return f"{window.end // 60:02d}:{window.end % 60:02d}"


class SlotSerializer(serializers.Serializer):
    start = serializers.TimeField(source="start_time", format="%H:%M")
    end = serializers.TimeField(source="end_time", format="%H:%M")
