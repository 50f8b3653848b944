from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from appointments.api_views import error_response
from appointments.exceptions import SchedulingError
from appointments.policy import local_now
from .serializers import (
    AvailabilityQuerySerializer,
    SlotQuerySerializer,
    SlotSerializer,
    WindowSerializer,
)
from .services import AvailabilityResolver


class ProviderAvailabilityAPIView(APIView):
    """
    GET /providers/api/<provider_id>/availability/?date=2026-02-16

    Returns the provider's free windows for the date after schedule,
    exceptions, holidays and existing bookings are applied.

    Success Response (200):
        {
            "provider_id": 5,
            "date": "2026-02-16",
            "windows": [{"start": "09:00", "end": "10:00"}, ...]
        }
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, provider_id):
        query = AvailabilityQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        target_date = query.validated_data["date"]
        try:
            windows = AvailabilityResolver().get_availability(provider_id, target_date)
        except SchedulingError as e:
            return error_response(e)

        return Response(
            {
                "provider_id": provider_id,
                "date": target_date.isoformat(),
                "windows": WindowSerializer(list(windows), many=True).data,
            },
            status=status.HTTP_200_OK,
        )


class ProviderSlotsAPIView(APIView):
    """
    GET /providers/api/<provider_id>/slots/?date=2026-02-16&duration=60

    Returns discrete bookable start times at the configured granularity.
    Slots that have already started today are omitted.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request, provider_id):
        query = SlotQuerySerializer(data=request.query_params)
        if not query.is_valid():
            return Response(query.errors, status=status.HTTP_400_BAD_REQUEST)

        data = query.validated_data
        resolver = AvailabilityResolver()
        try:
            slots = resolver.get_slots(
                provider_id,
                data["date"],
                data["duration"],
                exclude_appointment_id=data.get("exclude_appointment_id"),
                now=local_now(),
            )
        except SchedulingError as e:
            return error_response(e)

        return Response(
            {
                "provider_id": provider_id,
                "date": data["date"].isoformat(),
                "duration": data["duration"],
                "granularity": resolver.policy.slot_granularity_minutes,
                "results": SlotSerializer(slots, many=True).data,
            },
            status=status.HTTP_200_OK,
        )
