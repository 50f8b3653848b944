"""
Appointment booking service.

Handles the booking flow:
1. Validate the request (ids present, time parseable, duration allowed)
2. Resolve the client, provider and service
3. Check the provider is active and offers the service
4. Lock the provider row so bookings for that provider are serialized
5. Re-check slot availability under the lock
6. Create the appointment record

select_for_update() on the Provider row acts as a per-provider mutex: two
concurrent requests for the same provider cannot both pass the availability
check and write overlapping bookings. Locking the provider (rather than its
appointments) also covers the case where the provider has no bookings yet.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime

from django.db import transaction
from django.db.models import Q

from appointments.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
)
from appointments.models import Appointment
from clients.models import Client
from providers.intervals import MINUTES_PER_DAY, format_minutes, minutes_to_time, parse_time
from providers.models import Provider, Service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    """A validated booking request, ready to be reserved."""

    client: Client
    provider: Provider
    service: Service
    appointment_date: date
    start: int
    duration_minutes: int
    notes: str = ""

    @property
    def end(self):
        return self.start + self.duration_minutes


# ── Validation helpers ───────────────────────────────────────────────────────


def _require(value, field):
    if value is None or value == "":
        raise ValidationError(f"{field} is required.", context={"field": field})
    return value


def parse_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid date: {value!r}. Expected YYYY-MM-DD.",
        context={"date": str(value)},
    )


def _get(model, pk, entity):
    try:
        return model.objects.get(pk=pk)
    except (model.DoesNotExist, ValueError, TypeError):
        raise NotFoundError(entity, pk)


def get_client(client_id):
    return _get(Client, _require(client_id, "client_id"), "Client")


def get_provider(provider_id):
    return _get(Provider, _require(provider_id, "provider_id"), "Provider")


def get_service(service_id):
    return _get(Service, _require(service_id, "service_id"), "Service")


def validate_duration(service, duration_minutes):
    """Return the effective duration, defaulting to the service's first allowed one."""
    if duration_minutes is None:
        duration_minutes = service.default_duration

    if (
        not isinstance(duration_minutes, int)
        or isinstance(duration_minutes, bool)
        or duration_minutes <= 0
    ):
        raise ValidationError(
            "Duration must be a positive number of minutes.",
            context={"duration_minutes": duration_minutes},
        )

    if not service.allows_duration(duration_minutes):
        raise ValidationError(
            f"{duration_minutes} minutes is not an allowed duration for {service.name}.",
            code="invalid_duration",
            context={
                "service_id": service.pk,
                "duration_minutes": duration_minutes,
                "allowed_durations": list(service.allowed_durations),
            },
        )
    return duration_minutes


def validate_same_day(start, duration_minutes):
    if start + duration_minutes >= MINUTES_PER_DAY:
        raise ValidationError(
            "Appointment must end on the same day it starts.",
            context={"start": format_minutes(start), "duration_minutes": duration_minutes},
        )


def validate_not_past(appointment_date, start, now):
    if datetime.combine(appointment_date, minutes_to_time(start)) <= now:
        raise ValidationError(
            "Cannot book a slot that has already passed.",
            code="past_date",
            context={"date": appointment_date.isoformat(), "start": format_minutes(start)},
        )


def ensure_can_serve(provider, service):
    if not provider.is_active:
        raise PreconditionError(
            f"Provider {provider.name} is not accepting bookings.",
            code="inactive_provider",
            context={"provider_id": provider.pk},
        )
    if not service.is_active:
        raise PreconditionError(
            f"Service {service.name} is not available.",
            code="inactive_service",
            context={"service_id": service.pk},
        )
    if not provider.offers(service):
        raise PreconditionError(
            f"Provider {provider.name} does not offer {service.name}.",
            code="service_not_offered",
            context={"provider_id": provider.pk, "service_id": service.pk},
        )


def build_booking_request(
    *,
    client_id,
    provider_id,
    service_id,
    appointment_date,
    start_time,
    duration_minutes=None,
    notes="",
    now,
) -> BookingRequest:
    """Validate everything that can be checked without taking a lock."""

    # ── 1. Input shape ────────────────────────────────────────────────
    _require(client_id, "client_id")
    _require(provider_id, "provider_id")
    _require(service_id, "service_id")
    appointment_date = parse_date(_require(appointment_date, "appointment_date"))
    start = parse_time(_require(start_time, "start_time"))

    # ── 2. Referenced entities ────────────────────────────────────────
    client = get_client(client_id)
    provider = get_provider(provider_id)
    service = get_service(service_id)

    # ── 3. Duration and timing ────────────────────────────────────────
    duration_minutes = validate_duration(service, duration_minutes)
    validate_same_day(start, duration_minutes)
    validate_not_past(appointment_date, start, now)

    # ── 4. Business preconditions ─────────────────────────────────────
    ensure_can_serve(provider, service)

    return BookingRequest(
        client=client,
        provider=provider,
        service=service,
        appointment_date=appointment_date,
        start=start,
        duration_minutes=duration_minutes,
        notes=notes or "",
    )


# ── Slot reservation ─────────────────────────────────────────────────────────


def lock_and_check_slot(resolver, provider_id, appointment_date, start, duration_minutes, exclude_appointment_id=None):
    """
    Lock the provider row and confirm [start, start+duration) is still free.

    Must be called inside transaction.atomic(); the lock is held until the
    surrounding transaction ends.
    """
    # Force query evaluation to acquire the lock
    Provider.objects.select_for_update().filter(pk=provider_id).first()

    if not resolver.is_slot_available(
        provider_id,
        appointment_date,
        start,
        duration_minutes,
        exclude_appointment_id=exclude_appointment_id,
    ):
        logger.info(
            "[BOOKING] Slot unavailable provider_id=%s date=%s start=%s duration=%s",
            provider_id,
            appointment_date,
            format_minutes(start),
            duration_minutes,
        )
        raise ConflictError(
            context={
                "provider_id": provider_id,
                "date": appointment_date.isoformat(),
                "start": format_minutes(start),
                "duration_minutes": duration_minutes,
            }
        )


def note_first_visit(client, visit_date):
    Client.objects.filter(pk=client.pk).filter(
        Q(first_visit_date__isnull=True) | Q(first_visit_date__gt=visit_date)
    ).update(first_visit_date=visit_date)


def create_booking(request: BookingRequest, resolver, *, rescheduled_from=None, external_calendar_ref="") -> Appointment:
    """Reserve the slot and create a Booked appointment atomically."""
    with transaction.atomic():
        lock_and_check_slot(
            resolver,
            request.provider.pk,
            request.appointment_date,
            request.start,
            request.duration_minutes,
            exclude_appointment_id=rescheduled_from.pk if rescheduled_from else None,
        )

        appointment = Appointment.objects.create(
            client=request.client,
            provider=request.provider,
            service=request.service,
            appointment_date=request.appointment_date,
            start_time=minutes_to_time(request.start),
            duration_minutes=request.duration_minutes,
            status=Appointment.Status.BOOKED,
            notes=request.notes,
            rescheduled_from=rescheduled_from,
            external_calendar_ref=external_calendar_ref,
        )
        note_first_visit(request.client, request.appointment_date)

    logger.info(
        "[BOOKING] Created appointment_id=%s client_id=%s provider_id=%s %s %s (%smin)",
        appointment.pk,
        request.client.pk,
        request.provider.pk,
        request.appointment_date,
        format_minutes(request.start),
        request.duration_minutes,
    )
    return appointment
