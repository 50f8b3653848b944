"""
Appointment lifecycle service.

Every status change goes through AppointmentLifecycle, which:
- checks the transition table first (PreconditionError on an illegal move)
- applies the time-based policy for check-in and no-show (WindowViolation)
- re-runs the availability chain when a change would occupy a new window
- appends exactly one activity entry per transition
- pushes the result to the external calendar, best-effort

Side-effect failures (calendar, audit) never fail the operation; they are
collected as warnings on the returned LifecycleResult.

Each operation owns a durable transaction. Calendar calls run only after it
commits, so they never hold the appointment or provider locks; calling an
operation inside an outer atomic block (or with ATOMIC_REQUESTS) raises
RuntimeError.

Reschedule closes the original appointment (status Rescheduled, which never
occupies time) and opens a Booked replacement linked through
`rescheduled_from`.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from django.db import transaction
from django.db.models import F, Q

from appointments.exceptions import (
    NotFoundError,
    PreconditionError,
    ValidationError,
    WindowViolation,
)
from appointments.models import ActivityLogEntry, Appointment
from appointments.policy import SchedulingPolicy, as_timestamp, local_now, to_local_naive
from appointments.transitions import can_transition
from clients.models import Client
from providers.intervals import format_minutes, parse_time, time_to_minutes
from providers.services import AvailabilityResolver

from . import booking_service
from .audit import describe_slot, record_activity
from .calendar_sync import get_calendar_backend, remove_calendar_event, sync_appointment

logger = logging.getLogger(__name__)

Status = Appointment.Status


@dataclass
class LifecycleResult:
    """Outcome of a successful lifecycle operation."""

    appointment: Appointment
    warnings: list = field(default_factory=list)
    # For reschedules: the appointment that was closed
    replaced: Appointment = None


class AppointmentLifecycle:
    """
    Guarded state machine over Appointment.status.

    All collaborators are injected at construction; nothing is read from
    process-wide state after that.
    """

    def __init__(self, policy=None, resolver=None, calendar=None):
        self.policy = policy or SchedulingPolicy.from_settings()
        self.resolver = resolver or AvailabilityResolver(self.policy)
        self._calendar = calendar

    @property
    def calendar(self):
        if self._calendar is None:
            self._calendar = get_calendar_backend()
        return self._calendar

    # ── Internal helpers ─────────────────────────────────────────────────

    def _now(self, now):
        return to_local_naive(now) if now is not None else local_now()

    def _get_for_update(self, appointment_id):
        """Lock the appointment row only; provider locks go through lock_and_check_slot."""
        if appointment_id in (None, ""):
            raise ValidationError("appointment_id is required.", context={"field": "appointment_id"})
        try:
            return (
                Appointment.objects.select_for_update(of=("self",))
                .select_related("client", "provider", "service")
                .get(pk=appointment_id)
            )
        except (Appointment.DoesNotExist, ValueError, TypeError):
            raise NotFoundError("Appointment", appointment_id)

    def _guard(self, appointment, target):
        if not can_transition(appointment.status, target):
            raise PreconditionError.illegal_transition(appointment.pk, appointment.status, target)

    def _set_status(self, appointment, target, *, actor, notes, extra_fields=()):
        """Persist the new status and append its audit entry. Returns warnings."""
        previous = appointment.status
        appointment.status = target
        appointment.save(update_fields=["status", "updated_at", *extra_fields])

        logger.info(
            "[LIFECYCLE] appointment_id=%s %s -> %s by %s",
            appointment.pk,
            previous,
            target,
            actor,
        )

        warning = record_activity(
            appointment,
            ActivityLogEntry.Action.STATUS_CHANGED,
            actor=actor,
            old_value=previous,
            new_value=target,
            note=notes,
        )
        return [warning] if warning else []

    def _push_calendar(self, appointment, actor):
        if not sync_appointment(appointment.pk, backend=self.calendar, actor=actor):
            return [f"Calendar sync failed for appointment {appointment.pk}."]
        appointment.refresh_from_db(fields=["external_calendar_ref"])
        return []

    def _drop_calendar(self, external_ref):
        if not remove_calendar_event(external_ref, backend=self.calendar):
            return [f"Calendar event {external_ref} could not be removed."]
        return []

    def _unlink_calendar(self, appointment):
        """Clear the calendar reference in the row; return the old one for removal."""
        old_ref = appointment.external_calendar_ref
        appointment.external_calendar_ref = ""
        return old_ref

    # ── Booking ──────────────────────────────────────────────────────────

    def book(
        self,
        client_id,
        provider_id,
        service_id,
        appointment_date,
        start_time,
        duration_minutes=None,
        notes="",
        *,
        actor="system",
        now=None,
    ) -> LifecycleResult:
        """
        Book a new appointment.

        Raises:
            ValidationError: Missing/malformed input, disallowed duration, past slot.
            NotFoundError: Client, provider or service does not exist.
            PreconditionError: Provider inactive or does not offer the service.
            ConflictError: The slot is not free.
        """
        request = booking_service.build_booking_request(
            client_id=client_id,
            provider_id=provider_id,
            service_id=service_id,
            appointment_date=appointment_date,
            start_time=start_time,
            duration_minutes=duration_minutes,
            notes=notes,
            now=self._now(now),
        )

        with transaction.atomic(durable=True):
            appointment = booking_service.create_booking(request, self.resolver)
            warnings = []
            warning = record_activity(
                appointment,
                ActivityLogEntry.Action.BOOKED,
                actor=actor,
                new_value=describe_slot(appointment),
                note=notes,
            )
            if warning:
                warnings.append(warning)

        warnings += self._push_calendar(appointment, actor)
        return LifecycleResult(appointment, warnings)

    # ── Simple transitions ───────────────────────────────────────────────

    def confirm(self, appointment_id, *, actor="system", notes="") -> LifecycleResult:
        with transaction.atomic(durable=True):
            appointment = self._get_for_update(appointment_id)
            self._guard(appointment, Status.CONFIRMED)
            warnings = self._set_status(appointment, Status.CONFIRMED, actor=actor, notes=notes)

        warnings += self._push_calendar(appointment, actor)
        return LifecycleResult(appointment, warnings)

    def cancel(self, appointment_id, reason="", *, actor="system", notes="", now=None) -> LifecycleResult:
        """Cancel an appointment and drop its external calendar event."""
        now = self._now(now)

        with transaction.atomic(durable=True):
            appointment = self._get_for_update(appointment_id)
            self._guard(appointment, Status.CANCELLED)

            old_ref = self._unlink_calendar(appointment)
            appointment.cancelled_at = as_timestamp(now)
            appointment.cancellation_reason = reason or ""
            warnings = self._set_status(
                appointment,
                Status.CANCELLED,
                actor=actor,
                notes=notes or reason,
                extra_fields=("cancelled_at", "cancellation_reason", "external_calendar_ref"),
            )

        warnings += self._drop_calendar(old_ref)
        return LifecycleResult(appointment, warnings)

    # ── Time-gated transitions ───────────────────────────────────────────

    def check_in(self, appointment_id, *, actor="system", notes="", now=None) -> LifecycleResult:
        """
        Check a client in.

        Legal from `check_in_before_minutes` before the scheduled start
        through `check_in_after_minutes` after it.
        """
        now = self._now(now)

        with transaction.atomic(durable=True):
            appointment = self._get_for_update(appointment_id)
            self._guard(appointment, Status.CHECKED_IN)

            start = appointment.scheduled_start
            opens = start - timedelta(minutes=self.policy.check_in_before_minutes)
            closes = start + timedelta(minutes=self.policy.check_in_after_minutes)
            context = {
                "appointment_id": appointment.pk,
                "scheduled_start": start.isoformat(),
                "window_opens": opens.isoformat(),
                "window_closes": closes.isoformat(),
            }

            if now < opens:
                raise WindowViolation(
                    WindowViolation.TOO_EARLY,
                    f"Too early to check in. Check-in opens at {opens:%H:%M}.",
                    context=context,
                )
            if now > closes:
                raise WindowViolation(
                    WindowViolation.TOO_LATE,
                    f"Too late to check in. The check-in window closed at {closes:%H:%M}.",
                    suggestion="Mark the appointment as a no-show instead.",
                    context=context,
                )

            appointment.checked_in_at = as_timestamp(now)
            warnings = self._set_status(
                appointment,
                Status.CHECKED_IN,
                actor=actor,
                notes=notes,
                extra_fields=("checked_in_at",),
            )

        warnings += self._push_calendar(appointment, actor)
        return LifecycleResult(appointment, warnings)

    def mark_no_show(self, appointment_id, *, actor="system", notes="", now=None) -> LifecycleResult:
        """
        Record a no-show once the grace period after the scheduled start has
        elapsed. Increments the client's no-show counter by one.
        """
        now = self._now(now)

        with transaction.atomic(durable=True):
            appointment = self._get_for_update(appointment_id)
            self._guard(appointment, Status.NO_SHOW)

            earliest = appointment.scheduled_start + timedelta(minutes=self.policy.no_show_grace_minutes)
            if now < earliest:
                raise WindowViolation(
                    WindowViolation.TOO_EARLY,
                    f"Too early to record a no-show. Wait until {earliest:%H:%M}.",
                    context={
                        "appointment_id": appointment.pk,
                        "scheduled_start": appointment.scheduled_start.isoformat(),
                        "no_show_allowed_from": earliest.isoformat(),
                    },
                )

            old_ref = self._unlink_calendar(appointment)
            warnings = self._set_status(
                appointment,
                Status.NO_SHOW,
                actor=actor,
                notes=notes,
                extra_fields=("external_calendar_ref",),
            )
            Client.objects.filter(pk=appointment.client_id).update(
                no_show_count=F("no_show_count") + 1
            )

        warnings += self._drop_calendar(old_ref)
        return LifecycleResult(appointment, warnings)

    def complete(self, appointment_id, completion_notes="", *, actor="system", notes="", now=None) -> LifecycleResult:
        """Complete a checked-in appointment and update the client's visit dates."""
        now = self._now(now)

        with transaction.atomic(durable=True):
            appointment = self._get_for_update(appointment_id)
            self._guard(appointment, Status.COMPLETED)

            appointment.completed_at = as_timestamp(now)
            appointment.completion_notes = completion_notes or ""
            warnings = self._set_status(
                appointment,
                Status.COMPLETED,
                actor=actor,
                notes=notes or completion_notes,
                extra_fields=("completed_at", "completion_notes"),
            )

            visit_date = appointment.appointment_date
            Client.objects.filter(pk=appointment.client_id).filter(
                Q(last_visit_date__isnull=True) | Q(last_visit_date__lt=visit_date)
            ).update(last_visit_date=visit_date)
            booking_service.note_first_visit(appointment.client, visit_date)

        warnings += self._push_calendar(appointment, actor)
        return LifecycleResult(appointment, warnings)

    # ── Slot-changing transitions ────────────────────────────────────────

    def reschedule(
        self,
        appointment_id,
        new_date=None,
        new_start_time=None,
        new_provider_id=None,
        *,
        actor="system",
        notes="",
        now=None,
    ) -> LifecycleResult:
        """
        Move an appointment to a new date, time and/or provider.

        The original is closed as Rescheduled and a Booked replacement is
        created; the replacement is returned, the original is in `replaced`.
        """
        now = self._now(now)

        with transaction.atomic(durable=True):
            original = self._get_for_update(appointment_id)
            self._guard(original, Status.RESCHEDULED)

            if new_date in (None, "") and new_start_time in (None, "") and new_provider_id in (None, ""):
                raise ValidationError(
                    "Provide a new date, start time or provider to reschedule.",
                    context={"appointment_id": original.pk},
                )

            target_date = (
                booking_service.parse_date(new_date) if new_date not in (None, "") else original.appointment_date
            )
            start = (
                parse_time(new_start_time) if new_start_time not in (None, "") else time_to_minutes(original.start_time)
            )
            provider = (
                booking_service.get_provider(new_provider_id)
                if new_provider_id not in (None, "")
                else original.provider
            )

            if (
                target_date == original.appointment_date
                and start == time_to_minutes(original.start_time)
                and provider.pk == original.provider_id
            ):
                raise ValidationError(
                    "The new slot is the same as the current one.",
                    context={"appointment_id": original.pk},
                )

            booking_service.ensure_can_serve(provider, original.service)
            booking_service.validate_same_day(start, original.duration_minutes)
            booking_service.validate_not_past(target_date, start, now)

            request = booking_service.BookingRequest(
                client=original.client,
                provider=provider,
                service=original.service,
                appointment_date=target_date,
                start=start,
                duration_minutes=original.duration_minutes,
                notes=original.notes,
            )
            # Re-checks the full chain against the new target, skipping the original
            booking_service.lock_and_check_slot(
                self.resolver,
                provider.pk,
                target_date,
                start,
                original.duration_minutes,
                exclude_appointment_id=original.pk,
            )

            old_slot = describe_slot(original)
            calendar_ref = self._unlink_calendar(original)
            original.status = Status.RESCHEDULED
            original.save(update_fields=["status", "external_calendar_ref", "updated_at"])

            replacement = booking_service.create_booking(
                request,
                self.resolver,
                rescheduled_from=original,
                external_calendar_ref=calendar_ref,
            )

            warnings = []
            for warning in (
                record_activity(
                    original,
                    ActivityLogEntry.Action.RESCHEDULED,
                    actor=actor,
                    old_value=old_slot,
                    new_value=describe_slot(replacement),
                    note=notes,
                ),
                record_activity(
                    replacement,
                    ActivityLogEntry.Action.BOOKED,
                    actor=actor,
                    new_value=describe_slot(replacement),
                    note=f"Rescheduled from appointment {original.pk}.",
                ),
            ):
                if warning:
                    warnings.append(warning)

        logger.info(
            "[LIFECYCLE] appointment_id=%s rescheduled to appointment_id=%s (%s %s)",
            original.pk,
            replacement.pk,
            target_date,
            format_minutes(start),
        )

        warnings += self._push_calendar(replacement, actor)
        return LifecycleResult(replacement, warnings, replaced=original)

    def reinstate(self, appointment_id, *, actor="system", notes="", now=None) -> LifecycleResult:
        """
        Bring a Rescheduled appointment back to Booked in its original slot.

        The slot must still be free; it was released when the appointment
        was rescheduled.
        """
        now = self._now(now)

        with transaction.atomic(durable=True):
            appointment = self._get_for_update(appointment_id)
            self._guard(appointment, Status.BOOKED)

            start = time_to_minutes(appointment.start_time)
            booking_service.ensure_can_serve(appointment.provider, appointment.service)
            booking_service.validate_not_past(appointment.appointment_date, start, now)
            booking_service.lock_and_check_slot(
                self.resolver,
                appointment.provider_id,
                appointment.appointment_date,
                start,
                appointment.duration_minutes,
                exclude_appointment_id=appointment.pk,
            )
            warnings = self._set_status(appointment, Status.BOOKED, actor=actor, notes=notes)

        warnings += self._push_calendar(appointment, actor)
        return LifecycleResult(appointment, warnings)

    # ── Generic dispatch ─────────────────────────────────────────────────

    def change_status(self, appointment_id, new_status, **kwargs) -> LifecycleResult:
        """
        Route a status change to the operation that owns its guards.

        Rescheduled needs a target (new_date / new_start_time / new_provider_id).
        """
        handlers = {
            Status.CONFIRMED: self.confirm,
            Status.CANCELLED: self.cancel,
            Status.CHECKED_IN: self.check_in,
            Status.NO_SHOW: self.mark_no_show,
            Status.COMPLETED: self.complete,
            Status.RESCHEDULED: self.reschedule,
            Status.BOOKED: self.reinstate,
        }
        if new_status not in Status.values:
            raise ValidationError(
                f"Unknown status: {new_status!r}.",
                context={"status": new_status, "allowed": list(Status.values)},
            )
        return handlers[Status(new_status)](appointment_id, **kwargs)

