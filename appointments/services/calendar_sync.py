"""
External calendar synchronization.

The scheduling core never depends on the calendar: every call here is a
best-effort side effect. Failures are logged and reported back to the
caller as warnings, never raised into a lifecycle transition.

Backends are selected with the OPENSLOTS_CALENDAR_BACKEND setting (dotted
path). The default NullCalendarBackend does nothing.
"""

import logging

import requests
from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

from appointments.models import ActivityLogEntry, Appointment

logger = logging.getLogger(__name__)

DEFAULT_BACKEND = "appointments.services.calendar_sync.NullCalendarBackend"


class CalendarSyncError(Exception):
    """Raised by a backend when the external calendar rejects a request."""


class CalendarBackend:
    """Interface every calendar backend implements."""

    def push(self, appointment) -> str:
        """Create or update the event for `appointment`; return its external reference."""
        raise NotImplementedError

    def remove(self, external_ref: str) -> None:
        """Delete the event identified by `external_ref`."""
        raise NotImplementedError


class NullCalendarBackend(CalendarBackend):
    """Used when no external calendar is configured."""

    def push(self, appointment) -> str:
        return appointment.external_calendar_ref

    def remove(self, external_ref: str) -> None:
        return None


class WebhookCalendarBackend(CalendarBackend):
    """
    Pushes appointments to an HTTP endpoint as JSON.

    POST {url}                 -> {"event_id": "..."}
    DELETE {url}/{event_id}
    """

    def __init__(self, url=None, timeout=None):
        self.url = url or getattr(settings, "OPENSLOTS_CALENDAR_WEBHOOK_URL", "")
        self.timeout = timeout or getattr(settings, "OPENSLOTS_CALENDAR_TIMEOUT", 10)

        if not self.url:
            raise ValueError(
                "Webhook calendar is not configured. Set OPENSLOTS_CALENDAR_WEBHOOK_URL."
            )

    def _payload(self, appointment):
        return {
            "event_id": appointment.external_calendar_ref or None,
            "appointment_id": appointment.pk,
            "title": f"{appointment.service.name} - {appointment.client.name}",
            "provider": appointment.provider.name,
            "date": appointment.appointment_date.isoformat(),
            "start": appointment.start_time.strftime("%H:%M"),
            "end": appointment.end_time.strftime("%H:%M"),
            "status": appointment.status,
            "notes": appointment.notes,
        }

    def push(self, appointment) -> str:
        logger.info("[CALENDAR] Pushing appointment_id=%s to %s", appointment.pk, self.url)

        response = requests.post(self.url, json=self._payload(appointment), timeout=self.timeout)
        if response.status_code >= 400:
            raise CalendarSyncError(
                f"Calendar webhook returned HTTP {response.status_code}: {response.text[:200]!r}"
            )

        try:
            event_id = response.json().get("event_id")
        except ValueError:
            raise CalendarSyncError(f"Calendar webhook returned non-JSON body: {response.text[:200]!r}")

        if not event_id:
            raise CalendarSyncError("Calendar webhook response is missing event_id.")
        return str(event_id)

    def remove(self, external_ref: str) -> None:
        logger.info("[CALENDAR] Removing event=%s", external_ref)

        response = requests.delete(f"{self.url.rstrip('/')}/{external_ref}", timeout=self.timeout)
        # Already gone is fine
        if response.status_code >= 400 and response.status_code != 404:
            raise CalendarSyncError(
                f"Calendar webhook returned HTTP {response.status_code} deleting {external_ref}"
            )


def get_calendar_backend():
    path = getattr(settings, "OPENSLOTS_CALENDAR_BACKEND", DEFAULT_BACKEND) or DEFAULT_BACKEND
    return import_string(path)()


def sync_appointment(appointment_id, backend=None, actor="system") -> bool:
    """
    Push one appointment to the external calendar.

    Stores the returned reference and appends a CALENDAR_SYNC activity
    entry. Returns True on success, False on any failure. Never raises.
    """
    try:
        backend = backend or get_calendar_backend()
        appointment = Appointment.objects.select_related("client", "provider", "service").get(
            pk=appointment_id
        )
        old_ref = appointment.external_calendar_ref
        new_ref = backend.push(appointment) or ""

        with transaction.atomic():
            if new_ref != old_ref:
                appointment.external_calendar_ref = new_ref
                appointment.save(update_fields=["external_calendar_ref", "updated_at"])

            if new_ref:
                ActivityLogEntry.objects.create(
                    appointment=appointment,
                    actor=actor,
                    action=ActivityLogEntry.Action.CALENDAR_SYNC,
                    old_value=old_ref,
                    new_value=new_ref,
                    note="Synchronized with external calendar.",
                )
        return True
    except Exception as exc:
        logger.error(
            "[CALENDAR] Failed to sync appointment_id=%s: %r",
            appointment_id,
            exc,
        )
        return False


def remove_calendar_event(external_ref, backend=None) -> bool:
    """Delete an external event. Returns True on success (or nothing to do)."""
    if not external_ref:
        return True
    try:
        backend = backend or get_calendar_backend()
        backend.remove(external_ref)
        return True
    except Exception as exc:
        logger.error("[CALENDAR] Failed to remove event=%s: %r", external_ref, exc)
        return False
