"""
Activity log writer.

Audit entries are a best-effort side effect: a failed write is logged and
returned as a warning string, and never rolls back the mutation it
describes (the write runs in its own savepoint).
"""

import logging

from django.db import DatabaseError, transaction

from appointments.models import ActivityLogEntry

logger = logging.getLogger(__name__)


def describe_slot(appointment):
    return (
        f"{appointment.appointment_date:%Y-%m-%d} "
        f"{appointment.start_time:%H:%M}-{appointment.end_time:%H:%M} "
        f"provider={appointment.provider_id}"
    )


def record_activity(appointment, action, *, actor="system", old_value="", new_value="", note=""):
    """Append one ActivityLogEntry. Returns a warning string on failure, else None."""
    try:
        with transaction.atomic():
            ActivityLogEntry.objects.create(
                appointment=appointment,
                actor=actor or "system",
                action=action,
                old_value=old_value or "",
                new_value=new_value or "",
                note=note or "",
            )
    except DatabaseError as exc:
        logger.error(
            "[AUDIT] Failed to record %s for appointment_id=%s: %r",
            action,
            appointment.pk,
            exc,
        )
        return f"Activity log entry could not be written: {exc}"
    return None
