"""
Appointment status state machine.

The table below is the single source of truth for which status changes are
legal. Terminal statuses have no outgoing transitions.
"""

from appointments.models import Appointment

Status = Appointment.Status

ALLOWED_TRANSITIONS = {
    Status.BOOKED: frozenset({
        Status.CANCELLED,
        Status.RESCHEDULED,
        Status.CHECKED_IN,
        Status.NO_SHOW,
        Status.CONFIRMED,
    }),
    Status.CONFIRMED: frozenset({
        Status.CANCELLED,
        Status.RESCHEDULED,
        Status.CHECKED_IN,
        Status.NO_SHOW,
    }),
    Status.CHECKED_IN: frozenset({
        Status.COMPLETED,
        Status.NO_SHOW,
    }),
    Status.RESCHEDULED: frozenset({
        Status.BOOKED,
        Status.CANCELLED,
    }),
    Status.CANCELLED: frozenset(),
    Status.COMPLETED: frozenset(),
    Status.NO_SHOW: frozenset(),
}

# Statuses that occupy calendar time
ACTIVE_STATUSES = (
    Status.BOOKED,
    Status.CONFIRMED,
    Status.CHECKED_IN,
)

# Statuses with no way out
TERMINAL_STATUSES = (
    Status.COMPLETED,
    Status.NO_SHOW,
    Status.CANCELLED,
)


def can_transition(current, target):
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def allowed_targets(current):
    return ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status):
    return status in TERMINAL_STATUSES


def is_active(status):
    return status in ACTIVE_STATUSES
