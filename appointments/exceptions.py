"""
Typed errors raised by the scheduling core.

Every error carries a human-readable message, a stable machine code and a
context dict (entity ids, current/attempted status, ...) so callers can
render a precise message. None of them are retried internally.
"""


class SchedulingError(Exception):
    """Base exception for scheduling failures."""

    default_code = "scheduling_error"

    def __init__(self, message, code=None, context=None):
        self.message = message
        self.code = code or self.default_code
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(SchedulingError):
    """Missing or malformed input (ids, time format, duration)."""

    default_code = "validation_error"


class NotFoundError(SchedulingError):
    """A referenced client, provider, service or appointment does not exist."""

    default_code = "not_found"

    def __init__(self, entity, entity_id, message=None):
        super().__init__(
            message or f"{entity} {entity_id} not found.",
            context={"entity": entity, "id": entity_id},
        )


class PreconditionError(SchedulingError):
    """Illegal status transition, inactive provider, or service not offered."""

    default_code = "precondition_failed"

    @classmethod
    def illegal_transition(cls, appointment_id, current, attempted):
        return cls(
            f"Cannot change appointment {appointment_id} from {current} to {attempted}.",
            code="illegal_transition",
            context={
                "appointment_id": appointment_id,
                "current_status": current,
                "attempted_status": attempted,
            },
        )


class ConflictError(SchedulingError):
    """The requested slot is not available."""

    default_code = "slot_unavailable"

    def __init__(self, message="This time slot is not available. Please select another slot.", context=None):
        super().__init__(message, context=context)


class WindowViolation(SchedulingError):
    """A check-in or no-show timing policy was breached."""

    TOO_EARLY = "too_early"
    TOO_LATE = "too_late"

    def __init__(self, reason, message, suggestion="", context=None):
        self.reason = reason
        self.suggestion = suggestion
        context = dict(context or {})
        context["reason"] = reason
        if suggestion:
            context["suggestion"] = suggestion
        super().__init__(message, code=reason, context=context)
