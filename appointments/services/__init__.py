# appointments/services package
#
# Public entry points are re-exported here so callers can write:
#
#   from appointments.services import AppointmentLifecycle, LifecycleResult
#   from appointments.services import sync_appointment

from appointments.services.calendar_sync import (  # noqa: F401
    CalendarBackend,
    CalendarSyncError,
    NullCalendarBackend,
    WebhookCalendarBackend,
    get_calendar_backend,
    remove_calendar_event,
    sync_appointment,
)

from appointments.services.lifecycle_service import (  # noqa: F401
    AppointmentLifecycle,
    LifecycleResult,
)
