"""
Scheduling policy: the time windows that gate lifecycle transitions and the
slot granularity used when browsing availability.

Built once and injected into AvailabilityResolver / AppointmentLifecycle.
Defaults can be overridden through the OPENSLOTS_POLICY setting, e.g.:

    OPENSLOTS_POLICY = {"check_in_before_minutes": 45}
"""

from dataclasses import dataclass, fields
from datetime import datetime

from django.conf import settings
from django.utils import timezone


def to_local_naive(value: datetime) -> datetime:
    """
    Express `value` as a naive local datetime.

    Appointments store date and time as separate naive fields, so policy
    windows are compared in local wall-clock time.
    """
    if timezone.is_aware(value):
        return timezone.localtime(value).replace(tzinfo=None)
    return value


def local_now() -> datetime:
    return to_local_naive(timezone.now())


def as_timestamp(value: datetime) -> datetime:
    """Make a (possibly naive local) datetime safe to store in a DateTimeField."""
    if settings.USE_TZ and timezone.is_naive(value):
        return timezone.make_aware(value)
    return value


@dataclass(frozen=True)
class SchedulingPolicy:
    check_in_before_minutes: int = 60
    check_in_after_minutes: int = 30
    no_show_grace_minutes: int = 30
    slot_granularity_minutes: int = 15

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"{f.name} must be a non-negative integer, got {value!r}.")
        if self.slot_granularity_minutes == 0:
            raise ValueError("slot_granularity_minutes must be positive.")

    @classmethod
    def from_settings(cls):
        overrides = getattr(settings, "OPENSLOTS_POLICY", None) or {}
        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown OPENSLOTS_POLICY keys: {sorted(unknown)}")
        return cls(**overrides)
