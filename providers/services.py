"""
Availability resolution engine for providers.

Resolves the bookable time for a provider on one date by chaining:
1. Schedule resolver  - recurring / date-bounded AvailabilityRules, merged
                        (a business holiday short-circuits to "closed")
2. Exception filter   - provider exceptions first (a full-day one closes the
                        day), then business exceptions that carry times
3. Booking filter     - subtract every active appointment, optionally
                        skipping one (used when rechecking a reschedule)

The final windows feed either the slot generator (browsing) or a direct
containment check (booking a specific time).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from appointments.exceptions import NotFoundError, ValidationError
from appointments.models import Appointment
from appointments.policy import SchedulingPolicy, to_local_naive
from appointments.transitions import ACTIVE_STATUSES
from business.models import BusinessException, BusinessHoliday
from .intervals import (
    EMPTY,
    MINUTES_PER_DAY,
    IntervalSet,
    Window,
    format_minutes,
    minutes_to_time,
    parse_time,
    time_to_minutes,
)
from .models import AvailabilityRule, Provider, ProviderException

logger = logging.getLogger(__name__)

# An exception spanning 00:00-23:59 counts as the whole day
FULL_DAY_START = 0
FULL_DAY_END = MINUTES_PER_DAY - 1


@dataclass(frozen=True)
class Slot:
    """A bookable [start, end) on one date, in minutes since midnight."""

    start: int
    end: int

    @property
    def start_time(self):
        return minutes_to_time(self.start)

    @property
    def end_time(self):
        return minutes_to_time(self.end)

    @property
    def label(self):
        return format_minutes(self.start)

    def to_dict(self):
        return {
            "start": format_minutes(self.start),
            "end": format_minutes(self.end),
        }


def _covers_full_day(start_time, end_time):
    if start_time is None or end_time is None:
        return True
    return (
        time_to_minutes(start_time) <= FULL_DAY_START
        and time_to_minutes(end_time) >= FULL_DAY_END
    )


def is_business_holiday(target_date: date) -> bool:
    """True when a one-time holiday or a recurring (month/day) holiday falls on target_date."""
    if BusinessHoliday.objects.filter(date=target_date, is_recurring=False).exists():
        return True
    return BusinessHoliday.objects.filter(
        is_recurring=True,
        date__month=target_date.month,
        date__day=target_date.day,
    ).exists()


class AvailabilityResolver:
    """
    Computes a provider's free windows and bookable slots for a date.

    Every public method accepts exclude_appointment_id so a reschedule can
    check its new slot without colliding with itself.
    """

    def __init__(self, policy=None):
        self.policy = policy or SchedulingPolicy.from_settings()

    # ── Stage 1: schedule ────────────────────────────────────────────────

    def resolve_schedule(self, provider: Provider, target_date: date) -> IntervalSet:
        if is_business_holiday(target_date):
            logger.info(
                "[AVAILABILITY] Business holiday on %s; provider_id=%s closed",
                target_date,
                provider.pk,
            )
            return EMPTY

        rules = AvailabilityRule.objects.filter(
            provider=provider,
            day_of_week=target_date.weekday(),
            is_active=True,
        ).order_by("start_time")

        windows = [
            Window(time_to_minutes(rule.start_time), time_to_minutes(rule.end_time))
            for rule in rules
            if rule.applies_on(target_date)
        ]
        return IntervalSet(tuple(windows))

    # ── Stage 2: exceptions ──────────────────────────────────────────────

    def apply_exceptions(self, windows: IntervalSet, provider: Provider, target_date: date) -> IntervalSet:
        if not windows:
            return windows

        provider_exceptions = ProviderException.objects.filter(
            provider=provider, date=target_date
        ).order_by("start_time")

        for exc in provider_exceptions:
            if _covers_full_day(exc.start_time, exc.end_time):
                logger.info(
                    "[AVAILABILITY] Full-day exception for provider_id=%s on %s (%s)",
                    provider.pk,
                    target_date,
                    exc.reason or "no reason",
                )
                return EMPTY
            windows = windows.subtract(
                time_to_minutes(exc.start_time), time_to_minutes(exc.end_time)
            )

        # Business exceptions without times do not close the day
        business_exceptions = BusinessException.objects.filter(
            date=target_date,
            start_time__isnull=False,
            end_time__isnull=False,
        )
        for exc in business_exceptions:
            windows = windows.subtract(
                time_to_minutes(exc.start_time), time_to_minutes(exc.end_time)
            )

        return windows

    # ── Stage 3: bookings ────────────────────────────────────────────────

    def apply_bookings(
        self,
        windows: IntervalSet,
        provider: Provider,
        target_date: date,
        exclude_appointment_id=None,
    ) -> IntervalSet:
        if not windows:
            return windows

        booked = Appointment.objects.filter(
            provider=provider,
            appointment_date=target_date,
            status__in=ACTIVE_STATUSES,
        )
        if exclude_appointment_id is not None:
            booked = booked.exclude(pk=exclude_appointment_id)

        for start_time, end_time in booked.values_list("start_time", "end_time"):
            windows = windows.subtract(time_to_minutes(start_time), time_to_minutes(end_time))

        return windows

    # ── Public API ───────────────────────────────────────────────────────

    def get_provider(self, provider_id) -> Provider:
        if provider_id in (None, ""):
            raise ValidationError("Provider id is required.", context={"field": "provider_id"})
        try:
            return Provider.objects.get(pk=provider_id)
        except (Provider.DoesNotExist, ValueError):
            raise NotFoundError("Provider", provider_id)

    def get_availability(self, provider_id, target_date: date, exclude_appointment_id=None) -> IntervalSet:
        """
        Return the final bookable windows for a provider on target_date.

        An inactive provider has no availability.
        """
        provider = self.get_provider(provider_id)
        if not provider.is_active:
            return EMPTY

        windows = self.resolve_schedule(provider, target_date)
        windows = self.apply_exceptions(windows, provider, target_date)
        windows = self.apply_bookings(windows, provider, target_date, exclude_appointment_id)
        return windows

    def get_availability_range(self, provider_id, start_date: date, end_date: date) -> dict:
        """
        Return {"YYYY-MM-DD": IntervalSet} for every date in the range that
        has any availability.
        """
        if start_date > end_date:
            raise ValidationError(
                "Start date must not be after end date.",
                context={"start_date": str(start_date), "end_date": str(end_date)},
            )

        result = {}
        current = start_date
        while current <= end_date:
            windows = self.get_availability(provider_id, current)
            if windows:
                result[current.isoformat()] = windows
            current += timedelta(days=1)
        return result

    def is_slot_available(
        self,
        provider_id,
        target_date: date,
        start,
        duration_minutes: int,
        exclude_appointment_id=None,
    ) -> bool:
        start_minutes = parse_time(start)
        _validate_duration(duration_minutes)
        end_minutes = start_minutes + duration_minutes
        if end_minutes >= MINUTES_PER_DAY:
            return False

        windows = self.get_availability(provider_id, target_date, exclude_appointment_id)
        return windows.contains(start_minutes, end_minutes)

    def get_slots(
        self,
        provider_id,
        target_date: date,
        duration_minutes: int,
        exclude_appointment_id=None,
        now: datetime = None,
    ) -> list:
        """
        Turn the final windows into discrete start times.

        Candidate starts sit on the granularity grid (e.g. :00, :15, :30,
        :45 for 15 minutes). When `now` is given, starts already passed on
        that day (and every start on earlier days) are dropped. An aware `now`
        is compared in local wall-clock time.
        """
        _validate_duration(duration_minutes)
        step = self.policy.slot_granularity_minutes

        cutoff = None
        if now is not None:
            now = to_local_naive(now)
            if target_date < now.date():
                return []
            if target_date == now.date():
                cutoff = now.hour * 60 + now.minute

        windows = self.get_availability(provider_id, target_date, exclude_appointment_id)

        slots = []
        for window in windows:
            # Round the window start up onto the grid
            current = -(-window.start // step) * step
            while current + duration_minutes <= window.end:
                if cutoff is None or current > cutoff:
                    slots.append(Slot(current, current + duration_minutes))
                current += step

        return slots


def _validate_duration(duration_minutes):
    if (
        not isinstance(duration_minutes, int)
        or isinstance(duration_minutes, bool)
        or duration_minutes <= 0
    ):
        raise ValidationError(
            "Duration must be a positive number of minutes.",
            context={"duration_minutes": duration_minutes},
        )
