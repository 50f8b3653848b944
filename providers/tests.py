"""
Tests for provider availability resolution.

Covers:
- Interval algebra (merge, subtract, contains)
- Provider / rule / exception model validation
- AvailabilityResolver chain (schedule, holidays, exceptions, bookings)
- Slot generation on the granularity grid
- API endpoints (availability and slots)
"""

from datetime import date, datetime, time, timedelta
from datetime import timezone as dt_timezone

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as ModelValidationError
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from appointments.exceptions import NotFoundError, ValidationError
from appointments.models import Appointment
from appointments.policy import SchedulingPolicy
from business.models import BusinessException, BusinessHoliday
from clients.models import Client
from providers.intervals import (
    EMPTY,
    IntervalSet,
    Window,
    contains_window,
    merge_windows,
    parse_time,
    subtract_window,
)
from providers.models import AvailabilityRule, Provider, ProviderException, Service
from providers.services import AvailabilityResolver

User = get_user_model()


def hm(hours, minutes=0):
    return hours * 60 + minutes


# ═══════════════════════════════════════════════════════════════════
#  Interval Algebra
# ═══════════════════════════════════════════════════════════════════


class WindowTests(SimpleTestCase):
    def test_window_requires_start_before_end(self):
        with self.assertRaises(ValueError):
            Window(hm(10), hm(10))
        with self.assertRaises(ValueError):
            Window(hm(11), hm(10))

    def test_window_must_stay_inside_one_day(self):
        with self.assertRaises(ValueError):
            Window(-1, hm(1))
        with self.assertRaises(ValueError):
            Window(hm(23), 24 * 60)

    def test_duration(self):
        self.assertEqual(Window(hm(9), hm(10, 30)).duration, 90)


class MergeWindowsTests(SimpleTestCase):
    def test_empty_input(self):
        self.assertEqual(merge_windows([]), [])

    def test_overlapping_and_adjacent_windows_fuse(self):
        merged = merge_windows([
            Window(hm(13), hm(15)),
            Window(hm(9), hm(11)),
            Window(hm(10), hm(12)),
            Window(hm(12), hm(12, 30)),
        ])
        self.assertEqual(merged, [Window(hm(9), hm(12, 30)), Window(hm(13), hm(15))])

    def test_contained_window_is_absorbed(self):
        merged = merge_windows([Window(hm(9), hm(17)), Window(hm(10), hm(11))])
        self.assertEqual(merged, [Window(hm(9), hm(17))])

    def test_merge_is_idempotent(self):
        once = merge_windows([Window(hm(9), hm(11)), Window(hm(10), hm(12)), Window(hm(14), hm(15))])
        self.assertEqual(merge_windows(once), once)


class SubtractWindowTests(SimpleTestCase):
    def setUp(self):
        self.day = [Window(hm(9), hm(17))]

    def test_interior_cut_splits_window(self):
        result = subtract_window(self.day, hm(12), hm(13))
        self.assertEqual(result, [Window(hm(9), hm(12)), Window(hm(13), hm(17))])

    def test_leading_and_trailing_cuts(self):
        self.assertEqual(subtract_window(self.day, hm(8), hm(10)), [Window(hm(10), hm(17))])
        self.assertEqual(subtract_window(self.day, hm(16), hm(18)), [Window(hm(9), hm(16))])

    def test_cut_covering_window_removes_it(self):
        self.assertEqual(subtract_window(self.day, hm(8), hm(18)), [])

    def test_disjoint_cut_is_noop(self):
        self.assertEqual(subtract_window(self.day, hm(17), hm(18)), self.day)

    def test_empty_cut_is_noop(self):
        self.assertEqual(subtract_window(self.day, hm(12), hm(12)), self.day)
        self.assertEqual(subtract_window(self.day, hm(13), hm(12)), self.day)

    def test_result_never_overlaps_the_cut(self):
        windows = [Window(hm(8), hm(10)), Window(hm(11), hm(14)), Window(hm(15), hm(18))]
        for window in subtract_window(windows, hm(9, 30), hm(15, 30)):
            self.assertFalse(window.overlaps(hm(9, 30), hm(15, 30)))


class ContainsWindowTests(SimpleTestCase):
    def test_range_inside_one_window(self):
        windows = [Window(hm(9), hm(12)), Window(hm(13), hm(17))]
        self.assertTrue(contains_window(windows, hm(9), hm(12)))
        self.assertTrue(contains_window(windows, hm(14), hm(15)))

    def test_range_spanning_a_gap_is_not_contained(self):
        windows = [Window(hm(9), hm(12)), Window(hm(13), hm(17))]
        self.assertFalse(contains_window(windows, hm(11), hm(14)))

    def test_empty_range_is_never_contained(self):
        self.assertFalse(contains_window([Window(hm(9), hm(12))], hm(10), hm(10)))


class IntervalSetTests(SimpleTestCase):
    def test_constructor_merges(self):
        windows = IntervalSet.from_pairs([(hm(10), hm(12)), (hm(9), hm(11))])
        self.assertEqual(windows.to_list(), [(hm(9), hm(12))])

    def test_subtract_returns_new_set(self):
        original = IntervalSet.from_pairs([(hm(9), hm(17))])
        cut = original.subtract(hm(12), hm(13))
        self.assertEqual(original.total_minutes, 8 * 60)
        self.assertEqual(cut.total_minutes, 7 * 60)
        self.assertEqual(len(cut), 2)

    def test_merge_combines_sets(self):
        morning = IntervalSet.from_pairs([(hm(9), hm(12))])
        merged = morning.merge(IntervalSet.from_pairs([(hm(12), hm(13)), (hm(15), hm(16))]))
        self.assertEqual(merged.to_list(), [(hm(9), hm(13)), (hm(15), hm(16))])

    def test_empty_set_is_falsy(self):
        self.assertFalse(EMPTY)
        self.assertEqual(str(EMPTY), "(closed)")

    def test_str(self):
        windows = IntervalSet.from_pairs([(hm(9), hm(10)), (hm(11), hm(12, 30))])
        self.assertEqual(str(windows), "09:00-10:00, 11:00-12:30")


class ParseTimeTests(SimpleTestCase):
    def test_accepts_time_string_and_minutes(self):
        self.assertEqual(parse_time(time(9, 30)), hm(9, 30))
        self.assertEqual(parse_time("09:30"), hm(9, 30))
        self.assertEqual(parse_time("9:05:00"), hm(9, 5))
        self.assertEqual(parse_time(hm(14)), hm(14))

    def test_rejects_malformed_values(self):
        for value in ("25:00", "09:60", "10:00:99", "10:00:60", "nine", "", None, 24 * 60, True):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_time(value)


# ═══════════════════════════════════════════════════════════════════
#  Models
# ═══════════════════════════════════════════════════════════════════


class ProviderTestMixin:
    """A provider open Monday 09:00-17:00 offering a 60/30-minute service."""

    def setUp(self):
        today = date.today()
        days_ahead = 0 - today.weekday()
        if days_ahead <= 0:
            days_ahead += 7
        self.next_monday = today + timedelta(days=days_ahead)
        self.day_before = self.next_monday - timedelta(days=1)

        self.service = Service.objects.create(name="Consultation", allowed_durations=[60, 30])
        self.provider = Provider.objects.create(name="Dana Levi", email="dana@example.com")
        self.provider.services.add(self.service)

        self.rule = AvailabilityRule.objects.create(
            provider=self.provider,
            day_of_week=0,
            start_time=time(9, 0),
            end_time=time(17, 0),
        )

        self.customer = Client.objects.create(first_name="Omar", last_name="Haddad")
        self.resolver = AvailabilityResolver(SchedulingPolicy(slot_granularity_minutes=15))

    def book(self, start, duration=60, status=Appointment.Status.BOOKED, provider=None, on=None):
        return Appointment.objects.create(
            client=self.customer,
            provider=provider or self.provider,
            service=self.service,
            appointment_date=on or self.next_monday,
            start_time=start,
            duration_minutes=duration,
            status=status,
        )


class ProviderModelTests(ProviderTestMixin, TestCase):
    def test_service_requires_positive_durations(self):
        with self.assertRaises(ModelValidationError):
            Service.objects.create(name="Empty", allowed_durations=[])
        with self.assertRaises(ModelValidationError):
            Service.objects.create(name="Negative", allowed_durations=[30, -15])

    def test_service_default_duration_is_first(self):
        self.assertEqual(self.service.default_duration, 60)
        self.assertTrue(self.service.allows_duration(30))
        self.assertFalse(self.service.allows_duration(45))

    def test_provider_offers(self):
        other = Service.objects.create(name="Massage", allowed_durations=[45])
        self.assertTrue(self.provider.offers(self.service))
        self.assertFalse(self.provider.offers(other))

    def test_rule_start_after_end_raises_error(self):
        with self.assertRaises(ModelValidationError):
            AvailabilityRule.objects.create(
                provider=self.provider,
                day_of_week=1,
                start_time=time(12, 0),
                end_time=time(9, 0),
            )

    def test_rule_effective_range_must_be_ordered(self):
        with self.assertRaises(ModelValidationError):
            AvailabilityRule.objects.create(
                provider=self.provider,
                day_of_week=1,
                start_time=time(9, 0),
                end_time=time(12, 0),
                is_recurring=False,
                effective_from=date(2026, 3, 1),
                effective_to=date(2026, 2, 1),
            )

    def test_exception_needs_both_times_or_neither(self):
        with self.assertRaises(ModelValidationError):
            ProviderException.objects.create(
                provider=self.provider,
                date=self.next_monday,
                start_time=time(12, 0),
            )

    def test_appointment_end_time_is_derived(self):
        appointment = self.book(time(10, 0), duration=90)
        self.assertEqual(appointment.end_time, time(11, 30))

    def test_appointment_cannot_cross_midnight(self):
        with self.assertRaises(ModelValidationError):
            self.book(time(23, 30), duration=60)


# ═══════════════════════════════════════════════════════════════════
#  Availability Resolver
# ═══════════════════════════════════════════════════════════════════


class AvailabilityResolverTests(ProviderTestMixin, TestCase):
    def test_plain_schedule(self):
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(17))])

    def test_day_without_rules_is_closed(self):
        tuesday = self.next_monday + timedelta(days=1)
        self.assertFalse(self.resolver.get_availability(self.provider.id, tuesday))

    def test_overlapping_rules_are_merged(self):
        AvailabilityRule.objects.create(
            provider=self.provider,
            day_of_week=0,
            start_time=time(16, 0),
            end_time=time(19, 0),
        )
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(19))])

    def test_inactive_rule_is_ignored(self):
        self.rule.is_active = False
        self.rule.save()
        self.assertFalse(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_non_recurring_rule_respects_effective_range(self):
        self.rule.delete()
        AvailabilityRule.objects.create(
            provider=self.provider,
            day_of_week=0,
            start_time=time(10, 0),
            end_time=time(12, 0),
            is_recurring=False,
            effective_from=self.next_monday,
            effective_to=self.next_monday,
        )
        self.assertEqual(
            self.resolver.get_availability(self.provider.id, self.next_monday).to_list(),
            [(hm(10), hm(12))],
        )
        following = self.next_monday + timedelta(days=7)
        self.assertFalse(self.resolver.get_availability(self.provider.id, following))

    def test_inactive_provider_has_no_availability(self):
        self.provider.is_active = False
        self.provider.save()
        self.assertFalse(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_unknown_provider_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.resolver.get_availability(999999, self.next_monday)

    def test_missing_provider_id_raises_validation_error(self):
        with self.assertRaises(ValidationError):
            self.resolver.get_availability(None, self.next_monday)

    def test_one_time_holiday_closes_the_day(self):
        BusinessHoliday.objects.create(name="Founders Day", date=self.next_monday)
        self.assertFalse(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_recurring_holiday_matches_month_and_day(self):
        BusinessHoliday.objects.create(
            name="Anniversary",
            date=self.next_monday.replace(year=self.next_monday.year - 4),
            is_recurring=True,
        )
        self.assertFalse(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_one_time_holiday_in_another_year_does_not_apply(self):
        BusinessHoliday.objects.create(
            name="Old closure",
            date=self.next_monday.replace(year=self.next_monday.year - 4),
        )
        self.assertTrue(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_full_day_provider_exception(self):
        ProviderException.objects.create(provider=self.provider, date=self.next_monday, reason="Sick")
        self.assertFalse(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_exception_spanning_whole_day_counts_as_full_day(self):
        ProviderException.objects.create(
            provider=self.provider,
            date=self.next_monday,
            start_time=time(0, 0),
            end_time=time(23, 59),
        )
        self.assertFalse(self.resolver.get_availability(self.provider.id, self.next_monday))

    def test_partial_provider_exception(self):
        ProviderException.objects.create(
            provider=self.provider,
            date=self.next_monday,
            start_time=time(12, 0),
            end_time=time(13, 0),
        )
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(12)), (hm(13), hm(17))])

    def test_business_exception_with_times_blocks_range(self):
        BusinessException.objects.create(
            date=self.next_monday,
            start_time=time(15, 0),
            end_time=time(18, 0),
            reason="Fire drill",
        )
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(15))])

    def test_business_exception_without_times_does_not_block(self):
        BusinessException.objects.create(date=self.next_monday, reason="Staff meeting notice")
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(17))])

    def test_active_bookings_are_subtracted(self):
        self.book(time(10, 0))
        self.book(time(14, 0), status=Appointment.Status.CHECKED_IN)
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(
            windows.to_list(),
            [(hm(9), hm(10)), (hm(11), hm(14)), (hm(15), hm(17))],
        )

    def test_inactive_bookings_do_not_block(self):
        for inactive in (
            Appointment.Status.CANCELLED,
            Appointment.Status.RESCHEDULED,
            Appointment.Status.COMPLETED,
            Appointment.Status.NO_SHOW,
        ):
            self.book(time(10, 0), status=inactive)
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(17))])

    def test_other_providers_bookings_do_not_block(self):
        other = Provider.objects.create(name="Sam Cohen")
        self.book(time(10, 0), provider=other)
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertEqual(windows.to_list(), [(hm(9), hm(17))])

    def test_excluded_appointment_does_not_block(self):
        appointment = self.book(time(10, 0))
        self.assertFalse(
            self.resolver.is_slot_available(self.provider.id, self.next_monday, "10:00", 60)
        )
        self.assertTrue(
            self.resolver.is_slot_available(
                self.provider.id,
                self.next_monday,
                "10:00",
                60,
                exclude_appointment_id=appointment.id,
            )
        )

    def test_slot_past_end_of_window_is_unavailable(self):
        self.assertTrue(self.resolver.is_slot_available(self.provider.id, self.next_monday, "16:00", 60))
        self.assertFalse(self.resolver.is_slot_available(self.provider.id, self.next_monday, "16:30", 60))

    def test_availability_range_skips_closed_days(self):
        result = self.resolver.get_availability_range(
            self.provider.id,
            self.next_monday,
            self.next_monday + timedelta(days=6),
        )
        self.assertEqual(list(result), [self.next_monday.isoformat()])

    def test_availability_range_rejects_reversed_dates(self):
        with self.assertRaises(ValidationError):
            self.resolver.get_availability_range(
                self.provider.id,
                self.next_monday,
                self.next_monday - timedelta(days=1),
            )


class SlotGenerationTests(ProviderTestMixin, TestCase):
    def test_worked_example(self):
        """09:00-17:00 with a lunch exception and one booking, 60-minute slots."""
        ProviderException.objects.create(
            provider=self.provider,
            date=self.next_monday,
            start_time=time(12, 0),
            end_time=time(13, 0),
        )
        self.book(time(10, 0))

        slots = self.resolver.get_slots(self.provider.id, self.next_monday, 60)
        labels = [slot.label for slot in slots]

        self.assertEqual(labels[:3], ["09:00", "11:00", "13:00"])
        self.assertEqual(labels[-1], "16:00")
        self.assertEqual(len(slots), 15)
        self.assertNotIn("10:00", labels)
        self.assertNotIn("12:00", labels)

    def test_slots_fit_inside_windows(self):
        self.book(time(11, 0))
        windows = self.resolver.get_availability(self.provider.id, self.next_monday)
        for slot in self.resolver.get_slots(self.provider.id, self.next_monday, 30):
            self.assertTrue(windows.contains(slot.start, slot.end))

    def test_starts_are_aligned_to_granularity(self):
        self.rule.start_time = time(9, 10)
        self.rule.end_time = time(10, 30)
        self.rule.save()

        slots = self.resolver.get_slots(self.provider.id, self.next_monday, 30)
        self.assertEqual([s.label for s in slots], ["09:15", "09:30", "09:45", "10:00"])

    def test_duration_longer_than_any_window(self):
        self.book(time(12, 0))
        self.book(time(14, 0))
        slots = self.resolver.get_slots(self.provider.id, self.next_monday, 240)
        self.assertEqual(slots, [])

    def test_started_slots_are_dropped_today(self):
        now = datetime.combine(self.next_monday, time(12, 0))
        slots = self.resolver.get_slots(self.provider.id, self.next_monday, 60, now=now)
        self.assertEqual(slots[0].label, "12:15")
        self.assertEqual(len(slots), 16)

    @override_settings(TIME_ZONE="America/Los_Angeles")
    def test_aware_now_is_compared_in_local_time(self):
        now = datetime.combine(self.next_monday, time(18, 0), tzinfo=dt_timezone.utc)
        local = timezone.localtime(now)
        self.assertEqual(local.date(), self.next_monday)

        slots = self.resolver.get_slots(self.provider.id, self.next_monday, 60, now=now)

        self.assertTrue(slots)
        self.assertEqual(slots[0].label, f"{local.hour:02d}:15")
        self.assertTrue(all(slot.start > local.hour * 60 for slot in slots))

    def test_past_day_has_no_slots(self):
        now = datetime.combine(self.next_monday + timedelta(days=1), time(8, 0))
        self.assertEqual(self.resolver.get_slots(self.provider.id, self.next_monday, 60, now=now), [])

    def test_future_day_ignores_time_of_now(self):
        now = datetime.combine(self.day_before, time(16, 0))
        slots = self.resolver.get_slots(self.provider.id, self.next_monday, 60, now=now)
        self.assertEqual(slots[0].label, "09:00")

    def test_invalid_duration_raises(self):
        for duration in (0, -30, "60", None):
            with self.subTest(duration=duration):
                with self.assertRaises(ValidationError):
                    self.resolver.get_slots(self.provider.id, self.next_monday, duration)

    def test_slot_to_dict(self):
        slot = self.resolver.get_slots(self.provider.id, self.next_monday, 30)[0]
        self.assertEqual(slot.to_dict(), {"start": "09:00", "end": "09:30"})


# ═══════════════════════════════════════════════════════════════════
#  API Endpoints
# ═══════════════════════════════════════════════════════════════════


class ProviderAvailabilityAPITests(ProviderTestMixin, TestCase):
    """Tests for the availability and slot endpoints."""

    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(username="frontdesk", password="testpass123")
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)

    def test_get_availability_success(self):
        self.book(time(10, 0))
        url = reverse("providers:api_availability", kwargs={"provider_id": self.provider.id})
        response = self.client.get(url, {"date": self.next_monday.isoformat()})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(
            response.data["windows"],
            [{"start": "09:00", "end": "10:00"}, {"start": "11:00", "end": "17:00"}],
        )

    def test_get_availability_missing_date(self):
        url = reverse("providers:api_availability", kwargs={"provider_id": self.provider.id})
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_availability_unknown_provider(self):
        url = reverse("providers:api_availability", kwargs={"provider_id": 999999})
        response = self.client.get(url, {"date": self.next_monday.isoformat()})
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_found")

    def test_get_availability_unauthenticated(self):
        self.client.force_authenticate(user=None)
        url = reverse("providers:api_availability", kwargs={"provider_id": self.provider.id})
        response = self.client.get(url, {"date": self.next_monday.isoformat()})
        self.assertIn(response.status_code, [
            status.HTTP_401_UNAUTHORIZED,
            status.HTTP_403_FORBIDDEN,
        ])

    def test_get_slots_success(self):
        url = reverse("providers:api_slots", kwargs={"provider_id": self.provider.id})
        response = self.client.get(url, {"date": self.next_monday.isoformat(), "duration": 60})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["granularity"], 15)
        self.assertEqual(response.data["results"][0], {"start": "09:00", "end": "10:00"})
        self.assertEqual(response.data["results"][-1], {"start": "16:00", "end": "17:00"})

    def test_get_slots_missing_duration(self):
        url = reverse("providers:api_slots", kwargs={"provider_id": self.provider.id})
        response = self.client.get(url, {"date": self.next_monday.isoformat()})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_slots_invalid_date_format(self):
        url = reverse("providers:api_slots", kwargs={"provider_id": self.provider.id})
        response = self.client.get(url, {"date": "16-02-2026", "duration": 60})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_slots_past_date_is_empty(self):
        url = reverse("providers:api_slots", kwargs={"provider_id": self.provider.id})
        last_monday = self.next_monday - timedelta(days=14)
        response = self.client.get(url, {"date": last_monday.isoformat(), "duration": 60})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["results"], [])
