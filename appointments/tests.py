"""
Tests for the appointment lifecycle.

Covers:
- Booking (happy path, validations, conflicts)
- Status transitions and the transition table
- Time-gated check-in and no-show
- Reschedule and reinstate
- Calendar sync and audit side effects
- mark_no_shows management command
- API endpoints (book, transitions, detail)
"""

from datetime import date, datetime, time, timedelta
from io import StringIO
from unittest.mock import Mock, patch

import requests
from django.contrib.auth import get_user_model
from django.core.management import CommandError, call_command
from django.db import DatabaseError, transaction
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from appointments.exceptions import (
    ConflictError,
    NotFoundError,
    PreconditionError,
    ValidationError,
    WindowViolation,
)
from appointments.models import ActivityLogEntry, Appointment
from appointments.policy import SchedulingPolicy
from appointments.services import (
    AppointmentLifecycle,
    CalendarBackend,
    CalendarSyncError,
    NullCalendarBackend,
    WebhookCalendarBackend,
    get_calendar_backend,
    sync_appointment,
)
from appointments.transitions import (
    ACTIVE_STATUSES,
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    allowed_targets,
    can_transition,
    is_active,
    is_terminal,
)
from clients.models import Client
from providers.models import AvailabilityRule, Provider, Service

User = get_user_model()
Status = Appointment.Status


class LifecycleTestMixin:
    """Shared setup: one provider open Monday 09:00-17:00, one client."""

    def setUp(self):
        # Find next Monday for consistent test dates
        today = date.today()
        days_ahead = 0 - today.weekday()
        if days_ahead <= 0:
            days_ahead += 7
        self.next_monday = today + timedelta(days=days_ahead)

        # "Now" for bookings: noon on the day before
        self.before = datetime.combine(self.next_monday - timedelta(days=1), time(12, 0))

        self.service = Service.objects.create(name="Consultation", allowed_durations=[60, 30])
        self.provider = Provider.objects.create(name="Dana Levi")
        self.provider.services.add(self.service)
        AvailabilityRule.objects.create(
            provider=self.provider,
            day_of_week=0,
            start_time=time(9, 0),
            end_time=time(17, 0),
        )

        self.customer = Client.objects.create(first_name="Omar", last_name="Haddad")
        self.other_customer = Client.objects.create(first_name="Lina", last_name="Saleh")

        self.policy = SchedulingPolicy()
        self.lifecycle = AppointmentLifecycle(policy=self.policy, calendar=NullCalendarBackend())

    def at(self, hours, minutes=0, day=None):
        return datetime.combine(day or self.next_monday, time(hours, minutes))

    def book(self, start="10:00", duration=None, client=None, lifecycle=None, **kwargs):
        result = (lifecycle or self.lifecycle).book(
            client_id=(client or self.customer).id,
            provider_id=kwargs.pop("provider_id", self.provider.id),
            service_id=kwargs.pop("service_id", self.service.id),
            appointment_date=kwargs.pop("appointment_date", self.next_monday),
            start_time=start,
            duration_minutes=duration,
            now=kwargs.pop("now", self.before),
            **kwargs,
        )
        return result.appointment

    def reload(self, appointment):
        return Appointment.objects.get(pk=appointment.pk)


# ═══════════════════════════════════════════════════════════════════
#  Policy and Transition Table
# ═══════════════════════════════════════════════════════════════════


class SchedulingPolicyTests(SimpleTestCase):
    def test_defaults(self):
        policy = SchedulingPolicy()
        self.assertEqual(policy.check_in_before_minutes, 60)
        self.assertEqual(policy.check_in_after_minutes, 30)
        self.assertEqual(policy.no_show_grace_minutes, 30)
        self.assertEqual(policy.slot_granularity_minutes, 15)

    def test_rejects_negative_values(self):
        with self.assertRaises(ValueError):
            SchedulingPolicy(no_show_grace_minutes=-5)

    def test_rejects_zero_granularity(self):
        with self.assertRaises(ValueError):
            SchedulingPolicy(slot_granularity_minutes=0)

    @override_settings(OPENSLOTS_POLICY={"no_show_grace_minutes": 10})
    def test_from_settings_overrides(self):
        policy = SchedulingPolicy.from_settings()
        self.assertEqual(policy.no_show_grace_minutes, 10)
        self.assertEqual(policy.check_in_before_minutes, 60)

    @override_settings(OPENSLOTS_POLICY={"grace": 10})
    def test_from_settings_rejects_unknown_keys(self):
        with self.assertRaises(ValueError):
            SchedulingPolicy.from_settings()


class TransitionTableTests(SimpleTestCase):
    def test_every_status_has_an_entry(self):
        self.assertEqual(set(ALLOWED_TRANSITIONS), set(Status))

    def test_terminal_statuses_have_no_exits(self):
        for terminal in TERMINAL_STATUSES:
            self.assertTrue(is_terminal(terminal))
            self.assertEqual(allowed_targets(terminal), frozenset())

    def test_every_status_is_reachable_from_booked(self):
        reached = {Status.BOOKED}
        frontier = [Status.BOOKED]
        while frontier:
            for target in allowed_targets(frontier.pop()):
                if target not in reached:
                    reached.add(target)
                    frontier.append(target)
        self.assertEqual(reached, set(Status))

    def test_selected_edges(self):
        self.assertTrue(can_transition(Status.BOOKED, Status.CONFIRMED))
        self.assertTrue(can_transition(Status.CHECKED_IN, Status.NO_SHOW))
        self.assertTrue(can_transition(Status.RESCHEDULED, Status.BOOKED))
        self.assertFalse(can_transition(Status.CONFIRMED, Status.CONFIRMED))
        self.assertFalse(can_transition(Status.BOOKED, Status.COMPLETED))
        self.assertFalse(can_transition(Status.CHECKED_IN, Status.CANCELLED))

    def test_only_active_statuses_occupy_time(self):
        self.assertEqual(
            set(ACTIVE_STATUSES),
            {Status.BOOKED, Status.CONFIRMED, Status.CHECKED_IN},
        )
        self.assertTrue(is_active(Status.CHECKED_IN))
        self.assertFalse(is_active(Status.RESCHEDULED))


# ═══════════════════════════════════════════════════════════════════
#  Booking
# ═══════════════════════════════════════════════════════════════════


class BookingTests(LifecycleTestMixin, TestCase):
    def test_successful_booking(self):
        result = self.lifecycle.book(
            client_id=self.customer.id,
            provider_id=self.provider.id,
            service_id=self.service.id,
            appointment_date=self.next_monday,
            start_time="10:00",
            duration_minutes=60,
            notes="First visit",
            actor="frontdesk",
            now=self.before,
        )
        appointment = result.appointment

        self.assertEqual(result.warnings, [])
        self.assertEqual(appointment.status, Status.BOOKED)
        self.assertEqual(appointment.start_time, time(10, 0))
        self.assertEqual(appointment.end_time, time(11, 0))
        self.assertEqual(appointment.notes, "First visit")

        entries = list(appointment.activity.all())
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].action, ActivityLogEntry.Action.BOOKED)
        self.assertEqual(entries[0].actor, "frontdesk")

    def test_booking_sets_first_visit_date(self):
        self.book()
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.first_visit_date, self.next_monday)

    def test_default_duration_is_services_first(self):
        appointment = self.book(duration=None)
        self.assertEqual(appointment.duration_minutes, 60)

    def test_other_allowed_duration(self):
        appointment = self.book(duration=30)
        self.assertEqual(appointment.end_time, time(10, 30))

    def test_disallowed_duration_raises(self):
        with self.assertRaises(ValidationError) as ctx:
            self.book(duration=45)
        self.assertEqual(ctx.exception.code, "invalid_duration")
        self.assertEqual(ctx.exception.context["allowed_durations"], [60, 30])

    def test_missing_client_raises_validation_error(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.book(
                client_id=None,
                provider_id=self.provider.id,
                service_id=self.service.id,
                appointment_date=self.next_monday,
                start_time="10:00",
                now=self.before,
            )

    def test_malformed_time_raises_validation_error(self):
        with self.assertRaises(ValidationError):
            self.book(start="10am")

    def test_unknown_service_raises_not_found(self):
        with self.assertRaises(NotFoundError) as ctx:
            self.book(service_id=999999)
        self.assertEqual(ctx.exception.context["entity"], "Service")

    def test_past_slot_raises_error(self):
        with self.assertRaises(ValidationError) as ctx:
            self.book(start="10:00", now=self.at(10, 30))
        self.assertEqual(ctx.exception.code, "past_date")

    def test_crossing_midnight_raises_error(self):
        with self.assertRaises(ValidationError):
            self.book(start="23:30")

    def test_inactive_provider_raises_precondition(self):
        self.provider.is_active = False
        self.provider.save()
        with self.assertRaises(PreconditionError) as ctx:
            self.book()
        self.assertEqual(ctx.exception.code, "inactive_provider")

    def test_service_not_offered_raises_precondition(self):
        massage = Service.objects.create(name="Massage", allowed_durations=[60])
        with self.assertRaises(PreconditionError) as ctx:
            self.book(service_id=massage.id)
        self.assertEqual(ctx.exception.code, "service_not_offered")

    def test_slot_outside_schedule_raises_conflict(self):
        with self.assertRaises(ConflictError):
            self.book(start="16:30")

    def test_overlapping_booking_raises_conflict(self):
        self.book(start="10:00")
        with self.assertRaises(ConflictError) as ctx:
            self.book(start="10:30", client=self.other_customer)
        self.assertEqual(ctx.exception.code, "slot_unavailable")
        self.assertEqual(Appointment.objects.count(), 1)

    def test_adjacent_booking_is_allowed(self):
        self.book(start="10:00")
        appointment = self.book(start="11:00", client=self.other_customer)
        self.assertEqual(appointment.status, Status.BOOKED)

    def test_cancelled_slot_can_be_rebooked(self):
        first = self.book(start="10:00")
        self.lifecycle.cancel(first.id, "Changed plans", now=self.before)
        second = self.book(start="10:00", client=self.other_customer)
        self.assertEqual(second.status, Status.BOOKED)


# ═══════════════════════════════════════════════════════════════════
#  Transitions
# ═══════════════════════════════════════════════════════════════════


class TransitionTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.appointment = self.book(start="10:00")

    def test_confirm(self):
        result = self.lifecycle.confirm(self.appointment.id, actor="frontdesk")
        self.assertEqual(result.appointment.status, Status.CONFIRMED)

        entry = self.appointment.activity.last()
        self.assertEqual(entry.action, ActivityLogEntry.Action.STATUS_CHANGED)
        self.assertEqual(entry.old_value, Status.BOOKED)
        self.assertEqual(entry.new_value, Status.CONFIRMED)

    def test_each_transition_appends_one_entry(self):
        self.lifecycle.confirm(self.appointment.id)
        self.lifecycle.check_in(self.appointment.id, now=self.at(9, 45))
        self.lifecycle.complete(self.appointment.id, now=self.at(11, 0))
        actions = list(self.appointment.activity.values_list("action", flat=True))
        self.assertEqual(actions, [
            ActivityLogEntry.Action.BOOKED,
            ActivityLogEntry.Action.STATUS_CHANGED,
            ActivityLogEntry.Action.STATUS_CHANGED,
            ActivityLogEntry.Action.STATUS_CHANGED,
        ])

    def test_transition_locks_only_the_appointment_row(self):
        with patch.object(
            Appointment.objects, "select_for_update", wraps=Appointment.objects.select_for_update
        ) as lock:
            self.lifecycle.confirm(self.appointment.id)
        lock.assert_called_once_with(of=("self",))

    def test_transition_inside_outer_transaction_is_refused(self):
        calendar = Mock()
        lifecycle = AppointmentLifecycle(calendar=calendar)
        with transaction.atomic():
            with self.assertRaises(RuntimeError):
                lifecycle.confirm(self.appointment.id)

        calendar.push.assert_not_called()
        self.assertEqual(self.reload(self.appointment).status, Status.BOOKED)

    def test_illegal_transitions_leave_status_unchanged(self):
        for current in Status:
            Appointment.objects.filter(pk=self.appointment.pk).update(status=current)
            entries_before = ActivityLogEntry.objects.count()
            for target in Status:
                if can_transition(current, target):
                    continue
                with self.subTest(current=current, target=target):
                    with self.assertRaises(PreconditionError) as ctx:
                        self.lifecycle.change_status(self.appointment.id, target)
                    self.assertEqual(ctx.exception.code, "illegal_transition")
                    self.assertEqual(ctx.exception.context["current_status"], current)
                    self.assertEqual(ctx.exception.context["attempted_status"], target)
                    self.assertEqual(self.reload(self.appointment).status, current)
            self.assertEqual(ActivityLogEntry.objects.count(), entries_before)

    def test_unknown_appointment_raises_not_found(self):
        with self.assertRaises(NotFoundError):
            self.lifecycle.confirm(999999)

    def test_change_status_rejects_unknown_status(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.change_status(self.appointment.id, "DONE")

    def test_change_status_dispatches(self):
        result = self.lifecycle.change_status(self.appointment.id, "CONFIRMED")
        self.assertEqual(result.appointment.status, Status.CONFIRMED)

    def test_cancel_frees_the_slot(self):
        result = self.lifecycle.cancel(
            self.appointment.id, "Client called", now=self.before
        )
        appointment = result.appointment

        self.assertEqual(appointment.status, Status.CANCELLED)
        self.assertEqual(appointment.cancellation_reason, "Client called")
        self.assertIsNotNone(appointment.cancelled_at)
        self.assertTrue(
            self.lifecycle.resolver.is_slot_available(
                self.provider.id, self.next_monday, "10:00", 60
            )
        )

    def test_cancel_twice_is_illegal(self):
        self.lifecycle.cancel(self.appointment.id, now=self.before)
        with self.assertRaises(PreconditionError):
            self.lifecycle.cancel(self.appointment.id, now=self.before)


class CheckInTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.appointment = self.book(start="10:00")

    def test_too_early(self):
        with self.assertRaises(WindowViolation) as ctx:
            self.lifecycle.check_in(self.appointment.id, now=self.at(8, 59))
        self.assertEqual(ctx.exception.reason, WindowViolation.TOO_EARLY)
        self.assertEqual(ctx.exception.code, "too_early")
        self.assertEqual(self.reload(self.appointment).status, Status.BOOKED)

    def test_window_opens_at_start_minus_before(self):
        result = self.lifecycle.check_in(self.appointment.id, now=self.at(9, 0))
        self.assertEqual(result.appointment.status, Status.CHECKED_IN)
        self.assertIsNotNone(result.appointment.checked_in_at)

    def test_window_closes_at_start_plus_after(self):
        result = self.lifecycle.check_in(self.appointment.id, now=self.at(10, 30))
        self.assertEqual(result.appointment.status, Status.CHECKED_IN)

    def test_too_late_suggests_no_show(self):
        with self.assertRaises(WindowViolation) as ctx:
            self.lifecycle.check_in(self.appointment.id, now=self.at(10, 31))
        self.assertEqual(ctx.exception.reason, WindowViolation.TOO_LATE)
        self.assertIn("no-show", ctx.exception.suggestion)
        self.assertEqual(ctx.exception.context["reason"], "too_late")

    def test_check_in_from_confirmed(self):
        self.lifecycle.confirm(self.appointment.id)
        result = self.lifecycle.check_in(self.appointment.id, now=self.at(9, 50))
        self.assertEqual(result.appointment.status, Status.CHECKED_IN)

    def test_custom_policy_window(self):
        lifecycle = AppointmentLifecycle(
            policy=SchedulingPolicy(check_in_before_minutes=10),
            calendar=NullCalendarBackend(),
        )
        with self.assertRaises(WindowViolation):
            lifecycle.check_in(self.appointment.id, now=self.at(9, 45))
        lifecycle.check_in(self.appointment.id, now=self.at(9, 50))


class NoShowTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.appointment = self.book(start="10:00")

    def test_too_early_before_grace(self):
        with self.assertRaises(WindowViolation) as ctx:
            self.lifecycle.mark_no_show(self.appointment.id, now=self.at(10, 29))
        self.assertEqual(ctx.exception.reason, WindowViolation.TOO_EARLY)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.no_show_count, 0)

    def test_no_show_after_grace_increments_counter(self):
        result = self.lifecycle.mark_no_show(self.appointment.id, now=self.at(10, 30))
        self.assertEqual(result.appointment.status, Status.NO_SHOW)
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.no_show_count, 1)

    def test_counter_is_only_incremented_once(self):
        self.lifecycle.mark_no_show(self.appointment.id, now=self.at(11, 0))
        with self.assertRaises(PreconditionError):
            self.lifecycle.mark_no_show(self.appointment.id, now=self.at(11, 5))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.no_show_count, 1)

    def test_checked_in_can_become_no_show(self):
        self.lifecycle.check_in(self.appointment.id, now=self.at(9, 55))
        result = self.lifecycle.mark_no_show(self.appointment.id, now=self.at(10, 45))
        self.assertEqual(result.appointment.status, Status.NO_SHOW)


class CompleteTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.appointment = self.book(start="10:00")

    def test_complete_requires_check_in(self):
        with self.assertRaises(PreconditionError):
            self.lifecycle.complete(self.appointment.id, now=self.at(11, 0))

    def test_complete_updates_visit_dates(self):
        Client.objects.filter(pk=self.customer.pk).update(first_visit_date=None)
        self.lifecycle.check_in(self.appointment.id, now=self.at(9, 55))
        result = self.lifecycle.complete(
            self.appointment.id, "All good", now=self.at(11, 0)
        )

        self.assertEqual(result.appointment.status, Status.COMPLETED)
        self.assertEqual(result.appointment.completion_notes, "All good")
        self.assertIsNotNone(result.appointment.completed_at)

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.last_visit_date, self.next_monday)
        self.assertEqual(self.customer.first_visit_date, self.next_monday)

    def test_complete_keeps_later_last_visit(self):
        later = self.next_monday + timedelta(days=30)
        Client.objects.filter(pk=self.customer.pk).update(last_visit_date=later)
        self.lifecycle.check_in(self.appointment.id, now=self.at(9, 55))
        self.lifecycle.complete(self.appointment.id, now=self.at(11, 0))
        self.customer.refresh_from_db()
        self.assertEqual(self.customer.last_visit_date, later)


# ═══════════════════════════════════════════════════════════════════
#  Reschedule and Reinstate
# ═══════════════════════════════════════════════════════════════════


class RescheduleTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.appointment = self.book(start="10:00")

    def test_reschedule_creates_linked_replacement(self):
        result = self.lifecycle.reschedule(
            self.appointment.id, new_start_time="14:00", actor="frontdesk", now=self.before
        )
        replacement, original = result.appointment, result.replaced

        self.assertEqual(original.status, Status.RESCHEDULED)
        self.assertEqual(replacement.status, Status.BOOKED)
        self.assertEqual(replacement.start_time, time(14, 0))
        self.assertEqual(replacement.duration_minutes, 60)
        self.assertEqual(replacement.rescheduled_from_id, original.id)

        self.assertEqual(
            list(original.activity.values_list("action", flat=True)),
            [ActivityLogEntry.Action.BOOKED, ActivityLogEntry.Action.RESCHEDULED],
        )
        self.assertEqual(
            list(replacement.activity.values_list("action", flat=True)),
            [ActivityLogEntry.Action.BOOKED],
        )

    def test_reschedule_frees_the_old_slot(self):
        self.lifecycle.reschedule(self.appointment.id, new_start_time="14:00", now=self.before)
        windows = self.lifecycle.resolver.get_availability(self.provider.id, self.next_monday)
        self.assertTrue(windows.contains(10 * 60, 11 * 60))
        self.assertFalse(windows.contains(14 * 60, 15 * 60))

    def test_reschedule_may_overlap_its_own_slot(self):
        result = self.lifecycle.reschedule(
            self.appointment.id, new_start_time="10:30", now=self.before
        )
        self.assertEqual(result.appointment.start_time, time(10, 30))

    def test_reschedule_to_other_date(self):
        following = self.next_monday + timedelta(days=7)
        result = self.lifecycle.reschedule(self.appointment.id, new_date=following, now=self.before)
        self.assertEqual(result.appointment.appointment_date, following)
        self.assertEqual(result.appointment.start_time, time(10, 0))

    def test_reschedule_to_other_provider(self):
        other = Provider.objects.create(name="Sam Cohen")
        other.services.add(self.service)
        AvailabilityRule.objects.create(
            provider=other, day_of_week=0, start_time=time(8, 0), end_time=time(12, 0)
        )
        result = self.lifecycle.reschedule(
            self.appointment.id, new_provider_id=other.id, now=self.before
        )
        self.assertEqual(result.appointment.provider_id, other.id)

    def test_reschedule_to_provider_not_offering_service(self):
        other = Provider.objects.create(name="Sam Cohen")
        with self.assertRaises(PreconditionError) as ctx:
            self.lifecycle.reschedule(self.appointment.id, new_provider_id=other.id, now=self.before)
        self.assertEqual(ctx.exception.code, "service_not_offered")
        self.assertEqual(self.reload(self.appointment).status, Status.BOOKED)

    def test_reschedule_into_conflict_changes_nothing(self):
        self.book(start="14:00", client=self.other_customer)
        with self.assertRaises(ConflictError):
            self.lifecycle.reschedule(self.appointment.id, new_start_time="14:30", now=self.before)

        self.assertEqual(self.reload(self.appointment).status, Status.BOOKED)
        self.assertEqual(Appointment.objects.count(), 2)

    def test_reschedule_needs_a_target(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.reschedule(self.appointment.id, now=self.before)

    def test_reschedule_to_same_slot_is_rejected(self):
        with self.assertRaises(ValidationError):
            self.lifecycle.reschedule(self.appointment.id, new_start_time="10:00", now=self.before)

    def test_reschedule_into_past_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            self.lifecycle.reschedule(
                self.appointment.id, new_start_time="09:00", now=self.at(9, 30)
            )
        self.assertEqual(ctx.exception.code, "past_date")

    def test_checked_in_cannot_be_rescheduled(self):
        self.lifecycle.check_in(self.appointment.id, now=self.at(9, 55))
        with self.assertRaises(PreconditionError):
            self.lifecycle.reschedule(self.appointment.id, new_start_time="14:00", now=self.at(9, 56))

    def test_reinstate_returns_to_booked(self):
        result = self.lifecycle.reschedule(self.appointment.id, new_start_time="14:00", now=self.before)
        self.lifecycle.cancel(result.appointment.id, now=self.before)

        reinstated = self.lifecycle.change_status(self.appointment.id, Status.BOOKED, now=self.before)
        self.assertEqual(reinstated.appointment.status, Status.BOOKED)

    def test_reinstate_into_taken_slot_raises_conflict(self):
        self.lifecycle.reschedule(self.appointment.id, new_start_time="14:00", now=self.before)
        self.book(start="10:00", client=self.other_customer)

        with self.assertRaises(ConflictError):
            self.lifecycle.reinstate(self.appointment.id, now=self.before)
        self.assertEqual(self.reload(self.appointment).status, Status.RESCHEDULED)

    def test_rescheduled_can_be_cancelled(self):
        self.lifecycle.reschedule(self.appointment.id, new_start_time="14:00", now=self.before)
        result = self.lifecycle.cancel(self.appointment.id, now=self.before)
        self.assertEqual(result.appointment.status, Status.CANCELLED)


# ═══════════════════════════════════════════════════════════════════
#  Side Effects: Calendar and Audit
# ═══════════════════════════════════════════════════════════════════


class CalendarSyncTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.backend = Mock(spec=CalendarBackend)
        self.backend.push.return_value = "evt-1"
        self.synced = AppointmentLifecycle(policy=self.policy, calendar=self.backend)

    def test_booking_stores_external_reference(self):
        appointment = self.book(lifecycle=self.synced)
        self.assertEqual(appointment.external_calendar_ref, "evt-1")
        self.assertTrue(
            appointment.activity.filter(action=ActivityLogEntry.Action.CALENDAR_SYNC).exists()
        )

    def test_calendar_failure_becomes_warning(self):
        self.backend.push.side_effect = CalendarSyncError("calendar down")
        result = self.synced.book(
            client_id=self.customer.id,
            provider_id=self.provider.id,
            service_id=self.service.id,
            appointment_date=self.next_monday,
            start_time="10:00",
            now=self.before,
        )
        self.assertEqual(len(result.warnings), 1)
        self.assertEqual(self.reload(result.appointment).status, Status.BOOKED)
        self.assertEqual(self.reload(result.appointment).external_calendar_ref, "")

    def test_cancel_removes_event(self):
        appointment = self.book(lifecycle=self.synced)
        result = self.synced.cancel(appointment.id, now=self.before)

        self.backend.remove.assert_called_once_with("evt-1")
        self.assertEqual(result.appointment.external_calendar_ref, "")

    def test_remove_failure_becomes_warning(self):
        appointment = self.book(lifecycle=self.synced)
        self.backend.remove.side_effect = CalendarSyncError("gone wrong")
        result = self.synced.cancel(appointment.id, now=self.before)
        self.assertEqual(result.appointment.status, Status.CANCELLED)
        self.assertEqual(len(result.warnings), 1)

    def test_no_show_clears_reference(self):
        appointment = self.book(lifecycle=self.synced)
        result = self.synced.mark_no_show(appointment.id, now=self.at(11, 0))
        self.assertEqual(self.reload(result.appointment).external_calendar_ref, "")
        self.backend.remove.assert_called_once_with("evt-1")

    def test_reschedule_moves_reference(self):
        appointment = self.book(lifecycle=self.synced)
        result = self.synced.reschedule(appointment.id, new_start_time="14:00", now=self.before)

        self.assertEqual(self.reload(result.replaced).external_calendar_ref, "")
        self.assertEqual(self.reload(result.appointment).external_calendar_ref, "evt-1")
        self.backend.push.assert_called_with(result.appointment)
        self.backend.remove.assert_not_called()

    def test_sync_appointment_never_raises(self):
        appointment = self.book()
        self.backend.push.side_effect = RuntimeError("boom")
        self.assertFalse(sync_appointment(appointment.id, backend=self.backend))
        self.assertFalse(sync_appointment(999999, backend=self.backend))

    @override_settings(
        OPENSLOTS_CALENDAR_BACKEND="appointments.services.calendar_sync.NullCalendarBackend"
    )
    def test_get_calendar_backend_from_settings(self):
        self.assertIsInstance(get_calendar_backend(), NullCalendarBackend)


class WebhookCalendarBackendTests(LifecycleTestMixin, TestCase):
    URL = "https://calendar.example.com/events"

    def setUp(self):
        super().setUp()
        self.appointment = self.book()
        self.webhook = WebhookCalendarBackend(url=self.URL, timeout=5)

    @patch("appointments.services.calendar_sync.requests.post")
    def test_push_returns_event_id(self, mock_post):
        mock_post.return_value = Mock(status_code=201, text="")
        mock_post.return_value.json.return_value = {"event_id": "abc123"}

        self.assertEqual(self.webhook.push(self.appointment), "abc123")

        _, kwargs = mock_post.call_args
        self.assertEqual(kwargs["timeout"], 5)
        self.assertEqual(kwargs["json"]["appointment_id"], self.appointment.id)
        self.assertEqual(kwargs["json"]["start"], "10:00")
        self.assertEqual(kwargs["json"]["end"], "11:00")

    @patch("appointments.services.calendar_sync.requests.post")
    def test_push_http_error_raises(self, mock_post):
        mock_post.return_value = Mock(status_code=500, text="Internal Server Error")
        with self.assertRaises(CalendarSyncError):
            self.webhook.push(self.appointment)

    @patch("appointments.services.calendar_sync.requests.post")
    def test_push_without_event_id_raises(self, mock_post):
        mock_post.return_value = Mock(status_code=200, text="{}")
        mock_post.return_value.json.return_value = {}
        with self.assertRaises(CalendarSyncError):
            self.webhook.push(self.appointment)

    @patch("appointments.services.calendar_sync.requests.delete")
    def test_remove_tolerates_missing_event(self, mock_delete):
        mock_delete.return_value = Mock(status_code=404, text="")
        self.webhook.remove("abc123")
        mock_delete.assert_called_once_with(f"{self.URL}/abc123", timeout=5)

    @patch("appointments.services.calendar_sync.requests.post")
    def test_connection_error_becomes_warning(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("unreachable")
        lifecycle = AppointmentLifecycle(policy=self.policy, calendar=self.webhook)
        result = lifecycle.confirm(self.appointment.id)
        self.assertEqual(result.appointment.status, Status.CONFIRMED)
        self.assertEqual(len(result.warnings), 1)

    @override_settings(OPENSLOTS_CALENDAR_WEBHOOK_URL="")
    def test_missing_url_raises(self):
        with self.assertRaises(ValueError):
            WebhookCalendarBackend()


class ActivityLogTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.appointment = self.book()

    def test_entries_are_append_only(self):
        entry = self.appointment.activity.first()
        entry.note = "edited"
        with self.assertRaises(ValueError):
            entry.save()
        with self.assertRaises(ValueError):
            entry.delete()

    def test_audit_failure_becomes_warning(self):
        with patch.object(
            ActivityLogEntry.objects, "create", side_effect=DatabaseError("disk full")
        ):
            result = self.lifecycle.confirm(self.appointment.id)

        self.assertEqual(self.reload(self.appointment).status, Status.CONFIRMED)
        self.assertEqual(len(result.warnings), 1)


# ═══════════════════════════════════════════════════════════════════
#  Management Command
# ═══════════════════════════════════════════════════════════════════


class MarkNoShowsCommandTests(LifecycleTestMixin, TestCase):
    def setUp(self):
        super().setUp()
        self.early = self.book(start="09:00")
        self.short = self.book(start="10:30", duration=30, client=self.other_customer)
        self.later = self.book(start="14:00")
        self.arrived = self.book(start="12:00", client=self.other_customer)
        self.lifecycle.check_in(self.arrived.id, now=self.at(11, 55))

    def run_command(self, now, *args):
        out = StringIO()
        with patch(
            "appointments.management.commands.mark_no_shows.local_now",
            return_value=now,
        ):
            call_command("mark_no_shows", *args, stdout=out)
        return out.getvalue()

    def test_dry_run_changes_nothing(self):
        output = self.run_command(self.at(11, 0), "--dry-run")
        self.assertIn("2 appointment(s) due", output)
        self.assertEqual(self.reload(self.early).status, Status.BOOKED)
        self.assertEqual(self.reload(self.short).status, Status.BOOKED)

    def test_marks_only_appointments_past_grace(self):
        output = self.run_command(self.at(11, 0))
        self.assertIn("Marked 2", output)

        self.assertEqual(self.reload(self.early).status, Status.NO_SHOW)
        self.assertEqual(self.reload(self.short).status, Status.NO_SHOW)
        self.assertEqual(self.reload(self.later).status, Status.BOOKED)
        self.assertEqual(self.reload(self.arrived).status, Status.CHECKED_IN)

        self.customer.refresh_from_db()
        self.assertEqual(self.customer.no_show_count, 1)

    def test_date_option_restricts_sweep(self):
        other_day = (self.next_monday + timedelta(days=7)).isoformat()
        output = self.run_command(self.at(11, 0), "--date", other_day)
        self.assertIn("Marked 0", output)
        self.assertEqual(self.reload(self.early).status, Status.BOOKED)

    def test_invalid_date_option(self):
        with self.assertRaises(CommandError):
            self.run_command(self.at(11, 0), "--date", "next week")


# ═══════════════════════════════════════════════════════════════════
#  API Endpoints
# ═══════════════════════════════════════════════════════════════════


class AppointmentAPITestMixin(LifecycleTestMixin):
    def setUp(self):
        super().setUp()
        self.user = User.objects.create_user(username="frontdesk", password="testpass123")
        self.client = APIClient()
        self.client.force_authenticate(user=self.user)
        self.book_url = reverse("appointments:api_book_appointment")

    def _book_payload(self, **overrides):
        payload = {
            "client_id": self.customer.id,
            "provider_id": self.provider.id,
            "service_id": self.service.id,
            "appointment_date": self.next_monday.isoformat(),
            "start_time": "10:00",
            "notes": "Test booking",
        }
        payload.update(overrides)
        return payload

    def transition_url(self, appointment_id, action):
        return reverse(
            "appointments:api_appointment_transition",
            kwargs={"appointment_id": appointment_id, "action": action},
        )


class BookAppointmentAPITests(AppointmentAPITestMixin, TestCase):
    """Tests for POST /appointments/api/book/."""

    def test_successful_api_booking(self):
        response = self.client.post(self.book_url, self._book_payload(), format="json")

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data["appointment"]
        self.assertEqual(data["status"], "BOOKED")
        self.assertEqual(data["start_time"], "10:00")
        self.assertEqual(data["end_time"], "11:00")
        self.assertEqual(data["provider_name"], "Dana Levi")
        self.assertEqual(data["client_name"], "Omar Haddad")
        self.assertEqual(response.data["warnings"], [])

        entry = ActivityLogEntry.objects.get(appointment_id=data["id"])
        self.assertEqual(entry.actor, "frontdesk")

    def test_unauthenticated_returns_forbidden(self):
        self.client.force_authenticate(user=None)
        response = self.client.post(self.book_url, self._book_payload(), format="json")
        self.assertIn(response.status_code, [
            status.HTTP_401_UNAUTHORIZED,
            status.HTTP_403_FORBIDDEN,
        ])

    def test_missing_fields_returns_400(self):
        response = self.client.post(self.book_url, {"client_id": self.customer.id}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_disallowed_duration_returns_400(self):
        response = self.client.post(
            self.book_url, self._book_payload(duration_minutes=45), format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_duration")

    def test_unknown_client_returns_404(self):
        response = self.client.post(
            self.book_url, self._book_payload(client_id=999999), format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_slot_unavailable_returns_409(self):
        self.client.post(self.book_url, self._book_payload(), format="json")
        response = self.client.post(
            self.book_url,
            self._book_payload(client_id=self.other_customer.id, start_time="10:30"),
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "slot_unavailable")


class AppointmentTransitionAPITests(AppointmentAPITestMixin, TestCase):
    """Tests for POST /appointments/api/<id>/<action>/."""

    def setUp(self):
        super().setUp()
        self.appointment = self.book(start="10:00")

    def test_confirm(self):
        response = self.client.post(self.transition_url(self.appointment.id, "confirm"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["appointment"]["status"], "CONFIRMED")

    def test_cancel_with_reason(self):
        response = self.client.post(
            self.transition_url(self.appointment.id, "cancel"),
            {"reason": "Client called"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["appointment"]["cancellation_reason"], "Client called")

    def test_illegal_transition_returns_409(self):
        response = self.client.post(self.transition_url(self.appointment.id, "complete"))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "illegal_transition")
        self.assertEqual(response.data["context"]["current_status"], "BOOKED")
        self.assertEqual(response.data["context"]["attempted_status"], "COMPLETED")

    def test_check_in_too_early_returns_422(self):
        response = self.client.post(self.transition_url(self.appointment.id, "check-in"))
        self.assertEqual(response.status_code, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.assertEqual(response.data["code"], "too_early")

    def test_reschedule(self):
        response = self.client.post(
            self.transition_url(self.appointment.id, "reschedule"),
            {"new_start_time": "14:00"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["appointment"]["start_time"], "14:00")
        self.assertEqual(response.data["replaced"]["status"], "RESCHEDULED")
        self.assertEqual(response.data["appointment"]["rescheduled_from"], self.appointment.id)

    def test_reschedule_without_target_returns_400(self):
        response = self.client.post(
            self.transition_url(self.appointment.id, "reschedule"), {}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unknown_action_returns_404(self):
        response = self.client.post(self.transition_url(self.appointment.id, "archive"))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_unknown_appointment_returns_404(self):
        response = self.client.post(self.transition_url(999999, "confirm"))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data["code"], "not_found")

    def test_detail_includes_activity(self):
        self.client.post(self.transition_url(self.appointment.id, "confirm"))
        url = reverse(
            "appointments:api_appointment_detail",
            kwargs={"appointment_id": self.appointment.id},
        )
        response = self.client.get(url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["appointment"]["status_display"], "Confirmed")
        self.assertEqual(
            [entry["action"] for entry in response.data["activity"]],
            ["BOOKED", "STATUS_CHANGED"],
        )
        self.assertEqual(response.data["activity"][1]["actor"], "frontdesk")
