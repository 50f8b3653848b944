import logging
from datetime import date, timedelta

from django.core.management.base import BaseCommand, CommandError

from appointments.exceptions import SchedulingError
from appointments.models import Appointment
from appointments.policy import local_now
from appointments.services import AppointmentLifecycle

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Marks Booked and Confirmed appointments whose no-show grace period has elapsed as No-show"

    def add_arguments(self, parser):
        parser.add_argument(
            "--date",
            help="Only sweep appointments on this day (YYYY-MM-DD). Defaults to every day up to today.",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="List the appointments that would be marked without changing anything.",
        )

    def handle(self, *args, **options):
        now = local_now()
        lifecycle = AppointmentLifecycle()
        grace = timedelta(minutes=lifecycle.policy.no_show_grace_minutes)

        candidates = Appointment.objects.filter(
            status__in=[Appointment.Status.BOOKED, Appointment.Status.CONFIRMED],
        ).order_by("appointment_date", "start_time")

        if options["date"]:
            try:
                day = date.fromisoformat(options["date"])
            except ValueError:
                raise CommandError(f"Invalid --date {options['date']!r}; expected YYYY-MM-DD.")
            candidates = candidates.filter(appointment_date=day)
        else:
            candidates = candidates.filter(appointment_date__lte=now.date())

        due = [a for a in candidates if a.scheduled_start + grace <= now]

        if options["dry_run"]:
            for appointment in due:
                self.stdout.write(
                    f"Would mark appointment {appointment.pk} "
                    f"({appointment.appointment_date} {appointment.start_time:%H:%M}) as No-show"
                )
            self.stdout.write(self.style.SUCCESS(f"{len(due)} appointment(s) due."))
            return

        marked = 0
        for appointment in due:
            try:
                result = lifecycle.mark_no_show(appointment.pk, actor="mark_no_shows", now=now)
            except SchedulingError as e:
                logger.warning(
                    "[NO_SHOW_SWEEP] appointment_id=%s skipped: %s", appointment.pk, e.message
                )
                continue

            marked += 1
            for warning in result.warnings:
                logger.warning("[NO_SHOW_SWEEP] appointment_id=%s: %s", appointment.pk, warning)

        logger.info("[NO_SHOW_SWEEP] marked=%s due=%s", marked, len(due))
        self.stdout.write(self.style.SUCCESS(f"Marked {marked} appointment(s) as No-show."))
