from datetime import datetime, timedelta

from django.core.exceptions import ValidationError
from django.db import models

from clients.models import Client
from providers.models import Provider, Service


class Appointment(models.Model):
    """Core appointment booking record."""

    class Status(models.TextChoices):
        BOOKED = "BOOKED", "Booked"
        CONFIRMED = "CONFIRMED", "Confirmed"
        CHECKED_IN = "CHECKED_IN", "Checked-in"
        COMPLETED = "COMPLETED", "Completed"
        NO_SHOW = "NO_SHOW", "No-show"
        CANCELLED = "CANCELLED", "Cancelled"
        RESCHEDULED = "RESCHEDULED", "Rescheduled"

    client = models.ForeignKey(Client, on_delete=models.PROTECT, related_name="appointments")
    provider = models.ForeignKey(Provider, on_delete=models.PROTECT, related_name="appointments")
    service = models.ForeignKey(Service, on_delete=models.PROTECT, related_name="appointments")
    appointment_date = models.DateField()
    start_time = models.TimeField()
    duration_minutes = models.PositiveIntegerField()
    end_time = models.TimeField(editable=False, help_text="Derived: start_time + duration_minutes.")
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.BOOKED)
    notes = models.TextField(blank=True)
    external_calendar_ref = models.CharField(
        max_length=255,
        blank=True,
        help_text="Event id in the synchronized external calendar, if any.",
    )
    rescheduled_from = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="replacements",
        help_text="The appointment this one replaced when it was rescheduled.",
    )
    checked_in_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    completion_notes = models.TextField(blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    cancellation_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-appointment_date", "-start_time"]
        verbose_name = "Appointment"
        verbose_name_plural = "Appointments"
        indexes = [
            models.Index(fields=["provider", "appointment_date"], name="appt_provider_date_idx"),
        ]

    def __str__(self):
        return (
            f"{self.client.name} with {self.provider.name} on "
            f"{self.appointment_date} {self.start_time:%H:%M} [{self.status}]"
        )

    @property
    def scheduled_start(self):
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def scheduled_end(self):
        return self.scheduled_start + timedelta(minutes=self.duration_minutes)

    def compute_end_time(self):
        end = self.scheduled_end
        if end.date() != self.appointment_date:
            raise ValidationError("Appointment must end on the same day it starts.")
        return end.time()

    def save(self, *args, **kwargs):
        self.end_time = self.compute_end_time()
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "end_time" not in update_fields:
            kwargs["update_fields"] = list(update_fields) + ["end_time"]
        super().save(*args, **kwargs)


class ActivityLogEntry(models.Model):
    """
    Append-only audit record. One row per meaningful mutation.

    Rows are never updated or deleted once written.
    """

    class Action(models.TextChoices):
        BOOKED = "BOOKED", "Booked"
        RESCHEDULED = "RESCHEDULED", "Rescheduled"
        STATUS_CHANGED = "STATUS_CHANGED", "Status changed"
        CALENDAR_SYNC = "CALENDAR_SYNC", "Calendar sync"

    appointment = models.ForeignKey(
        Appointment,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="activity",
    )
    actor = models.CharField(max_length=255, default="system")
    action = models.CharField(max_length=20, choices=Action.choices)
    old_value = models.CharField(max_length=255, blank=True)
    new_value = models.CharField(max_length=255, blank=True)
    note = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at", "id"]
        verbose_name = "Activity Log Entry"
        verbose_name_plural = "Activity Log"

    def __str__(self):
        return f"[{self.action}] {self.old_value} -> {self.new_value} by {self.actor}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Activity log entries are append-only.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Activity log entries cannot be deleted.")
