from django.core.exceptions import ValidationError
from django.db import models


class BusinessHoliday(models.Model):
    """
    A day the whole business is closed.

    A recurring holiday matches its month/day in every year; a one-time
    holiday matches the exact date only.
    """

    name = models.CharField(max_length=255)
    date = models.DateField()
    is_recurring = models.BooleanField(
        default=False,
        help_text="Repeat every year on the same month and day.",
    )

    class Meta:
        verbose_name = "Business Holiday"
        verbose_name_plural = "Business Holidays"
        ordering = ["date"]

    def __str__(self):
        if self.is_recurring:
            return f"{self.name} (every {self.date:%b %d})"
        return f"{self.name} ({self.date})"


class BusinessException(models.Model):
    """
    A date-scoped partial closure for the whole business.

    Only exceptions with a time range remove availability; an exception
    without times is informational and does not block the day.
    """

    date = models.DateField()
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        verbose_name = "Business Exception"
        verbose_name_plural = "Business Exceptions"
        ordering = ["date", "start_time"]

    def __str__(self):
        if self.start_time and self.end_time:
            return f"Closed {self.date} {self.start_time:%H:%M}-{self.end_time:%H:%M}"
        return f"Note for {self.date}: {self.reason}"

    def clean(self):
        super().clean()
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({"end_time": "End time must be after start time."})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)
