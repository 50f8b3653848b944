from django.core.exceptions import ValidationError
from django.db import models


class Service(models.Model):
    """A bookable service (e.g. Haircut, Consultation) with its allowed durations."""

    name = models.CharField(max_length=100, unique=True)
    allowed_durations = models.JSONField(
        default=list,
        help_text="Ordered list of allowed durations in minutes, e.g. [30, 60].",
    )
    description = models.TextField(blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Service"
        verbose_name_plural = "Services"
        ordering = ["name"]

    def __str__(self):
        durations = "/".join(str(d) for d in self.allowed_durations)
        return f"{self.name} ({durations}min)"

    @property
    def default_duration(self):
        return self.allowed_durations[0] if self.allowed_durations else None

    def allows_duration(self, minutes):
        return minutes in self.allowed_durations

    def clean(self):
        super().clean()
        durations = self.allowed_durations
        if not isinstance(durations, list) or not durations:
            raise ValidationError(
                {"allowed_durations": "At least one duration is required."}
            )
        for minutes in durations:
            if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes <= 0:
                raise ValidationError(
                    {"allowed_durations": f"Durations must be positive integers, got {minutes!r}."}
                )

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Provider(models.Model):
    """
    A person or resource that delivers services and owns a schedule.

    Deactivating a provider hides it from availability queries and blocks
    new bookings, but leaves its past appointments untouched.
    """

    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    services = models.ManyToManyField(
        Service,
        related_name="providers",
        blank=True,
        help_text="Services this provider offers.",
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Provider"
        verbose_name_plural = "Providers"
        ordering = ["name"]

    def __str__(self):
        return self.name

    def offers(self, service):
        service_id = getattr(service, "pk", service)
        return self.services.filter(pk=service_id).exists()


class AvailabilityRule(models.Model):
    """
    One block of open time for a provider on a day of the week.

    Recurring rules apply every week. Non-recurring rules only apply inside
    [effective_from, effective_to]; a missing bound is open on that side.
    Several rules for the same provider/day may overlap and are merged when
    availability is resolved.

    day_of_week uses Python's weekday() convention:
        0 = Monday, 1 = Tuesday, ..., 6 = Sunday
    """

    DAY_CHOICES = [
        (0, "Monday"),
        (1, "Tuesday"),
        (2, "Wednesday"),
        (3, "Thursday"),
        (4, "Friday"),
        (5, "Saturday"),
        (6, "Sunday"),
    ]

    provider = models.ForeignKey(
        Provider,
        on_delete=models.CASCADE,
        related_name="availability_rules",
    )
    day_of_week = models.IntegerField(choices=DAY_CHOICES)
    start_time = models.TimeField()
    end_time = models.TimeField()
    is_recurring = models.BooleanField(default=True)
    effective_from = models.DateField(null=True, blank=True)
    effective_to = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(
        default=True,
        help_text="Temporarily disable this rule without deleting it.",
    )

    class Meta:
        verbose_name = "Availability Rule"
        verbose_name_plural = "Availability Rules"
        ordering = ["provider", "day_of_week", "start_time"]

    def __str__(self):
        day = self.get_day_of_week_display()
        return f"{self.provider.name} - {day} ({self.start_time:%H:%M}-{self.end_time:%H:%M})"

    def applies_on(self, target_date):
        if target_date.weekday() != self.day_of_week:
            return False
        if self.is_recurring:
            return True
        if self.effective_from and target_date < self.effective_from:
            return False
        if self.effective_to and target_date > self.effective_to:
            return False
        return True

    def clean(self):
        super().clean()

        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({"end_time": "End time must be after start time."})

        if self.effective_from and self.effective_to and self.effective_from > self.effective_to:
            raise ValidationError(
                {"effective_to": "Effective end date must not precede the start date."}
            )

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class ProviderException(models.Model):
    """
    A date-scoped blackout for one provider.

    Without times (or with times spanning 00:00-23:59) the whole day is blocked.
    """

    provider = models.ForeignKey(
        Provider,
        on_delete=models.CASCADE,
        related_name="exceptions",
    )
    date = models.DateField()
    start_time = models.TimeField(null=True, blank=True)
    end_time = models.TimeField(null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        verbose_name = "Provider Exception"
        verbose_name_plural = "Provider Exceptions"
        ordering = ["date", "start_time"]

    def __str__(self):
        if self.start_time and self.end_time:
            return f"{self.provider.name} off {self.date} {self.start_time:%H:%M}-{self.end_time:%H:%M}"
        return f"{self.provider.name} off {self.date} (all day)"

    def clean(self):
        super().clean()
        if bool(self.start_time) != bool(self.end_time):
            raise ValidationError("Provide both start and end time, or neither for a full day.")
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise ValidationError({"end_time": "End time must be after start time."})

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)
