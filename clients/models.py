from django.db import models


class Client(models.Model):
    """
    A person who books appointments.

    Visit dates and the no-show counter are maintained by the appointment
    lifecycle, not edited by hand.
    """

    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    first_visit_date = models.DateField(null=True, blank=True)
    last_visit_date = models.DateField(null=True, blank=True)
    no_show_count = models.PositiveIntegerField(
        default=0,
        help_text="Incremented each time an appointment is marked No-show.",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = "Client"
        verbose_name_plural = "Clients"
        ordering = ["last_name", "first_name"]

    def __str__(self):
        return self.name

    @property
    def name(self):
        return f"{self.first_name} {self.last_name}".strip()
