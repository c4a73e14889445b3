from django.conf import settings
from django.db import models
from django.db.models import Q


class MakeupStatus(models.TextChoices):
    BOOKED = "BOOKED", "Booked"
    ATTENDED = "ATTENDED", "Attended"
    CANCELLED = "CANCELLED", "Cancelled"


class MakeupBooking(models.Model):
    """A student taking a spare seat in an occurrence of another class."""

    student = models.ForeignKey(
        "students.Student", on_delete=models.CASCADE, related_name="makeup_bookings"
    )
    enrolment = models.ForeignKey(
        "enrolments.Enrolment",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="makeup_bookings",
    )
    template = models.ForeignKey(
        "classes.ClassTemplate", on_delete=models.CASCADE, related_name="makeup_bookings"
    )
    date = models.DateField()
    missed_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=10, choices=MakeupStatus.choices, default=MakeupStatus.BOOKED)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="makeup_bookings",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-date"]
        constraints = [
            models.UniqueConstraint(
                fields=["student", "template", "date"],
                condition=Q(status="BOOKED"),
                name="uniq_active_makeup_booking",
            ),
        ]

    def __str__(self):
        return f"{self.student} makeup in {self.template.name} on {self.date}"
