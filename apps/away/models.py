from django.conf import settings
from django.db import models

from apps.common.models import TimeStampedModel


class AwayScope(models.TextChoices):
    FAMILY = "FAMILY", "Whole family"
    STUDENT = "STUDENT", "Single student"


class AwayPeriodQuerySet(models.QuerySet):
    def live(self):
        return self.filter(deleted_at__isnull=True)


class AwayPeriod(TimeStampedModel):
    family = models.ForeignKey(
        "students.Family", on_delete=models.CASCADE, related_name="away_periods"
    )
    student = models.ForeignKey(
        "students.Student",
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="away_periods",
        help_text="Empty when the whole family is away",
    )
    start_date = models.DateField()
    end_date = models.DateField()
    note = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="away_periods",
    )
    deleted_at = models.DateTimeField(null=True, blank=True)

    objects = AwayPeriodQuerySet.as_manager()

    class Meta:
        ordering = ["-start_date"]
        indexes = [models.Index(fields=["family", "start_date", "end_date"], name="away_family_range_idx")]

    def __str__(self):
        who = self.student or self.family
        return f"{who} away {self.start_date} - {self.end_date}"

    @property
    def scope(self) -> str:
        return AwayScope.STUDENT if self.student_id else AwayScope.FAMILY


class AwayPeriodImpact(models.Model):
    """What an away period did to one enrolment, so it can be reverted exactly."""

    away_period = models.ForeignKey(AwayPeriod, on_delete=models.CASCADE, related_name="impacts")
    enrolment = models.ForeignKey(
        "enrolments.Enrolment", on_delete=models.CASCADE, related_name="away_impacts"
    )
    missed_occurrences = models.PositiveIntegerField(default=0)
    paid_through_delta_days = models.IntegerField(default=0)
    previous_paid_through_date = models.DateField(null=True, blank=True)
    credits_delta = models.IntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["away_period", "enrolment"], name="uniq_away_impact_enrolment"),
        ]

    def __str__(self):
        return f"{self.away_period_id} -> {self.enrolment_id}: {self.missed_occurrences} missed"
