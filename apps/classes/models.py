from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from apps.common.models import TimeStampedModel


class Level(TimeStampedModel):
    name = models.CharField(max_length=100, unique=True)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "name"]

    def __str__(self):
        return self.name


class ClassTemplate(TimeStampedModel):
    """
    A recurring weekly class slot. Every occurrence falls on ``day_of_week``
    between ``start_date`` and ``end_date``. A template without a day has no
    fixed schedule and produces no occurrences.
    """

    class DayOfWeek(models.IntegerChoices):
        MONDAY = 0, "Monday"
        TUESDAY = 1, "Tuesday"
        WEDNESDAY = 2, "Wednesday"
        THURSDAY = 3, "Thursday"
        FRIDAY = 4, "Friday"
        SATURDAY = 5, "Saturday"
        SUNDAY = 6, "Sunday"

    name = models.CharField(max_length=255)
    level = models.ForeignKey(
        Level,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="templates",
    )
    teacher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="class_templates",
    )
    day_of_week = models.IntegerField(choices=DayOfWeek.choices, null=True, blank=True)
    start_time = models.PositiveSmallIntegerField(
        null=True, blank=True, help_text="Minutes since midnight"
    )
    end_time = models.PositiveSmallIntegerField(
        null=True, blank=True, help_text="Minutes since midnight"
    )
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    capacity = models.PositiveIntegerField(default=12)
    active = models.BooleanField(default=True)

    class Meta:
        ordering = ["day_of_week", "start_time", "name"]
        indexes = [
            models.Index(fields=["level"], name="classtemplate_level_idx"),
            models.Index(fields=["day_of_week"], name="classtemplate_day_idx"),
        ]

    def __str__(self):
        day = self.get_day_of_week_display() if self.day_of_week is not None else "Unscheduled"
        return f"{self.name} ({day})"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "End date must be on or after the start date."})
        if self.start_time is not None and self.end_time is not None and self.end_time <= self.start_time:
            raise ValidationError({"end_time": "End time must be after the start time."})


class Holiday(TimeStampedModel):
    """Closure days. With neither level nor template set it closes the whole studio."""

    name = models.CharField(max_length=255)
    start_date = models.DateField()
    end_date = models.DateField()
    level = models.ForeignKey(
        Level,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="holidays",
    )
    template = models.ForeignKey(
        ClassTemplate,
        null=True,
        blank=True,
        on_delete=models.CASCADE,
        related_name="holidays",
    )
    note = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["start_date"]
        indexes = [models.Index(fields=["start_date", "end_date"], name="holiday_range_idx")]

    def __str__(self):
        return f"{self.name} {self.start_date} - {self.end_date}"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "End date must be on or after the start date."})


class ClassCancellation(models.Model):
    template = models.ForeignKey(
        ClassTemplate, on_delete=models.CASCADE, related_name="cancellations"
    )
    date = models.DateField()
    reason = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="class_cancellations",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-date"]
        constraints = [
            models.UniqueConstraint(fields=["template", "date"], name="uniq_cancellation_template_date"),
        ]

    def __str__(self):
        return f"{self.template} cancelled on {self.date}"
