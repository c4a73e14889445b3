from django.db import models

from apps.common.models import TimeStampedModel


class Family(TimeStampedModel):
    name = models.CharField(max_length=255)
    email = models.EmailField(blank=True)
    phone = models.CharField(max_length=30, blank=True)

    class Meta:
        ordering = ["name"]
        verbose_name_plural = "families"

    def __str__(self):
        return self.name


class Student(TimeStampedModel):
    family = models.ForeignKey(Family, on_delete=models.CASCADE, related_name="students")
    first_name = models.CharField(max_length=150)
    last_name = models.CharField(max_length=150, blank=True)
    level = models.ForeignKey(
        "classes.Level",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="students",
    )
    date_of_birth = models.DateField(null=True, blank=True)

    class Meta:
        ordering = ["first_name", "last_name"]

    def __str__(self):
        return f"{self.first_name} {self.last_name}".strip()
