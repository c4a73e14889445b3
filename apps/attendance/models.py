from django.conf import settings
from django.db import models

ATTEND_CHOICES = [
    ("PRESENT", "Present"),
    ("LATE", "Late"),
    ("ABSENT", "Absent"),
    ("EXCUSED", "Excused"),
]

ATTENDED_STATUSES = {"PRESENT", "LATE"}


class Attendance(models.Model):
    template = models.ForeignKey(
        "classes.ClassTemplate",
        on_delete=models.CASCADE,
        related_name="attendances",
    )
    date = models.DateField()
    student = models.ForeignKey(
        "students.Student", on_delete=models.CASCADE, related_name="attendances"
    )
    status = models.CharField(max_length=10, choices=ATTEND_CHOICES, default="PRESENT")
    note = models.CharField(max_length=255, blank=True)
    marked_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="marked_attendances",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["template", "date", "student"], name="uniq_attendance_occurrence_student"),
        ]
        indexes = [models.Index(fields=["template", "date"], name="attendance_occurrence_idx")]
        ordering = ["-date", "student__first_name"]

    def __str__(self):
        return f"{self.student} - {self.get_status_display()} ({self.template.name} {self.date})"
