from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models

from apps.common.models import TimeStampedModel


class BillingType(models.TextChoices):
    PER_WEEK = "PER_WEEK", "Per week"
    PER_CLASS = "PER_CLASS", "Per class"


class EnrolmentStatus(models.TextChoices):
    ACTIVE = "ACTIVE", "Active"
    PAUSED = "PAUSED", "Paused"
    CHANGEOVER = "CHANGEOVER", "Changeover"
    CANCELLED = "CANCELLED", "Cancelled"


class EnrolmentPlan(TimeStampedModel):
    name = models.CharField(max_length=255)
    level = models.ForeignKey(
        "classes.Level",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="plans",
    )
    billing_type = models.CharField(max_length=20, choices=BillingType.choices)
    price_cents = models.PositiveIntegerField(default=0)
    duration_weeks = models.PositiveIntegerField(
        null=True, blank=True, help_text="Weeks covered by one PER_WEEK purchase"
    )
    sessions_per_week = models.PositiveSmallIntegerField(default=1)
    block_class_count = models.PositiveIntegerField(
        null=True, blank=True, help_text="Classes covered by one PER_CLASS purchase"
    )
    active = models.BooleanField(default=True)

    BILLING_FIELDS = (
        "billing_type",
        "price_cents",
        "duration_weeks",
        "sessions_per_week",
        "block_class_count",
    )

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.get_billing_type_display()})"

    @property
    def cadence(self) -> int:
        return max(1, self.sessions_per_week or 1)

    @property
    def is_per_class(self) -> bool:
        return self.billing_type == BillingType.PER_CLASS

    def clean(self):
        if self.billing_type == BillingType.PER_WEEK and not self.duration_weeks:
            raise ValidationError({"duration_weeks": "Weekly plans need a duration in weeks."})
        if self.billing_type == BillingType.PER_CLASS and not self.block_class_count:
            raise ValidationError({"block_class_count": "Per-class plans need a positive class count."})
        changed = self.changed_billing_fields()
        if changed and self.is_invoiced():
            raise ValidationError(
                {field: "Cannot change billing terms of a plan that has been invoiced." for field in changed}
            )

    def changed_billing_fields(self) -> list[str]:
        if not self.pk:
            return []
        stored = EnrolmentPlan.objects.filter(pk=self.pk).values(*self.BILLING_FIELDS).first()
        if stored is None:
            return []
        return [field for field in self.BILLING_FIELDS if stored[field] != getattr(self, field)]

    def is_invoiced(self) -> bool:
        from apps.billing.models import Invoice

        return Invoice.objects.filter(enrolment__plan=self).exists()


class Enrolment(TimeStampedModel):
    student = models.ForeignKey(
        "students.Student", on_delete=models.CASCADE, related_name="enrolments"
    )
    plan = models.ForeignKey(EnrolmentPlan, on_delete=models.PROTECT, related_name="enrolments")
    template = models.ForeignKey(
        "classes.ClassTemplate", on_delete=models.PROTECT, related_name="enrolments"
    )
    templates = models.ManyToManyField(
        "classes.ClassTemplate",
        through="EnrolmentClassAssignment",
        related_name="assigned_enrolments",
        blank=True,
    )
    status = models.CharField(
        max_length=20,
        choices=EnrolmentStatus.choices,
        default=EnrolmentStatus.ACTIVE,
    )
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    paid_through_date = models.DateField(
        null=True, blank=True, help_text="Explicit paid-through date (authoritative when set)"
    )
    paid_through_date_computed = models.DateField(null=True, blank=True, editable=False)
    next_due_date_computed = models.DateField(null=True, blank=True, editable=False)
    credits_balance_cached = models.IntegerField(null=True, blank=True, editable=False)
    billing_refreshed_at = models.DateTimeField(null=True, blank=True, editable=False)
    billing_group_id = models.BigIntegerField(
        null=True, blank=True, help_text="Shared by enrolments chained through class moves"
    )
    cancelled_at = models.DateTimeField(null=True, blank=True)
    note = models.CharField(max_length=255, blank=True)

    BILLABLE_STATUSES = (EnrolmentStatus.ACTIVE, EnrolmentStatus.CHANGEOVER)

    class Meta:
        ordering = ["-start_date", "-id"]
        indexes = [
            models.Index(fields=["student"], name="enrolment_student_idx"),
            models.Index(fields=["template"], name="enrolment_template_idx"),
            models.Index(fields=["status"], name="enrolment_status_idx"),
        ]

    def __str__(self):
        return f"{self.student} - {self.template.name}"

    def clean(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "End date must be on or after the start date."})

    @property
    def billing_type(self) -> str:
        return self.plan.billing_type

    @property
    def is_billable(self) -> bool:
        return self.status in self.BILLABLE_STATUSES

    def assigned_templates(self):
        """The primary template followed by any additional assigned templates."""
        templates = [self.template]
        for assignment in self.class_assignments.select_related("template"):
            if assignment.template_id != self.template_id:
                templates.append(assignment.template)
        return templates


class EnrolmentClassAssignment(models.Model):
    enrolment = models.ForeignKey(
        Enrolment, on_delete=models.CASCADE, related_name="class_assignments"
    )
    template = models.ForeignKey(
        "classes.ClassTemplate", on_delete=models.CASCADE, related_name="class_assignments"
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["enrolment", "template"], name="uniq_enrolment_template_assignment"),
        ]

    def __str__(self):
        return f"{self.enrolment_id} -> {self.template_id}"


class EnrolmentStatusLog(models.Model):
    enrolment = models.ForeignKey(
        Enrolment, on_delete=models.CASCADE, related_name="status_logs"
    )
    old_status = models.CharField(max_length=20, blank=True)
    new_status = models.CharField(max_length=20)
    reason = models.CharField(max_length=50, blank=True)
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.enrolment_id}: {self.old_status} -> {self.new_status} ({self.reason})"


class EnrolmentPause(models.Model):
    """Days inside a pause window are neither scheduled nor consumed."""

    enrolment = models.ForeignKey(Enrolment, on_delete=models.CASCADE, related_name="pauses")
    start_date = models.DateField()
    end_date = models.DateField(null=True, blank=True)
    reason = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["start_date"]

    def __str__(self):
        return f"{self.enrolment_id} paused {self.start_date} - {self.end_date or 'open'}"


class CoverageAuditReason(models.TextChoices):
    PAIDTHROUGH_MANUAL_EDIT = "PAIDTHROUGH_MANUAL_EDIT", "Manual paid-through edit"
    CANCELLATION_CREDIT = "CANCELLATION_CREDIT", "Cancellation credit"
    CANCELLATION_REVERSAL = "CANCELLATION_REVERSAL", "Cancellation reversal"
    AWAY_PERIOD = "AWAY_PERIOD", "Away period"
    AWAY_PERIOD_REVERSAL = "AWAY_PERIOD_REVERSAL", "Away period reversal"
    CLASS_MOVE = "CLASS_MOVE", "Class move"
    INVOICE_APPLIED = "INVOICE_APPLIED", "Invoice applied"


class EnrolmentCoverageAudit(models.Model):
    enrolment = models.ForeignKey(
        Enrolment, on_delete=models.CASCADE, related_name="coverage_audits"
    )
    reason = models.CharField(max_length=40, choices=CoverageAuditReason.choices)
    previous_paid_through_date = models.DateField(null=True, blank=True)
    new_paid_through_date = models.DateField(null=True, blank=True)
    previous_credits = models.IntegerField(null=True, blank=True)
    new_credits = models.IntegerField(null=True, blank=True)
    note = models.CharField(max_length=255, blank=True)
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="coverage_audits",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"{self.enrolment_id} {self.reason}: {self.previous_paid_through_date} -> {self.new_paid_through_date}"
