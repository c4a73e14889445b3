from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.common.models import TimeStampedModel


class CreditEventType(models.TextChoices):
    PURCHASE = "PURCHASE", "Purchase"
    CONSUME = "CONSUME", "Consume"
    CANCELLATION_CREDIT = "CANCELLATION_CREDIT", "Cancellation credit"
    MANUAL_ADJUST = "MANUAL_ADJUST", "Manual adjust"


class EnrolmentCreditEvent(models.Model):
    """
    Append-only credit ledger for PER_CLASS enrolments. The balance on any
    day is the sum of ``credits_delta`` for events on or before that day.
    """

    enrolment = models.ForeignKey(
        "enrolments.Enrolment",
        on_delete=models.CASCADE,
        related_name="credit_events",
    )
    template = models.ForeignKey(
        "classes.ClassTemplate",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="credit_events",
    )
    event_type = models.CharField(max_length=30, choices=CreditEventType.choices)
    credits_delta = models.IntegerField(
        help_text="Positive for purchase/credit, negative for consume/adjust down",
    )
    occurred_on = models.DateField()
    invoice = models.ForeignKey(
        "billing.Invoice",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="credit_events",
    )
    attendance = models.ForeignKey(
        "attendance.Attendance",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="credit_events",
    )
    adjustment = models.ForeignKey(
        "billing.EnrolmentAdjustment",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="credit_events",
    )
    away_impact = models.ForeignKey(
        "away.AwayPeriodImpact",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="credit_events",
    )
    note = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ["occurred_on", "id"]
        indexes = [models.Index(fields=["enrolment", "occurred_on"], name="credit_event_balance_idx")]
        constraints = [
            models.UniqueConstraint(
                fields=["enrolment", "template", "occurred_on"],
                condition=Q(event_type="CONSUME"),
                name="uniq_consume_per_occurrence",
            ),
        ]

    def __str__(self):
        return f"{self.event_type} {self.credits_delta:+d} for {self.enrolment_id} on {self.occurred_on}"


class AdjustmentType(models.TextChoices):
    CANCELLATION_CREDIT = "CANCELLATION_CREDIT", "Cancellation credit"


class EnrolmentAdjustment(models.Model):
    """
    Compensation granted to one enrolment for one cancelled occurrence.
    Stores the exact delta applied so that reverting restores the prior state.
    """

    enrolment = models.ForeignKey(
        "enrolments.Enrolment",
        on_delete=models.CASCADE,
        related_name="adjustments",
    )
    template = models.ForeignKey(
        "classes.ClassTemplate",
        on_delete=models.CASCADE,
        related_name="enrolment_adjustments",
    )
    date = models.DateField()
    adjustment_type = models.CharField(
        max_length=30,
        choices=AdjustmentType.choices,
        default=AdjustmentType.CANCELLATION_CREDIT,
    )
    credits_delta = models.IntegerField(null=True, blank=True)
    paid_through_delta_days = models.IntegerField(null=True, blank=True)
    # Explicit paid-through date before the shift; null when it was unset.
    previous_paid_through_date = models.DateField(null=True, blank=True)
    note = models.CharField(max_length=255, blank=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="enrolment_adjustments",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-date"]
        constraints = [
            models.UniqueConstraint(
                fields=["enrolment", "template", "date", "adjustment_type"],
                name="uniq_adjustment_per_occurrence",
            ),
        ]

    def __str__(self):
        return f"{self.adjustment_type} {self.enrolment_id} {self.date}"


class InvoiceStatus(models.TextChoices):
    DRAFT = "DRAFT", "Draft"
    SENT = "SENT", "Sent"
    PAID = "PAID", "Paid"
    VOID = "VOID", "Void"


class Invoice(TimeStampedModel):
    family = models.ForeignKey(
        "students.Family", on_delete=models.PROTECT, related_name="invoices"
    )
    enrolment = models.ForeignKey(
        "enrolments.Enrolment",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="invoices",
    )
    status = models.CharField(max_length=10, choices=InvoiceStatus.choices, default=InvoiceStatus.DRAFT)
    amount_cents = models.IntegerField(default=0, help_text="Negative for credit invoices")
    amount_paid_cents = models.IntegerField(default=0)
    issued_at = models.DateTimeField(null=True, blank=True)
    due_date = models.DateField(null=True, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)
    coverage_start = models.DateField(null=True, blank=True)
    coverage_end = models.DateField(null=True, blank=True)
    credits_purchased = models.IntegerField(null=True, blank=True)
    entitlements_applied_at = models.DateTimeField(null=True, blank=True)
    note = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return f"Invoice #{self.pk} {self.status} {self.amount_cents}c"

    @property
    def balance_cents(self) -> int:
        return self.amount_cents - self.amount_paid_cents


class LineItemKind(models.TextChoices):
    ENROLMENT = "ENROLMENT", "Enrolment"
    CLASS_CHANGE = "CLASS_CHANGE", "Class change"
    CREDIT = "CREDIT", "Credit"
    OTHER = "OTHER", "Other"


class InvoiceLineItem(models.Model):
    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="line_items")
    kind = models.CharField(max_length=20, choices=LineItemKind.choices, default=LineItemKind.ENROLMENT)
    description = models.CharField(max_length=255)
    quantity = models.PositiveIntegerField(default=1)
    unit_price_cents = models.IntegerField(default=0)
    amount_cents = models.IntegerField(default=0)

    class Meta:
        ordering = ["id"]

    def __str__(self):
        return f"{self.description} x{self.quantity}"


class PaymentMethod(models.TextChoices):
    CASH = "CASH", "Cash"
    CARD = "CARD", "Card"
    BANK_TRANSFER = "BANK_TRANSFER", "Bank transfer"
    CREDIT = "CREDIT", "Account credit"


class Payment(TimeStampedModel):
    family = models.ForeignKey(
        "students.Family", on_delete=models.PROTECT, related_name="payments"
    )
    invoice = models.ForeignKey(
        Invoice,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="payments",
    )
    amount_cents = models.IntegerField()
    method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.CASH)
    paid_at = models.DateTimeField(default=timezone.now)
    note = models.CharField(max_length=255, blank=True)

    class Meta:
        ordering = ["-paid_at"]

    def __str__(self):
        return f"Payment {self.amount_cents}c ({self.method}) for {self.family_id}"
