from django.contrib import admin

from apps.billing.models import (
    EnrolmentAdjustment,
    EnrolmentCreditEvent,
    Invoice,
    InvoiceLineItem,
    Payment,
)


@admin.register(EnrolmentCreditEvent)
class EnrolmentCreditEventAdmin(admin.ModelAdmin):
    list_display = ("enrolment", "event_type", "credits_delta", "occurred_on", "template", "note")
    list_filter = ("event_type",)
    search_fields = ("enrolment__student__first_name", "enrolment__student__last_name", "note")
    autocomplete_fields = ("enrolment",)
    ordering = ("-occurred_on", "-id")

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(EnrolmentAdjustment)
class EnrolmentAdjustmentAdmin(admin.ModelAdmin):
    list_display = (
        "enrolment",
        "adjustment_type",
        "template",
        "date",
        "credits_delta",
        "paid_through_delta_days",
        "created_by",
    )
    list_filter = ("adjustment_type",)
    search_fields = ("enrolment__student__first_name", "template__name", "note")
    ordering = ("-date",)


class InvoiceLineItemInline(admin.TabularInline):
    model = InvoiceLineItem
    extra = 0


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    list_display = ("id", "family", "enrolment", "status", "amount_cents", "amount_paid_cents", "due_date", "paid_at")
    list_filter = ("status",)
    search_fields = ("family__name", "note")
    autocomplete_fields = ("family", "enrolment")
    inlines = [InvoiceLineItemInline]
    ordering = ("-created_at",)


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("family", "invoice", "amount_cents", "method", "paid_at")
    list_filter = ("method",)
    search_fields = ("family__name", "note")
    ordering = ("-paid_at",)
