from django.contrib import admin, messages

from apps.billing.services import refresh_snapshot

from .models import (
    Enrolment,
    EnrolmentClassAssignment,
    EnrolmentCoverageAudit,
    EnrolmentPause,
    EnrolmentPlan,
    EnrolmentStatusLog,
)


@admin.register(EnrolmentPlan)
class EnrolmentPlanAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "level",
        "billing_type",
        "price_cents",
        "duration_weeks",
        "sessions_per_week",
        "block_class_count",
        "active",
    )
    list_filter = ("billing_type", "level", "active")
    search_fields = ("name",)
    ordering = ("name",)


class EnrolmentClassAssignmentInline(admin.TabularInline):
    model = EnrolmentClassAssignment
    extra = 0
    autocomplete_fields = ("template",)


class EnrolmentPauseInline(admin.TabularInline):
    model = EnrolmentPause
    extra = 0


@admin.register(Enrolment)
class EnrolmentAdmin(admin.ModelAdmin):
    list_display = (
        "student",
        "template",
        "plan",
        "status",
        "start_date",
        "end_date",
        "paid_through_date_computed",
        "next_due_date_computed",
        "credits_balance_cached",
    )
    list_filter = ("status", "plan__billing_type", "template__level")
    search_fields = ("student__first_name", "student__last_name", "student__family__name", "template__name")
    autocomplete_fields = ("student", "template")
    readonly_fields = (
        "paid_through_date_computed",
        "next_due_date_computed",
        "credits_balance_cached",
        "billing_refreshed_at",
        "billing_group_id",
    )
    inlines = [EnrolmentClassAssignmentInline, EnrolmentPauseInline]
    actions = ["refresh_billing"]
    ordering = ("-start_date",)

    @admin.action(description="Refresh billing snapshot")
    def refresh_billing(self, request, queryset):
        for enrolment_id in queryset.values_list("pk", flat=True):
            refresh_snapshot(enrolment_id)
        self.message_user(request, f"Refreshed {queryset.count()} enrolment(s).", messages.SUCCESS)


@admin.register(EnrolmentStatusLog)
class EnrolmentStatusLogAdmin(admin.ModelAdmin):
    list_display = ("enrolment", "old_status", "new_status", "reason", "created_at")
    list_filter = ("new_status", "reason")
    search_fields = ("enrolment__student__first_name", "enrolment__template__name", "note")
    autocomplete_fields = ("enrolment",)
    ordering = ("-created_at",)


@admin.register(EnrolmentCoverageAudit)
class EnrolmentCoverageAuditAdmin(admin.ModelAdmin):
    list_display = (
        "enrolment",
        "reason",
        "previous_paid_through_date",
        "new_paid_through_date",
        "previous_credits",
        "new_credits",
        "actor",
        "created_at",
    )
    list_filter = ("reason",)
    search_fields = ("enrolment__student__first_name", "note")
    ordering = ("-created_at",)
