from django.contrib import admin

from .models import AwayPeriod, AwayPeriodImpact


class AwayPeriodImpactInline(admin.TabularInline):
    model = AwayPeriodImpact
    extra = 0
    readonly_fields = ("enrolment", "missed_occurrences", "paid_through_delta_days", "credits_delta")
    can_delete = False


@admin.register(AwayPeriod)
class AwayPeriodAdmin(admin.ModelAdmin):
    """Impacts are applied by the away API; the admin only browses them."""

    list_display = ("family", "student", "start_date", "end_date", "deleted_at", "created_by")
    list_filter = ("deleted_at",)
    search_fields = ("family__name", "student__first_name", "note")
    inlines = [AwayPeriodImpactInline]
    ordering = ("-start_date",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
