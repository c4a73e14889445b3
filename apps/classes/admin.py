from django.contrib import admin

from .models import ClassCancellation, ClassTemplate, Holiday, Level
from .services import refresh_for_holiday


@admin.register(Level)
class LevelAdmin(admin.ModelAdmin):
    list_display = ("name", "sort_order")
    search_fields = ("name",)
    ordering = ("sort_order", "name")


@admin.register(ClassTemplate)
class ClassTemplateAdmin(admin.ModelAdmin):
    list_display = (
        "name",
        "level",
        "day_of_week",
        "start_time",
        "start_date",
        "end_date",
        "capacity",
        "active",
    )
    list_filter = ("level", "day_of_week", "active")
    search_fields = ("name", "level__name")
    autocomplete_fields = ("level",)
    ordering = ("day_of_week", "start_time")


@admin.register(Holiday)
class HolidayAdmin(admin.ModelAdmin):
    list_display = ("name", "start_date", "end_date", "level", "template")
    list_filter = ("level",)
    search_fields = ("name", "note")
    autocomplete_fields = ("level", "template")
    ordering = ("-start_date",)

    def save_model(self, request, obj, form, change):
        before = Holiday.objects.filter(pk=obj.pk).first() if change else None
        super().save_model(request, obj, form, change)
        refresh_for_holiday(*[h for h in (before, obj) if h is not None])

    def delete_model(self, request, obj):
        super().delete_model(request, obj)
        refresh_for_holiday(obj)


@admin.register(ClassCancellation)
class ClassCancellationAdmin(admin.ModelAdmin):
    """Read-only: cancellations are created through the API so credits are issued."""

    list_display = ("template", "date", "reason", "created_by", "created_at")
    list_filter = ("template__level",)
    search_fields = ("template__name", "reason")
    ordering = ("-date",)

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
