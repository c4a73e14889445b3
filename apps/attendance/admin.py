from django.contrib import admin
from .models import Attendance


@admin.register(Attendance)
class AttendanceAdmin(admin.ModelAdmin):
    list_display = ("template", "date", "student", "status", "note")
    list_filter = ("status", "template__level")
    search_fields = (
        "student__first_name",
        "student__last_name",
        "template__name",
    )
    date_hierarchy = "date"
    ordering = ("-date",)
    raw_id_fields = ("template", "student", "marked_by")

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("template", "student")
