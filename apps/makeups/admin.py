from django.contrib import admin

from .models import MakeupBooking


@admin.register(MakeupBooking)
class MakeupBookingAdmin(admin.ModelAdmin):
    list_display = ("student", "template", "date", "missed_date", "status", "created_at")
    list_filter = ("status", "template__level")
    search_fields = ("student__first_name", "student__last_name", "template__name")
    autocomplete_fields = ("student", "template")
    ordering = ("-date",)
