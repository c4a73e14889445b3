from django.contrib import admin
from .models import Family, Student


class StudentInline(admin.TabularInline):
    model = Student
    extra = 0
    fields = ("first_name", "last_name", "level", "date_of_birth")


@admin.register(Family)
class FamilyAdmin(admin.ModelAdmin):
    list_display = ("name", "email", "phone", "created_at")
    search_fields = ("name", "email", "phone")
    inlines = [StudentInline]
    ordering = ("name",)


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ("first_name", "last_name", "family", "level")
    list_filter = ("level",)
    search_fields = ("first_name", "last_name", "family__name")
    autocomplete_fields = ("family",)
    ordering = ("first_name", "last_name")

    def get_queryset(self, request):
        return super().get_queryset(request).select_related("family", "level")
