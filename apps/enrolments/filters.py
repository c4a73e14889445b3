from django.db.models import Q
from django_filters import rest_framework as filters

from apps.common.utils.dates import studio_today
from apps.enrolments.models import BillingType, Enrolment, EnrolmentStatus


class EnrolmentFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=EnrolmentStatus.choices)
    billing_type = filters.ChoiceFilter(field_name="plan__billing_type", choices=BillingType.choices)
    template = filters.NumberFilter(method="filter_template")
    family = filters.NumberFilter(field_name="student__family_id")
    student = filters.CharFilter(method="filter_student")
    paid_through = filters.DateFromToRangeFilter(field_name="paid_through_date_computed")
    next_due = filters.DateFromToRangeFilter(field_name="next_due_date_computed")
    overdue = filters.BooleanFilter(method="filter_overdue")

    class Meta:
        model = Enrolment
        fields = ["status", "billing_type", "plan", "template", "family", "student"]

    def filter_template(self, queryset, name, value):
        if value is None:
            return queryset
        return queryset.filter(Q(template_id=value) | Q(class_assignments__template_id=value)).distinct()

    def filter_student(self, queryset, name, value):
        if not value:
            return queryset
        return queryset.filter(
            Q(student__first_name__icontains=value)
            | Q(student__last_name__icontains=value)
            | Q(student__family__name__icontains=value)
        )

    def filter_overdue(self, queryset, name, value):
        if value is None:
            return queryset
        today = studio_today()
        overdue = Q(credits_balance_cached__lt=0) | Q(
            paid_through_date_computed__lt=today, next_due_date_computed__isnull=False
        )
        return queryset.filter(overdue) if value else queryset.exclude(overdue)
