from __future__ import annotations

from datetime import date
from typing import Iterable

from django.db.models import Q

from apps.billing.occurrences import Exclusions, HolidayRange, TemplateSchedule
from apps.classes.models import ClassCancellation, ClassTemplate, Holiday


def to_schedule(template: ClassTemplate) -> TemplateSchedule:
    return TemplateSchedule(
        template_id=template.pk,
        day_of_week=template.day_of_week,
        start_date=template.start_date,
        end_date=template.end_date,
        level_id=template.level_id,
    )


def to_holiday_range(holiday: Holiday) -> HolidayRange:
    return HolidayRange(
        start_date=holiday.start_date,
        end_date=holiday.end_date,
        level_id=holiday.level_id,
        template_id=holiday.template_id,
    )


def holidays_for_templates(templates: Iterable[ClassTemplate]):
    """Holidays that are global or scoped to one of the templates or their levels."""
    templates = list(templates)
    template_ids = [t.pk for t in templates]
    level_ids = {t.level_id for t in templates if t.level_id}
    scope = Q(level__isnull=True, template__isnull=True) | Q(template_id__in=template_ids)
    if level_ids:
        scope |= Q(level_id__in=level_ids)
    return Holiday.objects.filter(scope)


def load_exclusions(
    templates: Iterable[ClassTemplate],
    start: date | None = None,
    end: date | None = None,
    *,
    blocked: Iterable[tuple[date, date | None]] = (),
) -> Exclusions:
    templates = list(templates)
    holidays = holidays_for_templates(templates)
    cancellations = ClassCancellation.objects.filter(template__in=templates)
    if start:
        holidays = holidays.filter(end_date__gte=start)
        cancellations = cancellations.filter(date__gte=start)
    if end:
        holidays = holidays.filter(start_date__lte=end)
        cancellations = cancellations.filter(date__lte=end)
    return Exclusions(
        holidays=[to_holiday_range(h) for h in holidays],
        cancellations=set(cancellations.values_list("template_id", "date")),
        blocked=list(blocked),
    )


def load_holiday_exclusions(
    templates: Iterable[ClassTemplate],
    start: date | None = None,
    end: date | None = None,
) -> Exclusions:
    """Holidays only; cancelled occurrences are still scheduled."""
    exclusions = load_exclusions(templates, start, end)
    exclusions.cancellations = set()
    return exclusions
