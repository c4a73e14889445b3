"""
Weekly occurrence resolution.

Everything here is pure: callers load templates, holidays and cancellations
from the database (see ``apps.classes.schedule``) and pass them in as plain
values. Walks are always bounded by ``BILLING["MAX_LOOKAHEAD_WEEKS"]``.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Sequence

from django.conf import settings

from apps.common.utils.dates import max_date, min_date

WEEK = timedelta(days=7)


@dataclass(frozen=True)
class TemplateSchedule:
    template_id: int
    day_of_week: int | None
    start_date: date | None = None
    end_date: date | None = None
    level_id: int | None = None


@dataclass(frozen=True)
class HolidayRange:
    start_date: date
    end_date: date
    level_id: int | None = None
    template_id: int | None = None

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass
class Exclusions:
    """Dates on which a template does not run (or is not billed)."""

    holidays: Sequence[HolidayRange] = ()
    cancellations: set[tuple[int, date]] = field(default_factory=set)
    # Dates skipped for every template, e.g. enrolment pause windows.
    blocked: Sequence[tuple[date, date | None]] = ()

    def is_holiday(self, template: TemplateSchedule, day: date) -> bool:
        return any(
            h.covers(day) and holiday_applies_to_template(h, template) for h in self.holidays
        )

    def is_cancelled(self, template: TemplateSchedule, day: date) -> bool:
        return (template.template_id, day) in self.cancellations

    def is_blocked(self, day: date) -> bool:
        return any(start <= day and (end is None or day <= end) for start, end in self.blocked)

    def excludes(self, template: TemplateSchedule, day: date) -> bool:
        return (
            self.is_holiday(template, day)
            or self.is_cancelled(template, day)
            or self.is_blocked(day)
        )


@dataclass(frozen=True, order=True)
class Occurrence:
    date: date
    template_id: int


def holiday_applies_to_template(holiday: HolidayRange, template: TemplateSchedule) -> bool:
    if holiday.level_id is None and holiday.template_id is None:
        return True
    if holiday.template_id is not None and holiday.template_id == template.template_id:
        return True
    if holiday.level_id is not None and holiday.level_id == template.level_id:
        return True
    return False


def max_lookahead_weeks() -> int:
    return settings.BILLING["MAX_LOOKAHEAD_WEEKS"]


def horizon_buffer_weeks() -> int:
    return settings.BILLING["HORIZON_BUFFER_WEEKS"]


def lookahead_cap(start: date) -> date:
    return start + WEEK * max_lookahead_weeks()


def first_weekday_on_or_after(day: date, weekday: int) -> date:
    return day + timedelta(days=(weekday - day.weekday()) % 7)


def list_occurrences(
    template: TemplateSchedule,
    start: date,
    end: date | None = None,
    exclusions: Exclusions | None = None,
    *,
    horizon: date | None = None,
) -> list[date]:
    """
    Dates the template runs on inside ``[start, end]``, ascending.

    The window is narrowed by the template's own start/end dates and by
    ``horizon``. An open window stops at the lookahead cap.
    """
    if template.day_of_week is None:
        return []
    window_start = max_date(start, template.start_date)
    window_end = min_date(end, template.end_date, horizon, lookahead_cap(start))
    if window_end < window_start:
        return []

    dates = []
    current = first_weekday_on_or_after(window_start, template.day_of_week)
    while current <= window_end:
        if exclusions is None or not exclusions.excludes(template, current):
            dates.append(current)
        current += WEEK
    return dates


def list_enrolment_occurrences(
    templates: Iterable[TemplateSchedule],
    start: date,
    end: date | None = None,
    exclusions: Exclusions | None = None,
    *,
    horizon: date | None = None,
) -> list[Occurrence]:
    """Merge the occurrences of several templates into one ascending list."""
    occurrences = []
    for template in templates:
        for day in list_occurrences(template, start, end, exclusions, horizon=horizon):
            occurrences.append(Occurrence(day, template.template_id))
    occurrences.sort()
    return occurrences


def resolve_occurrence_horizon(
    start: date,
    occurrences_needed: int,
    sessions_per_week: int,
    end_date: date | None = None,
    buffer_weeks: int | None = None,
) -> date:
    cadence = max(1, sessions_per_week or 1)
    weeks = max(1, math.ceil(max(occurrences_needed, 1) / cadence))
    if buffer_weeks is None:
        buffer_weeks = horizon_buffer_weeks()
    projected = start + WEEK * (weeks + buffer_weeks)
    return min_date(projected, end_date, lookahead_cap(start))


def collect_occurrences(
    templates: Sequence[TemplateSchedule],
    start: date,
    occurrences_needed: int,
    *,
    sessions_per_week: int = 1,
    end_date: date | None = None,
    exclusions: Exclusions | None = None,
) -> tuple[list[Occurrence], bool]:
    """
    Resolve at least ``occurrences_needed`` occurrences from ``start``.

    The horizon starts from ``resolve_occurrence_horizon`` and grows by the
    buffer until enough occurrences are found, the end date is reached or
    the lookahead cap is hit. The flag is True only when the cap cut the
    walk short.
    """
    if not any(t.day_of_week is not None for t in templates):
        return [], False

    cap = lookahead_cap(start)
    step = WEEK * max(1, horizon_buffer_weeks())
    horizon = resolve_occurrence_horizon(start, occurrences_needed, sessions_per_week, end_date)
    while True:
        occurrences = list_enrolment_occurrences(
            templates, start, end_date, exclusions, horizon=horizon
        )
        if len(occurrences) >= occurrences_needed:
            return occurrences, False
        if end_date is not None and horizon >= end_date:
            return occurrences, False
        if horizon >= cap:
            return occurrences, True
        horizon = min_date(horizon + step, end_date, cap)


def next_occurrence_after(
    templates: Sequence[TemplateSchedule],
    after: date,
    *,
    end_date: date | None = None,
    exclusions: Exclusions | None = None,
) -> Occurrence | None:
    occurrences, _ = collect_occurrences(
        templates, after + timedelta(days=1), 1, end_date=end_date, exclusions=exclusions
    )
    return occurrences[0] if occurrences else None


def count_occurrences_between(
    templates: Sequence[TemplateSchedule],
    after: date,
    through: date,
    exclusions: Exclusions | None = None,
) -> int:
    """Occurrences strictly after ``after`` and on or before ``through``."""
    if through <= after:
        return 0
    return len(
        list_enrolment_occurrences(templates, after + timedelta(days=1), through, exclusions)
    )
