"""
Coverage projection: how far an enrolment's entitlement reaches.

PER_CLASS enrolments walk the credit balance forward over scheduled
occurrences. PER_WEEK enrolments carry an explicit paid-through date and
only need the next scheduled occurrence after it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Sequence

from apps.billing.occurrences import (
    Exclusions,
    HolidayRange,
    Occurrence,
    TemplateSchedule,
    collect_occurrences,
    next_occurrence_after,
)
from apps.common.utils.dates import max_date


@dataclass(frozen=True)
class PaidThroughResult:
    paid_through_date: date | None
    next_due_date: date | None
    covered_occurrences: int
    remaining_credits: int


@dataclass(frozen=True)
class CreditWalk:
    paid_through_date: date | None
    next_due_date: date | None
    covered_occurrences: int
    remaining_credits: int
    horizon_exceeded: bool = False


@dataclass(frozen=True)
class CoverageWindow:
    coverage_start: date | None
    coverage_end: date | None
    occurrences: list[Occurrence] = field(default_factory=list)


@dataclass(frozen=True)
class BillingSnapshot:
    enrolment_id: int
    billing_type: str
    paid_through_date: date | None
    next_payment_due_date: date | None
    remaining_credits: int | None
    credit_balance: int | None
    covered_occurrences: int
    sessions_per_week: int
    as_of: date
    horizon_exceeded: bool = False

    @property
    def is_overdue(self) -> bool:
        if self.credit_balance is not None and self.credit_balance < 0:
            return True
        if self.next_payment_due_date is None:
            return False
        if self.paid_through_date is None:
            return self.next_payment_due_date <= self.as_of
        return self.paid_through_date < self.as_of

    def to_dict(self) -> dict:
        return {
            "enrolment_id": self.enrolment_id,
            "billing_type": self.billing_type,
            "paid_through_date": self.paid_through_date,
            "next_payment_due_date": self.next_payment_due_date,
            "remaining_credits": self.remaining_credits,
            "credit_balance": self.credit_balance,
            "covered_occurrences": self.covered_occurrences,
            "sessions_per_week": self.sessions_per_week,
            "as_of": self.as_of,
            "horizon_exceeded": self.horizon_exceeded,
            "is_overdue": self.is_overdue,
        }


def walk_credits(
    templates: Sequence[TemplateSchedule],
    start: date,
    credits: int,
    *,
    sessions_per_week: int = 1,
    end_date: date | None = None,
    exclusions: Exclusions | None = None,
) -> CreditWalk:
    """
    Spend one credit per occurrence from ``start`` (inclusive).

    With no credits left the paid-through date is None and the next due
    date is the first occurrence of the walk.
    """
    needed = max(credits + max(1, sessions_per_week), 1)
    occurrences, exceeded = collect_occurrences(
        templates,
        start,
        needed,
        sessions_per_week=sessions_per_week,
        end_date=end_date,
        exclusions=exclusions,
    )

    remaining = credits
    paid_through = None
    next_due = None
    covered = 0
    for occurrence in occurrences:
        if remaining <= 0:
            next_due = occurrence.date
            break
        paid_through = occurrence.date
        covered += 1
        remaining -= 1

    return CreditWalk(
        paid_through_date=paid_through,
        next_due_date=next_due,
        covered_occurrences=covered,
        remaining_credits=remaining,
        horizon_exceeded=exceeded and next_due is None,
    )


def _as_holiday(value) -> HolidayRange:
    if isinstance(value, HolidayRange):
        return value
    return HolidayRange(start_date=value, end_date=value)


def calculate_paid_through_date(
    start_date: date,
    credits_to_cover: int,
    day_of_week: int | None,
    holidays: Iterable = (),
    cancellations: Iterable[date] = (),
    end_date: date | None = None,
) -> PaidThroughResult:
    """
    Single-template credit walk from ``start_date``.

    ``holidays`` accepts ``HolidayRange`` values or plain dates; both are
    treated as studio-wide closures.
    """
    template = TemplateSchedule(template_id=0, day_of_week=day_of_week)
    exclusions = Exclusions(
        holidays=[_as_holiday(h) for h in holidays],
        cancellations={(0, d) for d in cancellations},
    )
    walk = walk_credits(
        [template], start_date, credits_to_cover, end_date=end_date, exclusions=exclusions
    )
    return PaidThroughResult(
        paid_through_date=walk.paid_through_date,
        next_due_date=walk.next_due_date,
        covered_occurrences=walk.covered_occurrences,
        remaining_credits=walk.remaining_credits,
    )


def project_weekly(
    templates: Sequence[TemplateSchedule],
    start_date: date,
    paid_through_date: date | None,
    *,
    end_date: date | None = None,
    exclusions: Exclusions | None = None,
) -> tuple[date, date | None]:
    """Returns (paid_through, next_due) for a PER_WEEK enrolment."""
    paid_through = paid_through_date or start_date
    upcoming = next_occurrence_after(
        templates, paid_through, end_date=end_date, exclusions=exclusions
    )
    return paid_through, upcoming.date if upcoming else None


def limit_weekly_templates(
    templates: Sequence[TemplateSchedule], sessions_per_week: int
) -> list[TemplateSchedule]:
    """One template per weekday, earliest weekdays first, at most ``sessions_per_week``."""
    seen = set()
    unique = []
    for template in templates:
        if template.day_of_week is None or template.day_of_week in seen:
            continue
        seen.add(template.day_of_week)
        unique.append(template)
    if not sessions_per_week or len(unique) <= sessions_per_week:
        return unique
    return sorted(unique, key=lambda t: t.day_of_week)[:sessions_per_week]


def resolve_weekly_coverage_window(
    templates: Sequence[TemplateSchedule],
    *,
    enrolment_start: date,
    paid_through_date: date | None,
    duration_weeks: int,
    sessions_per_week: int,
    today: date,
    quantity: int = 1,
    end_date: date | None = None,
    exclusions: Exclusions | None = None,
) -> CoverageWindow:
    """
    The span one weekly purchase buys: starting at the first scheduled day
    after the current paid-through date (or today, if later) and running for
    ``duration_weeks * sessions_per_week * quantity`` occurrences.
    """
    if not duration_weeks or duration_weeks <= 0:
        raise ValueError("Weekly plans require duration_weeks to be greater than zero.")
    cadence = sessions_per_week if sessions_per_week and sessions_per_week > 0 else 1
    entitlement = duration_weeks * cadence * max(1, quantity)
    effective = limit_weekly_templates(templates, cadence)

    baseline = paid_through_date + timedelta(days=1) if paid_through_date else enrolment_start
    start = max_date(today, baseline)
    occurrences, _ = collect_occurrences(
        effective,
        start,
        entitlement,
        sessions_per_week=cadence,
        end_date=end_date,
        exclusions=exclusions,
    )
    if not occurrences:
        return CoverageWindow(coverage_start=None, coverage_end=None)
    covered = occurrences[:entitlement]
    return CoverageWindow(
        coverage_start=covered[0].date,
        coverage_end=covered[-1].date,
        occurrences=covered,
    )
