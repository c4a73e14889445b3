"""
Date and money arithmetic for adjustments: cancellation credits, class
moves and away periods. Pure functions over plain values.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from django.conf import settings

from apps.billing.occurrences import (
    Exclusions,
    TemplateSchedule,
    WEEK,
    count_occurrences_between,
    first_weekday_on_or_after,
    list_enrolment_occurrences,
    resolve_occurrence_horizon,
)
from apps.common.utils.dates import max_date, min_date


def cancellation_delta_days(day_of_week: int | None, reference: date) -> int:
    """Days from ``reference`` to the next same-weekday occurrence strictly after it."""
    if day_of_week is None:
        return 7
    delta = (day_of_week - reference.weekday()) % 7
    return max(1, delta or 7)


def plan_unit_price_cents(plan) -> float:
    """Price of one class under ``plan``. ``plan`` needs billing_type, price_cents and counts."""
    if plan.billing_type == "PER_WEEK":
        per_week = plan.sessions_per_week if plan.sessions_per_week and plan.sessions_per_week > 0 else 1
        return plan.price_cents / per_week
    block = plan.block_class_count if plan.block_class_count and plan.block_class_count > 0 else 1
    return plan.price_cents / block


def compute_prorated_paid_through(
    effective_date: date,
    old_paid_through: date | None,
    old_plan,
    new_plan,
    destination_templates: Sequence[TemplateSchedule] = (),
) -> date | None:
    """
    Convert the value left on the old plan into days on the new plan.

    Remaining days are scaled by old unit price over new unit price. For a
    PER_CLASS destination the result rolls forward to the next scheduled day.
    """
    if old_paid_through is None:
        return None
    duration_days = max(0, (old_paid_through - effective_date).days)
    if duration_days <= 0:
        return old_paid_through

    old_unit = plan_unit_price_cents(old_plan)
    new_unit = plan_unit_price_cents(new_plan)
    if old_unit <= 0 or new_unit <= 0:
        return old_paid_through

    prorated = effective_date + timedelta(days=math.trunc(duration_days * old_unit / new_unit))

    if new_plan.billing_type == "PER_CLASS":
        weekdays = [t.day_of_week for t in destination_templates if t.day_of_week is not None]
        if weekdays:
            return min(first_weekday_on_or_after(prorated, d) for d in weekdays)
    return prorated


@dataclass(frozen=True)
class MoveAdjustment:
    occurrences: int
    unit_price_cents: float
    amount_cents: int
    is_credit: bool


def round_cents(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_move_adjustment(
    old_paid_through: date | None,
    prorated_paid_through: date | None,
    destination_templates: Sequence[TemplateSchedule],
    new_plan,
    exclusions: Exclusions | None = None,
) -> MoveAdjustment:
    """
    Money owed (or owing back) for the gap between the old and the prorated
    paid-through dates, priced at the destination's unit price.
    """
    unit = plan_unit_price_cents(new_plan)
    if old_paid_through is None or prorated_paid_through is None or old_paid_through == prorated_paid_through:
        return MoveAdjustment(0, unit, 0, False)
    is_credit = prorated_paid_through > old_paid_through
    low, high = sorted((old_paid_through, prorated_paid_through))
    occurrences = count_occurrences_between(destination_templates, low, high, exclusions)
    return MoveAdjustment(
        occurrences=occurrences,
        unit_price_cents=unit,
        amount_cents=round_cents(occurrences * unit),
        is_credit=is_credit,
    )


def sessions_per_week_for(templates: Sequence[TemplateSchedule]) -> int:
    return max(1, sum(1 for t in templates if t.day_of_week is not None))


def count_missed_occurrences(
    templates: Sequence[TemplateSchedule],
    away_start: date,
    away_end: date,
    enrolment_start: date,
    enrolment_end: date | None,
    exclusions: Exclusions | None = None,
) -> int:
    """Scheduled, non-excluded occurrences inside the away range and the enrolment window."""
    start = max_date(away_start, enrolment_start)
    end = min_date(away_end, enrolment_end)
    if end < start:
        return 0
    return len(list_enrolment_occurrences(templates, start, end, exclusions))


def calculate_away_delta_days(
    current_paid_through: date,
    missed_occurrences: int,
    templates: Sequence[TemplateSchedule],
    *,
    enrolment_end: date | None = None,
    exclusions: Exclusions | None = None,
) -> int:
    """
    Days to push a weekly paid-through date so that ``missed_occurrences``
    future classes are added back.

    The walk lands on the Nth non-excluded occurrence after the paid-through
    date, so holidays in the extension window push it further out. The
    horizon grows a bounded number of times.
    """
    if missed_occurrences <= 0:
        return 0
    sessions_per_week = sessions_per_week_for(templates)

    extension_start = current_paid_through + timedelta(days=1)
    if enrolment_end and extension_start > enrolment_end:
        return 0

    horizon = resolve_occurrence_horizon(
        extension_start, missed_occurrences, sessions_per_week, enrolment_end
    )
    future = []
    for _ in range(settings.BILLING["AWAY_HORIZON_ATTEMPTS"]):
        bounded = min_date(horizon, enrolment_end)
        future = list_enrolment_occurrences(
            templates, extension_start, enrolment_end, exclusions, horizon=bounded
        )
        if len(future) >= missed_occurrences:
            break
        if enrolment_end and bounded >= enrolment_end:
            break
        horizon = bounded + WEEK * 4

    target_index = min(missed_occurrences, len(future)) - 1
    if target_index < 0:
        return 0
    return max(0, (future[target_index].date - current_paid_through).days)
