"""
Away periods: a family (or one student) is away for a date range and the
classes they miss are given back, either as a later paid-through date
(PER_WEEK) or as credits (PER_CLASS). Every change is stored on an
``AwayPeriodImpact`` row so editing or deleting the period reverses it
exactly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from django.db.models import Q
from django.utils import timezone

from apps.away.models import AwayPeriod, AwayPeriodImpact, AwayScope
from apps.billing.ledger import append_event, delete_events_for_away_impact, pause_windows
from apps.billing.models import CreditEventType
from apps.billing.proration import calculate_away_delta_days, count_missed_occurrences
from apps.billing.services import (
    lock_enrolment,
    record_coverage_audit,
    refresh_snapshot,
    shift_paid_through_back,
)
from apps.classes.schedule import load_exclusions, to_schedule
from apps.common.db import retry_on_conflict, serializable_atomic
from apps.common.exceptions import DomainError, InvalidInput, NotFound
from apps.common.results import ActionResult
from apps.common.utils.dates import max_date, min_date, studio_today, to_studio_date
from apps.enrolments.models import BillingType, CoverageAuditReason, Enrolment
from apps.students.models import Family, Student

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AwayInput:
    family_id: int
    student_id: int | None
    start_date: date
    end_date: date
    note: str


def normalize_away_input(*, family_id, scope, student_id=None, start_date, end_date, note="") -> AwayInput:
    if scope not in AwayScope.values:
        raise InvalidInput(f"Unknown away scope {scope!r}")
    if scope == AwayScope.STUDENT and not student_id:
        raise InvalidInput("Select a student for a student-specific away period.")
    start = to_studio_date(start_date)
    end = to_studio_date(end_date)
    if start is None or end is None:
        raise InvalidInput("Away periods need a start and an end date.")
    if start > end:
        raise InvalidInput("End date must be on or after start date.")
    return AwayInput(
        family_id=int(family_id),
        student_id=int(student_id) if scope == AwayScope.STUDENT else None,
        start_date=start,
        end_date=end,
        note=(note or "").strip()[:255],
    )


def ensure_scope_references(data: AwayInput):
    if not Family.objects.filter(pk=data.family_id).exists():
        raise NotFound("Family not found.")
    if data.student_id is None:
        return
    if not Student.objects.filter(pk=data.student_id, family_id=data.family_id).exists():
        raise InvalidInput("Selected student does not belong to this family.")


def assert_no_overlap(data: AwayInput, *, exclude_id=None):
    qs = AwayPeriod.objects.live().filter(
        family_id=data.family_id,
        start_date__lte=data.end_date,
        end_date__gte=data.start_date,
    )
    if exclude_id:
        qs = qs.exclude(pk=exclude_id)
    if data.student_id:
        qs = qs.filter(Q(student__isnull=True) | Q(student_id=data.student_id))
    if not qs.exists():
        return
    if data.student_id is None:
        raise InvalidInput("This date range overlaps an existing away period for this family.")
    raise InvalidInput(
        "This date range overlaps an existing family away period or another away period for this student."
    )


def impacted_enrolment_ids(data: AwayInput) -> list[int]:
    qs = Enrolment.objects.filter(
        status__in=Enrolment.BILLABLE_STATUSES,
        start_date__lte=data.end_date,
        student__family_id=data.family_id,
    ).filter(Q(end_date__isnull=True) | Q(end_date__gte=data.start_date))
    if data.student_id:
        qs = qs.filter(student_id=data.student_id)
    return list(qs.order_by("student_id", "pk").values_list("pk", flat=True))


def _apply_to_enrolment(away: AwayPeriod, enrolment: Enrolment, actor=None) -> AwayPeriodImpact | None:
    templates = enrolment.assigned_templates()
    schedules = [to_schedule(t) for t in templates]
    range_start = max_date(away.start_date, enrolment.start_date)
    range_end = min_date(away.end_date, enrolment.end_date)
    if range_end < range_start:
        return None

    blocked = pause_windows(enrolment)
    missed_exclusions = load_exclusions(templates, range_start, range_end, blocked=blocked)
    missed = count_missed_occurrences(
        schedules, away.start_date, away.end_date, enrolment.start_date, enrolment.end_date, missed_exclusions
    )
    if missed <= 0:
        return None

    if enrolment.plan.billing_type == BillingType.PER_CLASS:
        impact = AwayPeriodImpact.objects.create(
            away_period=away, enrolment=enrolment, missed_occurrences=missed, credits_delta=missed
        )
        previous_credits = enrolment.credits_balance_cached
        balance = append_event(
            enrolment,
            CreditEventType.MANUAL_ADJUST,
            missed,
            studio_today(),
            away_impact=impact,
            note=f"Away {away.start_date} - {away.end_date}",
        )
        record_coverage_audit(
            enrolment,
            CoverageAuditReason.AWAY_PERIOD,
            previous_paid_through=enrolment.paid_through_date_computed,
            previous_credits=previous_credits,
            new_credits=balance,
            actor=actor,
            note=f"{missed} class(es) missed",
        )
        return impact

    base = enrolment.paid_through_date or enrolment.start_date
    extension_start = base + timedelta(days=1)
    exclusions = load_exclusions(
        templates, min(range_start, extension_start), enrolment.end_date, blocked=blocked
    )
    delta_days = calculate_away_delta_days(
        base, missed, schedules, enrolment_end=enrolment.end_date, exclusions=exclusions
    )
    if delta_days <= 0:
        return None
    impact = AwayPeriodImpact.objects.create(
        away_period=away,
        enrolment=enrolment,
        missed_occurrences=missed,
        paid_through_delta_days=delta_days,
        previous_paid_through_date=enrolment.paid_through_date,
    )
    enrolment.paid_through_date = base + timedelta(days=delta_days)
    enrolment.save(update_fields=["paid_through_date", "updated_at"])
    record_coverage_audit(
        enrolment,
        CoverageAuditReason.AWAY_PERIOD,
        previous_paid_through=base,
        new_paid_through=enrolment.paid_through_date,
        actor=actor,
        note=f"{missed} class(es) missed",
    )
    return impact


def apply_away_period_impacts(away: AwayPeriod, actor=None) -> list[AwayPeriodImpact]:
    data = AwayInput(away.family_id, away.student_id, away.start_date, away.end_date, away.note)
    impacts = []
    for enrolment_id in impacted_enrolment_ids(data):
        enrolment = lock_enrolment(enrolment_id)
        impact = _apply_to_enrolment(away, enrolment, actor=actor)
        if impact is not None:
            impacts.append(impact)
        refresh_snapshot(enrolment.pk)
    return impacts


def revert_away_period_impacts(away: AwayPeriod, actor=None) -> int:
    """Undo every stored impact of ``away`` and delete the impact rows."""
    reverted = 0
    for impact in away.impacts.order_by("enrolment_id"):
        enrolment = lock_enrolment(impact.enrolment_id)
        if impact.paid_through_delta_days and enrolment.paid_through_date:
            previous = enrolment.paid_through_date
            shift_paid_through_back(enrolment, impact.paid_through_delta_days, impact.previous_paid_through_date)
            enrolment.save(update_fields=["paid_through_date", "updated_at"])
            record_coverage_audit(
                enrolment,
                CoverageAuditReason.AWAY_PERIOD_REVERSAL,
                previous_paid_through=previous,
                new_paid_through=enrolment.paid_through_date,
                actor=actor,
            )
        if impact.credits_delta:
            delete_events_for_away_impact(impact)
            record_coverage_audit(
                enrolment,
                CoverageAuditReason.AWAY_PERIOD_REVERSAL,
                previous_credits=enrolment.credits_balance_cached,
                actor=actor,
                note=f"Removed {impact.credits_delta} away credit(s)",
            )
        impact.delete()
        refresh_snapshot(enrolment.pk)
        reverted += 1
    return reverted


def _get_live(away_period_id) -> AwayPeriod:
    away = AwayPeriod.objects.live().select_for_update().filter(pk=away_period_id).first()
    if away is None:
        raise NotFound("Away period not found.")
    return away


@retry_on_conflict()
def _create(data: AwayInput, actor=None):
    with serializable_atomic():
        ensure_scope_references(data)
        assert_no_overlap(data)
        away = AwayPeriod.objects.create(
            family_id=data.family_id,
            student_id=data.student_id,
            start_date=data.start_date,
            end_date=data.end_date,
            note=data.note,
            created_by=actor,
        )
        impacts = apply_away_period_impacts(away, actor=actor)
    return away, impacts


@retry_on_conflict()
def _update(away_period_id, data: AwayInput, actor=None):
    with serializable_atomic():
        away = _get_live(away_period_id)
        if away.family_id != data.family_id:
            raise InvalidInput("Away period family cannot be changed.")
        ensure_scope_references(data)
        assert_no_overlap(data, exclude_id=away.pk)
        revert_away_period_impacts(away, actor=actor)
        away.student_id = data.student_id
        away.start_date = data.start_date
        away.end_date = data.end_date
        away.note = data.note
        away.save(update_fields=["student", "start_date", "end_date", "note", "updated_at"])
        impacts = apply_away_period_impacts(away, actor=actor)
    return away, impacts


@retry_on_conflict()
def _delete(away_period_id, actor=None):
    with serializable_atomic():
        away = _get_live(away_period_id)
        reverted = revert_away_period_impacts(away, actor=actor)
        away.deleted_at = timezone.now()
        away.save(update_fields=["deleted_at", "updated_at"])
    return away, reverted


def create_away_period(*, family_id, scope, student_id=None, start_date, end_date, note="", actor=None) -> ActionResult:
    try:
        data = normalize_away_input(
            family_id=family_id,
            scope=scope,
            student_id=student_id,
            start_date=start_date,
            end_date=end_date,
            note=note,
        )
        away, impacts = _create(data, actor=actor)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Created away period %s affecting %s enrolment(s)", away.pk, len(impacts))
    return ActionResult.success({"id": away.pk, "family_id": away.family_id, "impacts": impacts})


def update_away_period(
    away_period_id, *, family_id, scope, student_id=None, start_date, end_date, note="", actor=None
) -> ActionResult:
    try:
        data = normalize_away_input(
            family_id=family_id,
            scope=scope,
            student_id=student_id,
            start_date=start_date,
            end_date=end_date,
            note=note,
        )
        away, impacts = _update(away_period_id, data, actor=actor)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Updated away period %s affecting %s enrolment(s)", away.pk, len(impacts))
    return ActionResult.success({"id": away.pk, "family_id": away.family_id, "impacts": impacts})


def delete_away_period(away_period_id, *, actor=None) -> ActionResult:
    try:
        away, reverted = _delete(away_period_id, actor=actor)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Deleted away period %s, reverted %s impact(s)", away.pk, reverted)
    return ActionResult.success({"id": away.pk, "family_id": away.family_id})


def away_coverage_on(students, on_date) -> dict[int, AwayPeriod]:
    """
    Map student id to the away period covering them on ``on_date``.
    ``students`` are Student instances. A student-specific period wins over a
    family-wide one, then the latest start.
    """
    students = list(students)
    if not students:
        return {}
    on_date = to_studio_date(on_date)
    periods = AwayPeriod.objects.live().filter(
        family_id__in={s.family_id for s in students},
        start_date__lte=on_date,
        end_date__gte=on_date,
    ).filter(Q(student__isnull=True) | Q(student_id__in=[s.pk for s in students]))
    periods = list(periods)

    result = {}
    for student in students:
        matching = [
            p for p in periods
            if p.family_id == student.family_id and p.student_id in (None, student.pk)
        ]
        if not matching:
            continue
        matching.sort(key=lambda p: (p.student_id == student.pk, p.start_date, p.end_date), reverse=True)
        result[student.pk] = matching[0]
    return result
