"""
Billing snapshot orchestration.

``refresh_snapshot`` is the only code that writes the cached coverage
fields on ``Enrolment``. Every mutation that touches the ledger, an explicit
paid-through date or an enrolment status calls it inside the same
transaction.
"""
from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Iterable

from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from apps.billing.coverage import BillingSnapshot, project_weekly, walk_credits
from apps.billing.ledger import (
    append_event,
    balance_as_of,
    delete_events_for_adjustment,
    ensure_consumption_events,
    has_consumption,
    pause_windows,
)
from apps.billing.models import AdjustmentType, CreditEventType, EnrolmentAdjustment
from apps.billing.occurrences import count_occurrences_between
from apps.billing.proration import cancellation_delta_days
from apps.classes.models import ClassCancellation, ClassTemplate
from apps.classes.schedule import load_exclusions, to_schedule
from apps.common.exceptions import DomainError, NotFound
from apps.common.results import ActionResult
from apps.common.utils.dates import max_date, min_date, studio_today, to_studio_date
from apps.enrolments.models import (
    BillingType,
    CoverageAuditReason,
    Enrolment,
    EnrolmentCoverageAudit,
    EnrolmentStatus,
)

logger = logging.getLogger(__name__)

CACHED_FIELDS = [
    "paid_through_date_computed",
    "next_due_date_computed",
    "credits_balance_cached",
    "billing_refreshed_at",
]


def enrolment_queryset():
    return Enrolment.objects.select_related("plan", "template", "student")


def lock_enrolment(enrolment_id) -> Enrolment:
    """Fetch an enrolment with a row lock. Must be called inside a transaction."""
    try:
        return enrolment_queryset().select_for_update(of=("self",)).get(pk=enrolment_id)
    except Enrolment.DoesNotExist:
        raise NotFound(f"Enrolment {enrolment_id} not found")


def record_coverage_audit(
    enrolment: Enrolment,
    reason: str,
    *,
    previous_paid_through: date | None = None,
    new_paid_through: date | None = None,
    previous_credits: int | None = None,
    new_credits: int | None = None,
    actor=None,
    note: str = "",
) -> EnrolmentCoverageAudit:
    return EnrolmentCoverageAudit.objects.create(
        enrolment=enrolment,
        reason=reason,
        previous_paid_through_date=previous_paid_through,
        new_paid_through_date=new_paid_through,
        previous_credits=previous_credits,
        new_credits=new_credits,
        actor=actor,
        note=note[:255],
    )


def compute_snapshot(enrolment: Enrolment, as_of=None, *, today: date | None = None) -> BillingSnapshot:
    """
    Project coverage for one enrolment as of a studio-local day.

    PER_CLASS consumption is written to the ledger only up to today. For a
    future ``as_of`` the not-yet-recorded occurrences are deducted from the
    projected balance instead.
    """
    today = today or studio_today()
    as_of = to_studio_date(as_of) or today
    plan = enrolment.plan
    templates = enrolment.assigned_templates()
    schedules = [to_schedule(t) for t in templates]
    blocked = pause_windows(enrolment)

    if plan.billing_type == BillingType.PER_WEEK:
        base = enrolment.paid_through_date or enrolment.start_date
        exclusions = load_exclusions(templates, base, enrolment.end_date, blocked=blocked)
        paid_through, next_due = project_weekly(
            schedules,
            enrolment.start_date,
            enrolment.paid_through_date,
            end_date=enrolment.end_date,
            exclusions=exclusions,
        )
        if not any(s.day_of_week is not None for s in schedules):
            paid_through = None
        return BillingSnapshot(
            enrolment_id=enrolment.pk,
            billing_type=plan.billing_type,
            paid_through_date=paid_through,
            next_payment_due_date=next_due,
            remaining_credits=None,
            credit_balance=None,
            covered_occurrences=0,
            sessions_per_week=plan.cadence,
            as_of=as_of,
        )

    ensure_consumption_events(enrolment, min(as_of, today))
    balance = balance_as_of(enrolment, as_of)

    walk_start = max_date(as_of + timedelta(days=1), enrolment.start_date)
    exclusions = load_exclusions(templates, min(today, walk_start), enrolment.end_date, blocked=blocked)
    if as_of > today:
        pending_through = min_date(as_of, enrolment.end_date)
        pending_after = max_date(today, enrolment.start_date - timedelta(days=1))
        balance -= count_occurrences_between(schedules, pending_after, pending_through, exclusions)

    walk = walk_credits(
        schedules,
        walk_start,
        balance,
        sessions_per_week=plan.cadence,
        end_date=enrolment.end_date,
        exclusions=exclusions,
    )
    if walk.horizon_exceeded:
        logger.warning(
            "Coverage walk for enrolment %s hit the lookahead cap", enrolment.pk
        )
    return BillingSnapshot(
        enrolment_id=enrolment.pk,
        billing_type=plan.billing_type,
        paid_through_date=walk.paid_through_date,
        next_payment_due_date=walk.next_due_date,
        remaining_credits=walk.remaining_credits,
        credit_balance=balance,
        covered_occurrences=walk.covered_occurrences,
        sessions_per_week=plan.cadence,
        as_of=as_of,
        horizon_exceeded=walk.horizon_exceeded,
    )


def frozen_snapshot(enrolment: Enrolment, as_of=None) -> BillingSnapshot:
    """The last persisted snapshot, used for enrolments that are no longer billed."""
    return BillingSnapshot(
        enrolment_id=enrolment.pk,
        billing_type=enrolment.plan.billing_type,
        paid_through_date=enrolment.paid_through_date_computed,
        next_payment_due_date=enrolment.next_due_date_computed,
        remaining_credits=enrolment.credits_balance_cached,
        credit_balance=enrolment.credits_balance_cached,
        covered_occurrences=0,
        sessions_per_week=enrolment.plan.cadence,
        as_of=to_studio_date(as_of) or studio_today(),
    )


def persist_snapshot(enrolment: Enrolment, snapshot: BillingSnapshot) -> None:
    enrolment.paid_through_date_computed = snapshot.paid_through_date
    enrolment.next_due_date_computed = snapshot.next_payment_due_date
    enrolment.credits_balance_cached = snapshot.credit_balance
    enrolment.billing_refreshed_at = timezone.now()
    enrolment.save(update_fields=CACHED_FIELDS + ["updated_at"])


def refresh_snapshot(enrolment_id, as_of=None, *, today: date | None = None) -> BillingSnapshot:
    """
    Recompute and persist the cached coverage of one enrolment.

    The cache always describes today. When ``as_of`` is another day the
    returned snapshot is computed for that day but not persisted. Paused and
    cancelled enrolments return their frozen snapshot untouched.
    """
    today = today or studio_today()
    as_of = to_studio_date(as_of) or today
    with transaction.atomic():
        enrolment = lock_enrolment(enrolment_id)
        if not enrolment.is_billable:
            return frozen_snapshot(enrolment, as_of)
        current = compute_snapshot(enrolment, today, today=today)
        persist_snapshot(enrolment, current)
        if as_of == today:
            return current
        return compute_snapshot(enrolment, as_of, today=today)


def get_enrolment_billing_status(enrolment_id, as_of=None) -> BillingSnapshot:
    return refresh_snapshot(enrolment_id, as_of)


def get_billing_status_for_enrolments(enrolment_ids: Iterable, as_of=None) -> dict:
    """One transaction per enrolment; unknown ids are skipped."""
    snapshots = {}
    for enrolment_id in dict.fromkeys(enrolment_ids):
        try:
            snapshots[enrolment_id] = refresh_snapshot(enrolment_id, as_of)
        except NotFound:
            logger.warning("Billing status requested for unknown enrolment %s", enrolment_id)
    return snapshots


def refresh_open_enrolments(as_of=None, *, batch_size: int = 500) -> int:
    ids = Enrolment.objects.filter(status=EnrolmentStatus.ACTIVE).values_list("pk", flat=True)
    refreshed = 0
    for enrolment_id in ids.iterator(chunk_size=batch_size):
        refresh_snapshot(enrolment_id, as_of)
        refreshed += 1
    logger.info("Refreshed billing snapshots for %s enrolments", refreshed)
    return refreshed


def find_enrolment_for_occurrence(student_id, template_id, on_date: date) -> int | None:
    """Id of the active enrolment seating ``student_id`` in ``template_id`` on ``on_date``."""
    return (
        Enrolment.objects.filter(
            student_id=student_id,
            status=EnrolmentStatus.ACTIVE,
            start_date__lte=on_date,
        )
        .filter(Q(end_date__isnull=True) | Q(end_date__gte=on_date))
        .filter(Q(template_id=template_id) | Q(class_assignments__template_id=template_id))
        .order_by("-start_date", "-id")
        .values_list("pk", flat=True)
        .first()
    )


def register_credit_consumption_for_date(template_id, student_id, on_date, attendance=None):
    """
    Attendance hook. Consumes one credit when a matching active PER_CLASS
    enrolment exists and the occurrence is neither cancelled nor consumed.
    Returns the refreshed snapshot, or None when nothing was recorded.
    """
    on_date = to_studio_date(on_date)
    enrolment_id = find_enrolment_for_occurrence(student_id, template_id, on_date)
    if enrolment_id is None:
        return None

    with transaction.atomic():
        enrolment = lock_enrolment(enrolment_id)
        if enrolment.plan.billing_type != BillingType.PER_CLASS:
            return None
        if ClassCancellation.objects.filter(template_id=template_id, date=on_date).exists():
            return None
        if has_consumption(enrolment, template_id, on_date):
            return None
        try:
            with transaction.atomic():
                append_event(
                    enrolment,
                    CreditEventType.CONSUME,
                    -1,
                    on_date,
                    template=ClassTemplate.objects.get(pk=template_id),
                    attendance=attendance,
                    note="Attendance",
                )
        except IntegrityError:
            # A concurrent hook recorded the same occurrence first.
            return None
        return refresh_snapshot(enrolment.pk)


def apply_cancellation_credit(
    enrolment: Enrolment,
    template: ClassTemplate,
    on_date: date,
    *,
    actor=None,
    note: str = "",
) -> EnrolmentAdjustment | None:
    """
    Compensate one enrolment for a cancelled occurrence. The caller holds the
    enrolment lock and refreshes the snapshot. Returns None when the
    occurrence was already credited.
    """
    if EnrolmentAdjustment.objects.filter(
        enrolment=enrolment,
        template=template,
        date=on_date,
        adjustment_type=AdjustmentType.CANCELLATION_CREDIT,
    ).exists():
        return None

    if enrolment.plan.billing_type == BillingType.PER_WEEK:
        previous = enrolment.paid_through_date
        base = previous or enrolment.start_date
        delta_days = cancellation_delta_days(template.day_of_week, base)
        adjustment = EnrolmentAdjustment.objects.create(
            enrolment=enrolment,
            template=template,
            date=on_date,
            adjustment_type=AdjustmentType.CANCELLATION_CREDIT,
            paid_through_delta_days=delta_days,
            previous_paid_through_date=previous,
            note=note,
            created_by=actor,
        )
        enrolment.paid_through_date = base + timedelta(days=delta_days)
        enrolment.save(update_fields=["paid_through_date", "updated_at"])
        record_coverage_audit(
            enrolment,
            CoverageAuditReason.CANCELLATION_CREDIT,
            previous_paid_through=previous,
            new_paid_through=enrolment.paid_through_date,
            actor=actor,
            note=f"{template.name} cancelled on {on_date}",
        )
        return adjustment

    adjustment = EnrolmentAdjustment.objects.create(
        enrolment=enrolment,
        template=template,
        date=on_date,
        adjustment_type=AdjustmentType.CANCELLATION_CREDIT,
        credits_delta=1,
        note=note,
        created_by=actor,
    )
    previous_credits = enrolment.credits_balance_cached
    balance = append_event(
        enrolment,
        CreditEventType.CANCELLATION_CREDIT,
        1,
        min(on_date, studio_today()),
        template=template,
        adjustment=adjustment,
        note=note or "Class cancelled",
    )
    record_coverage_audit(
        enrolment,
        CoverageAuditReason.CANCELLATION_CREDIT,
        previous_paid_through=enrolment.paid_through_date_computed,
        previous_credits=previous_credits,
        new_credits=balance,
        actor=actor,
        note=f"{template.name} cancelled on {on_date}",
    )
    return adjustment


def shift_paid_through_back(enrolment: Enrolment, delta_days: int, previous_explicit: date | None) -> None:
    """
    Subtract a stored paid-through delta, clamped to the start date. A shift
    that was applied to an unset date clears it again once it falls back to
    the start date. The caller saves the enrolment.
    """
    if enrolment.paid_through_date is None:
        return
    reverted = max(enrolment.paid_through_date - timedelta(days=delta_days), enrolment.start_date)
    if previous_explicit is None and reverted <= enrolment.start_date:
        reverted = None
    enrolment.paid_through_date = reverted


def revert_cancellation_credit(adjustment: EnrolmentAdjustment, *, actor=None) -> None:
    """Undo an adjustment from its stored delta, then delete it."""
    enrolment = adjustment.enrolment
    if adjustment.paid_through_delta_days:
        previous = enrolment.paid_through_date
        if previous is not None:
            shift_paid_through_back(
                enrolment, adjustment.paid_through_delta_days, adjustment.previous_paid_through_date
            )
            enrolment.save(update_fields=["paid_through_date", "updated_at"])
        record_coverage_audit(
            enrolment,
            CoverageAuditReason.CANCELLATION_REVERSAL,
            previous_paid_through=previous,
            new_paid_through=enrolment.paid_through_date,
            actor=actor,
            note=f"Reinstated {adjustment.date}",
        )
    else:
        removed = delete_events_for_adjustment(adjustment)
        record_coverage_audit(
            enrolment,
            CoverageAuditReason.CANCELLATION_REVERSAL,
            previous_credits=enrolment.credits_balance_cached,
            actor=actor,
            note=f"Reinstated {adjustment.date}, removed {removed} ledger event(s)",
        )
    adjustment.delete()


def register_cancellation_credit(enrolment_id, template_id, on_date, *, actor=None, note: str = "") -> ActionResult:
    on_date = to_studio_date(on_date)
    try:
        with transaction.atomic():
            enrolment = lock_enrolment(enrolment_id)
            try:
                template = ClassTemplate.objects.get(pk=template_id)
            except ClassTemplate.DoesNotExist:
                raise NotFound(f"Class template {template_id} not found")
            adjustment = apply_cancellation_credit(enrolment, template, on_date, actor=actor, note=note)
            snapshot = refresh_snapshot(enrolment.pk)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"adjustment": adjustment, "snapshot": snapshot})


def remove_cancellation_credit(adjustment_id, *, actor=None) -> ActionResult:
    try:
        with transaction.atomic():
            try:
                adjustment = EnrolmentAdjustment.objects.get(pk=adjustment_id)
            except EnrolmentAdjustment.DoesNotExist:
                raise NotFound(f"Adjustment {adjustment_id} not found")
            enrolment = lock_enrolment(adjustment.enrolment_id)
            adjustment.enrolment = enrolment
            revert_cancellation_credit(adjustment, actor=actor)
            snapshot = refresh_snapshot(enrolment.pk)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"snapshot": snapshot})


def adjust_credits_for_paid_through(
    enrolment: Enrolment,
    target: date | None,
    *,
    today: date | None = None,
    actor=None,
    note: str = "",
) -> int:
    """
    Append the MANUAL_ADJUST that makes a PER_CLASS enrolment's credits reach
    exactly ``target``. Returns the credits added (negative when removed).
    """
    today = today or studio_today()
    current = compute_snapshot(enrolment, today, today=today)
    walk_start = max_date(today + timedelta(days=1), enrolment.start_date)
    needed = 0
    if target is not None and target >= walk_start:
        templates = enrolment.assigned_templates()
        exclusions = load_exclusions(
            templates, walk_start, target, blocked=pause_windows(enrolment)
        )
        needed = count_occurrences_between(
            [to_schedule(t) for t in templates],
            walk_start - timedelta(days=1),
            min_date(target, enrolment.end_date),
            exclusions,
        )
    delta = needed - (current.credit_balance or 0)
    if delta:
        append_event(
            enrolment,
            CreditEventType.MANUAL_ADJUST,
            delta,
            today,
            note=note or f"Paid-through set to {target}",
        )
    return delta
