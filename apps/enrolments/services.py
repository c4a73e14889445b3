from __future__ import annotations

import logging
from datetime import date, timedelta

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from apps.billing.invoicing import create_invoice
from apps.billing.ledger import append_event
from apps.billing.models import (
    CreditEventType,
    InvoiceStatus,
    LineItemKind,
    Payment,
    PaymentMethod,
)
from apps.billing.occurrences import first_weekday_on_or_after
from apps.billing.proration import compute_move_adjustment, compute_prorated_paid_through
from apps.billing.services import (
    adjust_credits_for_paid_through,
    compute_snapshot,
    lock_enrolment,
    record_coverage_audit,
    refresh_snapshot,
)
from apps.classes.models import ClassTemplate
from apps.classes.schedule import load_exclusions, to_schedule
from apps.common.exceptions import (
    CapacityExceeded,
    CoverageConflict,
    DomainError,
    InvalidInput,
    NotFound,
)
from apps.common.results import ActionResult
from apps.common.utils.dates import max_date, min_date, studio_today, to_studio_date
from apps.enrolments.models import (
    BillingType,
    CoverageAuditReason,
    Enrolment,
    EnrolmentClassAssignment,
    EnrolmentPause,
    EnrolmentPlan,
    EnrolmentStatus,
    EnrolmentStatusLog,
)
from apps.students.models import Student

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    EnrolmentStatus.ACTIVE: {EnrolmentStatus.PAUSED, EnrolmentStatus.CHANGEOVER, EnrolmentStatus.CANCELLED},
    EnrolmentStatus.PAUSED: {EnrolmentStatus.ACTIVE, EnrolmentStatus.CHANGEOVER, EnrolmentStatus.CANCELLED},
    EnrolmentStatus.CHANGEOVER: set(),
    EnrolmentStatus.CANCELLED: set(),
}


def record_status_change(enrolment: Enrolment, new_status: str, *, reason: str, note: str = ""):
    """Log and apply a status transition. The caller saves the enrolment."""
    if enrolment.status == new_status:
        return
    if new_status not in ALLOWED_TRANSITIONS.get(enrolment.status, set()):
        raise InvalidInput(
            f"Cannot change enrolment from {enrolment.get_status_display()} to {new_status}"
        )
    EnrolmentStatusLog.objects.create(
        enrolment=enrolment,
        old_status=enrolment.status,
        new_status=new_status,
        reason=reason,
        note=note[:255],
    )
    enrolment.status = new_status


def _get(model, pk, label: str):
    try:
        return model.objects.get(pk=pk)
    except model.DoesNotExist:
        raise InvalidInput(f"{label} {pk} not found")


def _check_plan_fits(plan: EnrolmentPlan, template: ClassTemplate):
    if plan.level_id and template.level_id and plan.level_id != template.level_id:
        raise InvalidInput("Plan level must match the class level.")
    if plan.billing_type == BillingType.PER_WEEK and not plan.duration_weeks:
        raise InvalidInput("Weekly plans need a duration in weeks.")
    if plan.billing_type == BillingType.PER_CLASS and not plan.block_class_count:
        raise InvalidInput("Per-class plans need a positive class count.")


def seated_count(template: ClassTemplate, on_date: date, *, exclude_enrolment_id=None) -> int:
    qs = (
        Enrolment.objects.filter(status=EnrolmentStatus.ACTIVE, start_date__lte=on_date)
        .filter(Q(end_date__isnull=True) | Q(end_date__gte=on_date))
        .filter(Q(template=template) | Q(class_assignments__template=template))
    )
    if exclude_enrolment_id:
        qs = qs.exclude(pk=exclude_enrolment_id)
    return qs.values("pk").distinct().count()


def capacity_issue(template: ClassTemplate, on_date: date, *, exclude_enrolment_id=None) -> dict | None:
    """Details of the overload that one more seat would cause, or None."""
    current = seated_count(template, on_date, exclude_enrolment_id=exclude_enrolment_id)
    if current + 1 <= template.capacity:
        return None
    return {
        "template_id": template.pk,
        "template_name": template.name,
        "occurrence_date": on_date.isoformat(),
        "capacity": template.capacity,
        "current_count": current,
        "projected_count": current + 1,
    }


def aligned_start_date(template: ClassTemplate, effective_date: date) -> date:
    """First day the template runs on or after ``effective_date``."""
    start = max_date(effective_date, template.start_date)
    if template.day_of_week is None:
        return start
    return first_weekday_on_or_after(start, template.day_of_week)


def enrol_student(
    student_id,
    template_id,
    plan_id,
    start_date,
    *,
    end_date=None,
    paid_through_date=None,
    extra_template_ids=(),
    allow_overload: bool = False,
) -> ActionResult:
    start_date = to_studio_date(start_date)
    end_date = to_studio_date(end_date)
    try:
        with transaction.atomic():
            student = _get(Student, student_id, "Student")
            template = _get(ClassTemplate, template_id, "Class")
            plan = _get(EnrolmentPlan, plan_id, "Plan")
            _check_plan_fits(plan, template)
            if end_date and end_date < start_date:
                raise InvalidInput("End date must be on or after the start date.")
            issue = capacity_issue(template, start_date)
            if issue and not allow_overload:
                raise CapacityExceeded(f"{template.name} is full", details=issue)
            enrolment = Enrolment.objects.create(
                student=student,
                plan=plan,
                template=template,
                start_date=start_date,
                end_date=end_date,
                paid_through_date=to_studio_date(paid_through_date)
                if plan.billing_type == BillingType.PER_WEEK
                else None,
            )
            EnrolmentClassAssignment.objects.create(enrolment=enrolment, template=template)
            for extra_id in extra_template_ids:
                if extra_id == template.pk:
                    continue
                EnrolmentClassAssignment.objects.create(
                    enrolment=enrolment, template=_get(ClassTemplate, extra_id, "Class")
                )
            snapshot = refresh_snapshot(enrolment.pk)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Enrolled %s in %s from %s", student, template.name, start_date)
    return ActionResult.success({"enrolment": enrolment, "snapshot": snapshot})


def pause_enrolment(enrolment_id, start_date, end_date=None, *, reason: str = "") -> ActionResult:
    """Freeze billing. Days inside the pause window are never scheduled or consumed."""
    start_date = to_studio_date(start_date)
    end_date = to_studio_date(end_date)
    try:
        with transaction.atomic():
            enrolment = lock_enrolment(enrolment_id)
            if end_date and end_date < start_date:
                raise InvalidInput("Pause end must be on or after its start.")
            if start_date < enrolment.start_date:
                raise InvalidInput("Pause cannot start before the enrolment.")
            EnrolmentPause.objects.create(
                enrolment=enrolment, start_date=start_date, end_date=end_date, reason=reason
            )
            snapshot = refresh_snapshot(enrolment.pk)
            enrolment.refresh_from_db()
            record_status_change(enrolment, EnrolmentStatus.PAUSED, reason="PAUSE", note=reason)
            enrolment.save(update_fields=["status", "updated_at"])
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"enrolment": enrolment, "snapshot": snapshot})


def resume_enrolment(enrolment_id, on_date=None) -> ActionResult:
    on_date = to_studio_date(on_date) or studio_today()
    try:
        with transaction.atomic():
            enrolment = lock_enrolment(enrolment_id)
            if enrolment.status != EnrolmentStatus.PAUSED:
                raise InvalidInput("Only paused enrolments can be resumed.")
            for pause in enrolment.pauses.filter(end_date__isnull=True):
                pause.end_date = max(pause.start_date, on_date - timedelta(days=1))
                pause.save(update_fields=["end_date"])
            record_status_change(enrolment, EnrolmentStatus.ACTIVE, reason="RESUME")
            enrolment.save(update_fields=["status", "updated_at"])
            snapshot = refresh_snapshot(enrolment.pk)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"enrolment": enrolment, "snapshot": snapshot})


def cancel_enrolment(enrolment_id, end_date=None, *, reason: str = "") -> ActionResult:
    """End an enrolment. The snapshot is refreshed with the new end date, then frozen."""
    end_date = to_studio_date(end_date) or studio_today()
    try:
        with transaction.atomic():
            enrolment = lock_enrolment(enrolment_id)
            if enrolment.status not in (EnrolmentStatus.ACTIVE, EnrolmentStatus.PAUSED):
                raise InvalidInput("Enrolment is already closed.")
            enrolment.end_date = max(end_date, enrolment.start_date)
            enrolment.save(update_fields=["end_date", "updated_at"])
            snapshot = None
            if enrolment.is_billable:
                snapshot = refresh_snapshot(enrolment.pk)
                enrolment.refresh_from_db()
            record_status_change(enrolment, EnrolmentStatus.CANCELLED, reason="CANCEL", note=reason)
            enrolment.cancelled_at = timezone.now()
            enrolment.save(update_fields=["status", "cancelled_at", "updated_at"])
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Cancelled enrolment %s from %s", enrolment.pk, enrolment.end_date)
    return ActionResult.success({"enrolment": enrolment, "snapshot": snapshot})


def update_paid_through_date(enrolment_id, paid_through_date, *, actor=None, note: str = "") -> ActionResult:
    """
    Manual coverage edit. Weekly enrolments store the date directly; per-class
    enrolments receive the credit adjustment that makes coverage land on it.
    """
    target = to_studio_date(paid_through_date)
    today = studio_today()
    try:
        with transaction.atomic():
            enrolment = lock_enrolment(enrolment_id)
            if target is not None and target < enrolment.start_date - timedelta(days=1):
                raise InvalidInput("Paid-through date cannot be before the enrolment start.")
            previous = enrolment.paid_through_date or enrolment.paid_through_date_computed
            previous_credits = enrolment.credits_balance_cached
            if enrolment.plan.billing_type == BillingType.PER_WEEK:
                enrolment.paid_through_date = target
                enrolment.save(update_fields=["paid_through_date", "updated_at"])
            else:
                adjust_credits_for_paid_through(
                    enrolment, target, today=today, actor=actor, note=note
                )
            snapshot = refresh_snapshot(enrolment.pk, today=today)
            record_coverage_audit(
                enrolment,
                CoverageAuditReason.PAIDTHROUGH_MANUAL_EDIT,
                previous_paid_through=previous,
                new_paid_through=target,
                previous_credits=previous_credits,
                new_credits=snapshot.credit_balance,
                actor=actor,
                note=note,
            )
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"enrolment_id": enrolment.pk, "snapshot": snapshot})


def _find_source_enrolment(student_id, from_template_id, effective_date: date) -> Enrolment:
    enrolment_id = (
        Enrolment.objects.filter(
            student_id=student_id,
            status__in=[EnrolmentStatus.ACTIVE, EnrolmentStatus.PAUSED],
            start_date__lte=effective_date,
        )
        .filter(Q(end_date__isnull=True) | Q(end_date__gte=effective_date))
        .filter(Q(template_id=from_template_id) | Q(class_assignments__template_id=from_template_id))
        .order_by("-start_date", "-id")
        .values_list("pk", flat=True)
        .first()
    )
    if enrolment_id is None:
        raise InvalidInput("No active enrolment found for the current class.")
    return lock_enrolment(enrolment_id)


def _zero_remaining_credits(enrolment: Enrolment, closing_on: date, today: date):
    as_of = max(closing_on, today)
    remaining = compute_snapshot(enrolment, as_of, today=today).credit_balance or 0
    if remaining > 0:
        append_event(
            enrolment,
            CreditEventType.MANUAL_ADJUST,
            -remaining,
            as_of,
            note="Credits carried to new class",
        )


def _settle_move(old: Enrolment, new: Enrolment, to_template: ClassTemplate, old_paid_through, aligned_start):
    """Invoice or credit the price difference between the old and new plans."""
    prorated = compute_prorated_paid_through(
        aligned_start, old_paid_through, old.plan, new.plan, [to_schedule(to_template)]
    )
    exclusions = load_exclusions([to_template], min_date(old_paid_through, prorated))
    adjustment = compute_move_adjustment(
        old_paid_through, prorated, [to_schedule(to_template)], new.plan, exclusions
    )
    result = {"adjustment_invoice_id": None, "credit_invoice_id": None, "payment_id": None}
    if adjustment.amount_cents <= 0:
        return result
    family = new.student.family
    if adjustment.is_credit:
        invoice = create_invoice(
            family,
            [
                {
                    "description": "Class move credit",
                    "unit_price_cents": -adjustment.amount_cents,
                    "kind": LineItemKind.CREDIT,
                }
            ],
            enrolment=new,
            status=InvoiceStatus.PAID,
            note=f"{adjustment.occurrences} class(es) at the new rate",
        )
        payment = Payment.objects.create(
            family=family,
            invoice=invoice,
            amount_cents=adjustment.amount_cents,
            method=PaymentMethod.CREDIT,
            paid_at=timezone.now(),
            note="Class move credit",
        )
        invoice.amount_paid_cents = invoice.amount_cents
        invoice.paid_at = payment.paid_at
        invoice.save(update_fields=["amount_paid_cents", "paid_at", "updated_at"])
        result.update(credit_invoice_id=invoice.pk, payment_id=payment.pk)
    else:
        invoice = create_invoice(
            family,
            [
                {
                    "description": f"Class change to {to_template.name}",
                    "unit_price_cents": adjustment.amount_cents,
                    "kind": LineItemKind.CLASS_CHANGE,
                }
            ],
            enrolment=new,
            due_date=studio_today(),
            note=f"{adjustment.occurrences} class(es) at the new rate",
        )
        result["adjustment_invoice_id"] = invoice.pk
    return result


def move_student_to_class(
    student_id,
    from_template_id,
    to_template_id,
    plan_id,
    effective_date,
    *,
    allow_overload: bool = False,
    actor=None,
    today: date | None = None,
) -> ActionResult:
    """
    Close the student's current enrolment and open one on the destination
    class, carrying paid-through coverage across and settling any price
    difference with a charge or credit invoice.
    """
    today = today or studio_today()
    effective_date = to_studio_date(effective_date)
    try:
        if effective_date is None:
            raise InvalidInput("Effective date is required.")
        if str(from_template_id) == str(to_template_id):
            raise InvalidInput("Select a different class to move to.")
        with transaction.atomic():
            student = _get(Student, student_id, "Student")
            _get(ClassTemplate, from_template_id, "Class")
            to_template = _get(ClassTemplate, to_template_id, "Class")
            plan = _get(EnrolmentPlan, plan_id, "Plan")
            if to_template.level_id is None:
                raise InvalidInput("The destination class must have a level.")
            if plan.level_id != to_template.level_id:
                raise InvalidInput("Plan level must match the destination class level.")
            _check_plan_fits(plan, to_template)

            old = _find_source_enrolment(student.pk, from_template_id, effective_date)
            aligned_start = aligned_start_date(to_template, effective_date)
            planned_end = min_date(old.end_date, to_template.end_date)
            if planned_end and planned_end < aligned_start:
                raise InvalidInput("The destination class does not run after the effective date.")

            issue = capacity_issue(to_template, aligned_start)
            if issue and not allow_overload:
                raise CapacityExceeded(f"{to_template.name} is full", details=issue)
            if issue:
                logger.info(
                    "Overloading %s on %s (%s/%s)",
                    to_template.name,
                    aligned_start,
                    issue["projected_count"],
                    issue["capacity"],
                )

            old_paid_through = old.paid_through_date or old.paid_through_date_computed
            if aligned_start < today and old_paid_through and old_paid_through > aligned_start:
                raise CoverageConflict(
                    "Cannot backdate a move before coverage the student has already paid for.",
                    details={"paid_through_date": old_paid_through.isoformat()},
                )

            new = Enrolment.objects.create(
                student=student,
                plan=plan,
                template=to_template,
                start_date=aligned_start,
                end_date=planned_end,
                status=EnrolmentStatus.ACTIVE,
                billing_group_id=old.billing_group_id or old.pk,
                paid_through_date=old_paid_through if plan.billing_type == BillingType.PER_WEEK else None,
            )
            EnrolmentClassAssignment.objects.create(enrolment=new, template=to_template)

            closing_on = max(aligned_start - timedelta(days=1), old.start_date)
            old.end_date = min_date(closing_on, old.end_date)
            old.save(update_fields=["end_date", "updated_at"])
            if old.plan.billing_type == BillingType.PER_CLASS:
                _zero_remaining_credits(old, old.end_date, today)
            record_status_change(old, EnrolmentStatus.CHANGEOVER, reason="CLASS_MOVE")
            old.cancelled_at = None
            old.billing_group_id = old.billing_group_id or old.pk
            old.save(update_fields=["status", "cancelled_at", "billing_group_id", "updated_at"])

            if student.level_id != to_template.level_id:
                student.level_id = to_template.level_id
                student.save(update_fields=["level", "updated_at"])

            if plan.billing_type == BillingType.PER_CLASS:
                adjust_credits_for_paid_through(
                    new, old_paid_through, today=today, actor=actor, note="Carried from previous class"
                )
            record_coverage_audit(
                new,
                CoverageAuditReason.CLASS_MOVE,
                previous_paid_through=old_paid_through,
                new_paid_through=old_paid_through,
                actor=actor,
                note=f"Moved from enrolment #{old.pk}",
            )
            settlement = _settle_move(old, new, to_template, old_paid_through, aligned_start)
            refresh_snapshot(old.pk, today=today)
            refresh_snapshot(new.pk, today=today)
    except DomainError as exc:
        if isinstance(exc, NotFound):
            return ActionResult.failure("VALIDATION_ERROR", exc.message, exc.details)
        return ActionResult.from_error(exc)
    except Exception:
        logger.exception("Class move failed for student %s", student_id)
        return ActionResult.failure("UNKNOWN_ERROR", "Unable to move the student to the new class.")

    logger.info(
        "Moved student %s from enrolment %s to %s starting %s",
        student.pk,
        old.pk,
        new.pk,
        aligned_start,
    )
    return ActionResult.success(
        {
            "old_enrolment_id": old.pk,
            "new_enrolment_id": new.pk,
            "family_id": student.family_id,
            "student_id": student.pk,
            **settlement,
        }
    )
