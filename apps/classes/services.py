from __future__ import annotations

import logging
from datetime import date

from django.db import transaction
from django.db.models import Q

from apps.billing.models import AdjustmentType, EnrolmentAdjustment
from apps.billing.services import (
    apply_cancellation_credit,
    lock_enrolment,
    refresh_snapshot,
    revert_cancellation_credit,
)
from apps.classes.models import ClassCancellation, ClassTemplate, Holiday
from apps.common.exceptions import DomainError, InvalidInput, NotFound
from apps.common.results import ActionResult
from apps.common.utils.dates import to_studio_date
from apps.enrolments.models import Enrolment, EnrolmentStatus

logger = logging.getLogger(__name__)


def _get_template(template_id) -> ClassTemplate:
    try:
        return ClassTemplate.objects.get(pk=template_id)
    except ClassTemplate.DoesNotExist:
        raise NotFound(f"Class template {template_id} not found")


def rostered_enrolment_ids(template_id, on_date: date) -> list[int]:
    """Active enrolments holding a seat in ``template_id`` on ``on_date``."""
    return list(
        Enrolment.objects.filter(status=EnrolmentStatus.ACTIVE, start_date__lte=on_date)
        .filter(Q(end_date__isnull=True) | Q(end_date__gte=on_date))
        .filter(Q(template_id=template_id) | Q(class_assignments__template_id=template_id))
        .order_by("pk")
        .values_list("pk", flat=True)
        .distinct()
    )


def cancel_class_occurrence(template_id, on_date, *, reason: str = "", actor=None) -> ActionResult:
    """
    Cancel one occurrence and credit every enrolment rostered on it.
    Re-running for an already cancelled occurrence only credits enrolments
    that were missed the first time.
    """
    on_date = to_studio_date(on_date)
    reason = (reason or "").strip()[:255]
    try:
        with transaction.atomic():
            template = _get_template(template_id)
            if template.day_of_week is not None and on_date.weekday() != template.day_of_week:
                raise InvalidInput(f"{template.name} does not run on {on_date}")
            cancellation, _ = ClassCancellation.objects.update_or_create(
                template=template,
                date=on_date,
                defaults={"reason": reason, "created_by": actor},
            )
            adjustments = []
            for enrolment_id in rostered_enrolment_ids(template.pk, on_date):
                enrolment = lock_enrolment(enrolment_id)
                adjustment = apply_cancellation_credit(
                    enrolment, template, on_date, actor=actor, note=reason
                )
                if adjustment is not None:
                    adjustments.append(adjustment)
                refresh_snapshot(enrolment.pk)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info(
        "Cancelled %s on %s, credited %s enrolment(s)", template.name, on_date, len(adjustments)
    )
    return ActionResult.success({"cancellation": cancellation, "adjustments": adjustments})


def uncancel_class_occurrence(template_id, on_date, *, actor=None) -> ActionResult:
    """Reinstate an occurrence, reversing every credit it granted from the stored deltas."""
    on_date = to_studio_date(on_date)
    try:
        with transaction.atomic():
            template = _get_template(template_id)
            cancellation = ClassCancellation.objects.filter(template=template, date=on_date).first()
            if cancellation is None:
                raise NotFound(f"{template.name} is not cancelled on {on_date}")
            adjustments = EnrolmentAdjustment.objects.filter(
                template=template,
                date=on_date,
                adjustment_type=AdjustmentType.CANCELLATION_CREDIT,
            ).order_by("enrolment_id")
            touched = []
            for adjustment in adjustments:
                adjustment.enrolment = lock_enrolment(adjustment.enrolment_id)
                revert_cancellation_credit(adjustment, actor=actor)
                touched.append(adjustment.enrolment_id)
            cancellation.delete()
            for enrolment_id in touched:
                refresh_snapshot(enrolment_id)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Reinstated %s on %s for %s enrolment(s)", template.name, on_date, len(touched))
    return ActionResult.success({"enrolment_ids": touched})


def affected_enrolment_ids(holiday: Holiday) -> list[int]:
    """Billable enrolments whose templates a holiday can touch."""
    qs = Enrolment.objects.filter(status__in=Enrolment.BILLABLE_STATUSES)
    if holiday.template_id:
        qs = qs.filter(
            Q(template_id=holiday.template_id) | Q(class_assignments__template_id=holiday.template_id)
        )
    elif holiday.level_id:
        qs = qs.filter(
            Q(template__level_id=holiday.level_id)
            | Q(class_assignments__template__level_id=holiday.level_id)
        )
    qs = qs.filter(Q(end_date__isnull=True) | Q(end_date__gte=holiday.start_date))
    return list(qs.order_by("pk").values_list("pk", flat=True).distinct())


def refresh_for_holiday(*holidays: Holiday) -> int:
    ids = set()
    for holiday in holidays:
        ids.update(affected_enrolment_ids(holiday))
    for enrolment_id in sorted(ids):
        refresh_snapshot(enrolment_id)
    return len(ids)


def _validated_holiday(holiday: Holiday) -> Holiday:
    if holiday.start_date > holiday.end_date:
        raise InvalidInput("Holiday end date must be on or after the start date.")
    return holiday


def create_holiday(*, name: str, start_date, end_date, level=None, template=None, note: str = "") -> ActionResult:
    try:
        with transaction.atomic():
            holiday = _validated_holiday(
                Holiday(
                    name=name,
                    start_date=to_studio_date(start_date),
                    end_date=to_studio_date(end_date),
                    level=level,
                    template=template,
                    note=note,
                )
            )
            holiday.save()
            refreshed = refresh_for_holiday(holiday)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"holiday": holiday, "refreshed": refreshed})


def update_holiday(holiday_id, **changes) -> ActionResult:
    try:
        with transaction.atomic():
            try:
                holiday = Holiday.objects.select_for_update().get(pk=holiday_id)
            except Holiday.DoesNotExist:
                raise NotFound(f"Holiday {holiday_id} not found")
            before = Holiday(
                start_date=holiday.start_date,
                end_date=holiday.end_date,
                level_id=holiday.level_id,
                template_id=holiday.template_id,
            )
            for field in ("start_date", "end_date"):
                if field in changes:
                    changes[field] = to_studio_date(changes[field])
            for field, value in changes.items():
                setattr(holiday, field, value)
            _validated_holiday(holiday).save()
            refreshed = refresh_for_holiday(before, holiday)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"holiday": holiday, "refreshed": refreshed})


def delete_holiday(holiday_id) -> ActionResult:
    try:
        with transaction.atomic():
            try:
                holiday = Holiday.objects.get(pk=holiday_id)
            except Holiday.DoesNotExist:
                raise NotFound(f"Holiday {holiday_id} not found")
            holiday.delete()
            refreshed = refresh_for_holiday(holiday)
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"refreshed": refreshed})
