from __future__ import annotations

import logging
from datetime import date

from django.db.models import Sum
from django.db.models.functions import Coalesce

from apps.billing.models import CreditEventType, EnrolmentCreditEvent
from apps.billing.occurrences import list_enrolment_occurrences
from apps.classes.schedule import load_exclusions, to_schedule
from apps.common.exceptions import InvalidInput
from apps.common.utils.dates import min_date, to_studio_date

logger = logging.getLogger(__name__)


def append_event(
    enrolment,
    event_type: str,
    credits_delta: int,
    occurred_on,
    *,
    template=None,
    invoice=None,
    attendance=None,
    adjustment=None,
    away_impact=None,
    note: str = "",
) -> int:
    """
    Record one ledger movement and return the recomputed ledger balance.

    Must run inside the caller's transaction, which is also expected to
    refresh the enrolment snapshot before committing.
    """
    if event_type not in CreditEventType.values:
        raise InvalidInput(f"Unknown credit event type {event_type!r}")
    if not credits_delta:
        raise InvalidInput("A ledger event must move at least one credit.")
    occurred_on = to_studio_date(occurred_on)
    if occurred_on is None:
        raise InvalidInput("A ledger event needs a date.")

    EnrolmentCreditEvent.objects.create(
        enrolment=enrolment,
        template=template,
        event_type=event_type,
        credits_delta=credits_delta,
        occurred_on=occurred_on,
        invoice=invoice,
        attendance=attendance,
        adjustment=adjustment,
        away_impact=away_impact,
        note=note,
    )
    logger.info(
        "Ledger %s %+d for enrolment %s on %s",
        event_type,
        credits_delta,
        enrolment.pk,
        occurred_on,
    )
    return total_balance(enrolment)


def total_balance(enrolment) -> int:
    return EnrolmentCreditEvent.objects.filter(enrolment=enrolment).aggregate(
        v=Coalesce(Sum("credits_delta"), 0)
    )["v"]


def balance_as_of(enrolment, as_of) -> int:
    """Sum of every event dated on or before ``as_of``."""
    return EnrolmentCreditEvent.objects.filter(
        enrolment=enrolment, occurred_on__lte=to_studio_date(as_of)
    ).aggregate(v=Coalesce(Sum("credits_delta"), 0))["v"]


def pause_windows(enrolment) -> list[tuple[date, date | None]]:
    return [(p.start_date, p.end_date) for p in enrolment.pauses.all()]


def ensure_consumption_events(enrolment, through_date) -> int:
    """
    Backfill one CONSUME (-1) per scheduled occurrence from the enrolment
    start through ``through_date``. Holidays, cancelled occurrences and pause
    windows are skipped. Safe to call repeatedly; returns the rows added.
    """
    through = min_date(to_studio_date(through_date), enrolment.end_date)
    if through is None or through < enrolment.start_date:
        return 0

    templates = enrolment.assigned_templates()
    exclusions = load_exclusions(
        templates, enrolment.start_date, through, blocked=pause_windows(enrolment)
    )
    occurrences = list_enrolment_occurrences(
        [to_schedule(t) for t in templates], enrolment.start_date, through, exclusions
    )
    if not occurrences:
        return 0

    existing = set(
        EnrolmentCreditEvent.objects.filter(
            enrolment=enrolment,
            event_type=CreditEventType.CONSUME,
            occurred_on__gte=enrolment.start_date,
            occurred_on__lte=through,
        ).values_list("template_id", "occurred_on")
    )
    missing = [
        EnrolmentCreditEvent(
            enrolment=enrolment,
            template_id=occurrence.template_id,
            event_type=CreditEventType.CONSUME,
            credits_delta=-1,
            occurred_on=occurrence.date,
            note="Scheduled class",
        )
        for occurrence in occurrences
        if (occurrence.template_id, occurrence.date) not in existing
    ]
    if missing:
        EnrolmentCreditEvent.objects.bulk_create(missing, ignore_conflicts=True)
        logger.debug("Backfilled %s consumption events for enrolment %s", len(missing), enrolment.pk)
    return len(missing)


def has_consumption(enrolment, template_id: int, occurred_on: date) -> bool:
    return EnrolmentCreditEvent.objects.filter(
        enrolment=enrolment,
        template_id=template_id,
        occurred_on=occurred_on,
        event_type=CreditEventType.CONSUME,
    ).exists()


def delete_events_for_adjustment(adjustment) -> int:
    deleted, _ = EnrolmentCreditEvent.objects.filter(adjustment=adjustment).delete()
    return deleted


def delete_events_for_away_impact(impact) -> int:
    deleted, _ = EnrolmentCreditEvent.objects.filter(away_impact=impact).delete()
    return deleted
