from __future__ import annotations

import logging
from datetime import date

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from apps.billing.coverage import resolve_weekly_coverage_window
from apps.billing.ledger import append_event
from apps.billing.models import (
    CreditEventType,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    LineItemKind,
    Payment,
    PaymentMethod,
)
from apps.billing.services import lock_enrolment, record_coverage_audit, refresh_snapshot
from apps.classes.schedule import load_holiday_exclusions, to_schedule
from apps.common.exceptions import DomainError, InvalidInput, NotFound
from apps.common.results import ActionResult
from apps.common.utils.dates import studio_today, to_studio_date
from apps.enrolments.models import BillingType, CoverageAuditReason

logger = logging.getLogger(__name__)


def create_invoice(
    family,
    lines: list[dict],
    *,
    enrolment=None,
    status: str = InvoiceStatus.SENT,
    due_date: date | None = None,
    coverage_start: date | None = None,
    coverage_end: date | None = None,
    credits_purchased: int | None = None,
    note: str = "",
) -> Invoice:
    """
    ``lines`` are dicts with ``description``, ``unit_price_cents`` and
    optionally ``quantity`` and ``kind``.
    """
    if not lines:
        raise InvalidInput("An invoice needs at least one line item.")
    invoice = Invoice.objects.create(
        family=family,
        enrolment=enrolment,
        status=status,
        issued_at=timezone.now() if status != InvoiceStatus.DRAFT else None,
        due_date=due_date,
        coverage_start=coverage_start,
        coverage_end=coverage_end,
        credits_purchased=credits_purchased,
        note=note,
    )
    total = 0
    for line in lines:
        quantity = line.get("quantity", 1)
        amount = quantity * line["unit_price_cents"]
        InvoiceLineItem.objects.create(
            invoice=invoice,
            kind=line.get("kind", LineItemKind.ENROLMENT),
            description=line["description"],
            quantity=quantity,
            unit_price_cents=line["unit_price_cents"],
            amount_cents=amount,
        )
        total += amount
    invoice.amount_cents = total
    invoice.save(update_fields=["amount_cents", "updated_at"])
    return invoice


def enrolment_quantity(invoice: Invoice) -> int:
    quantity = (
        invoice.line_items.filter(kind=LineItemKind.ENROLMENT).aggregate(q=Sum("quantity"))["q"]
    )
    return quantity or 1


def weekly_coverage_for(enrolment, *, quantity: int = 1, today: date | None = None):
    plan = enrolment.plan
    templates = enrolment.assigned_templates()
    return resolve_weekly_coverage_window(
        [to_schedule(t) for t in templates],
        enrolment_start=enrolment.start_date,
        paid_through_date=enrolment.paid_through_date,
        duration_weeks=plan.duration_weeks,
        sessions_per_week=plan.sessions_per_week,
        today=today or studio_today(),
        quantity=quantity,
        end_date=enrolment.end_date,
        exclusions=load_holiday_exclusions(templates, enrolment.start_date, enrolment.end_date),
    )


def create_enrolment_invoice(enrolment, *, quantity: int = 1, today: date | None = None) -> Invoice:
    """Invoice the next purchase of the enrolment's plan."""
    plan = enrolment.plan
    if quantity <= 0:
        raise InvalidInput("Quantity must be positive.")
    coverage_start = coverage_end = credits = None
    if plan.billing_type == BillingType.PER_WEEK:
        try:
            window = weekly_coverage_for(enrolment, quantity=quantity, today=today)
        except ValueError as exc:
            raise InvalidInput(str(exc))
        coverage_start, coverage_end = window.coverage_start, window.coverage_end
    else:
        credits = (plan.block_class_count or 1) * quantity
    return create_invoice(
        enrolment.student.family,
        [
            {
                "description": plan.name,
                "quantity": quantity,
                "unit_price_cents": plan.price_cents,
                "kind": LineItemKind.ENROLMENT,
            }
        ],
        enrolment=enrolment,
        due_date=coverage_start or to_studio_date(today) or studio_today(),
        coverage_start=coverage_start,
        coverage_end=coverage_end,
        credits_purchased=credits,
    )


@transaction.atomic
def apply_paid_invoice_to_enrolment(invoice: Invoice, *, today: date | None = None):
    """
    Turn a paid invoice into entitlement: PURCHASE credits for PER_CLASS,
    an advanced paid-through date for PER_WEEK. Applied at most once.
    """
    if invoice.entitlements_applied_at or invoice.enrolment_id is None or invoice.amount_cents <= 0:
        return None

    enrolment = lock_enrolment(invoice.enrolment_id)
    plan = enrolment.plan
    paid_on = to_studio_date(invoice.paid_at) or studio_today()

    if plan.billing_type == BillingType.PER_CLASS:
        credits = invoice.credits_purchased or (plan.block_class_count or 1) * enrolment_quantity(invoice)
        previous = enrolment.credits_balance_cached
        balance = append_event(
            enrolment,
            CreditEventType.PURCHASE,
            credits,
            paid_on,
            invoice=invoice,
            note=f"Invoice #{invoice.pk}",
        )
        record_coverage_audit(
            enrolment,
            CoverageAuditReason.INVOICE_APPLIED,
            previous_paid_through=enrolment.paid_through_date_computed,
            previous_credits=previous,
            new_credits=balance,
            note=f"Invoice #{invoice.pk}",
        )
        invoice.credits_purchased = credits
    else:
        coverage_end = invoice.coverage_end
        if coverage_end is None:
            window = weekly_coverage_for(enrolment, quantity=enrolment_quantity(invoice), today=today)
            coverage_end = window.coverage_end
        previous = enrolment.paid_through_date
        if coverage_end and (previous is None or coverage_end > previous):
            enrolment.paid_through_date = coverage_end
            enrolment.save(update_fields=["paid_through_date", "updated_at"])
            record_coverage_audit(
                enrolment,
                CoverageAuditReason.INVOICE_APPLIED,
                previous_paid_through=previous,
                new_paid_through=coverage_end,
                note=f"Invoice #{invoice.pk}",
            )
        invoice.coverage_end = coverage_end

    invoice.entitlements_applied_at = timezone.now()
    invoice.save(update_fields=["entitlements_applied_at", "credits_purchased", "coverage_end", "updated_at"])
    logger.info("Applied invoice %s to enrolment %s", invoice.pk, enrolment.pk)
    return refresh_snapshot(enrolment.pk, today=today)


def record_payment(
    invoice_id,
    amount_cents: int,
    *,
    method: str = PaymentMethod.CASH,
    paid_at=None,
    note: str = "",
) -> ActionResult:
    """Record a payment against an invoice, settling it and applying entitlements when paid in full."""
    try:
        with transaction.atomic():
            try:
                invoice = Invoice.objects.select_for_update().get(pk=invoice_id)
            except Invoice.DoesNotExist:
                raise NotFound(f"Invoice {invoice_id} not found")
            if invoice.status == InvoiceStatus.VOID:
                raise InvalidInput("Cannot pay a void invoice.")
            if amount_cents <= 0:
                raise InvalidInput("Payment amount must be positive.")

            payment = Payment.objects.create(
                family_id=invoice.family_id,
                invoice=invoice,
                amount_cents=amount_cents,
                method=method,
                paid_at=paid_at or timezone.now(),
                note=note,
            )
            invoice.amount_paid_cents += amount_cents
            snapshot = None
            if invoice.amount_paid_cents >= invoice.amount_cents and invoice.status != InvoiceStatus.PAID:
                invoice.status = InvoiceStatus.PAID
                invoice.paid_at = payment.paid_at
                invoice.save(update_fields=["amount_paid_cents", "status", "paid_at", "updated_at"])
                snapshot = apply_paid_invoice_to_enrolment(invoice)
            else:
                invoice.save(update_fields=["amount_paid_cents", "updated_at"])
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"payment": payment, "invoice": invoice, "snapshot": snapshot})
