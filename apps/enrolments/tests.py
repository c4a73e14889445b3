import datetime
import warnings

from django.core.exceptions import ValidationError
from django.test import TestCase
from rest_framework.test import APIClient

from apps.billing.invoicing import create_enrolment_invoice
from apps.billing.ledger import append_event, total_balance
from apps.billing.models import CreditEventType, Invoice, InvoiceStatus, LineItemKind, PaymentMethod
from apps.billing.services import refresh_snapshot
from apps.common.factories import (
    AdminUserFactory,
    ClassTemplateFactory,
    EnrolmentFactory,
    EnrolmentPlanFactory,
    LevelFactory,
    StudentFactory,
)
from apps.common.testing import freeze_today
from apps.enrolments.models import (
    CoverageAuditReason,
    Enrolment,
    EnrolmentCoverageAudit,
    EnrolmentStatus,
)
from apps.enrolments.services import (
    cancel_enrolment,
    enrol_student,
    move_student_to_class,
    pause_enrolment,
    resume_enrolment,
    update_paid_through_date,
)

d = datetime.date
TODAY = d(2026, 2, 2)


class MoveStudentTests(TestCase):
    def setUp(self):
        self.level = LevelFactory(name="Junior Jazz")
        self.monday = ClassTemplateFactory(level=self.level, day_of_week=0, name="Jazz Monday")
        self.wednesday = ClassTemplateFactory(level=self.level, day_of_week=2, name="Jazz Wednesday")
        self.student = StudentFactory(level=self.level)
        self.old = EnrolmentFactory(
            student=self.student,
            template=self.monday,
            plan=EnrolmentPlanFactory(weekly=True),
            start_date=d(2026, 1, 5),
            paid_through_date=d(2026, 3, 30),
        )

    def move(self, plan, effective_date=TODAY, **kwargs):
        with freeze_today(TODAY):
            return move_student_to_class(
                self.student.pk,
                self.monday.pk,
                self.wednesday.pk,
                plan.pk,
                effective_date,
                **kwargs,
            )

    def test_move_to_dearer_plan_raises_charge_invoice(self):
        plan = EnrolmentPlanFactory(weekly=True, level=self.level, price_cents=5000)
        result = self.move(plan)
        self.assertTrue(result.ok, result.message)

        new = Enrolment.objects.get(pk=result.data["new_enrolment_id"])
        self.assertEqual(new.start_date, d(2026, 2, 4))
        self.assertEqual(new.billing_group_id, self.old.pk)
        self.assertEqual(new.paid_through_date, d(2026, 3, 30))

        self.old.refresh_from_db()
        self.assertEqual(self.old.status, EnrolmentStatus.CHANGEOVER)
        self.assertEqual(self.old.end_date, d(2026, 2, 3))
        self.assertIsNone(self.old.cancelled_at)

        invoice = Invoice.objects.get(pk=result.data["adjustment_invoice_id"])
        self.assertEqual(invoice.status, InvoiceStatus.SENT)
        self.assertEqual(invoice.amount_cents, 20000)
        line = invoice.line_items.get()
        self.assertEqual(line.kind, LineItemKind.CLASS_CHANGE)
        self.assertEqual(line.description, "Class change to Jazz Wednesday")
        self.assertIsNone(result.data["credit_invoice_id"])
        self.assertTrue(
            EnrolmentCoverageAudit.objects.filter(enrolment=new, reason=CoverageAuditReason.CLASS_MOVE).exists()
        )

    def test_move_to_cheaper_plan_issues_credit(self):
        plan = EnrolmentPlanFactory(weekly=True, level=self.level, price_cents=1250)
        result = self.move(plan)
        self.assertTrue(result.ok, result.message)

        invoice = Invoice.objects.get(pk=result.data["credit_invoice_id"])
        self.assertEqual(invoice.status, InvoiceStatus.PAID)
        self.assertEqual(invoice.amount_cents, -10000)
        self.assertEqual(invoice.line_items.get().kind, LineItemKind.CREDIT)
        payment = invoice.payments.get()
        self.assertEqual(payment.pk, result.data["payment_id"])
        self.assertEqual(payment.method, PaymentMethod.CREDIT)
        self.assertEqual(payment.amount_cents, 10000)

    def test_same_price_needs_no_settlement(self):
        plan = EnrolmentPlanFactory(weekly=True, level=self.level, price_cents=2500)
        result = self.move(plan)
        self.assertTrue(result.ok, result.message)
        self.assertIsNone(result.data["adjustment_invoice_id"])
        self.assertIsNone(result.data["credit_invoice_id"])

    def test_full_destination_is_rejected_unless_overloaded(self):
        self.wednesday.capacity = 1
        self.wednesday.save()
        EnrolmentFactory(template=self.wednesday, start_date=d(2026, 1, 7))
        plan = EnrolmentPlanFactory(weekly=True, level=self.level, price_cents=2500)

        result = self.move(plan)
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "CAPACITY_EXCEEDED")
        self.assertEqual(result.details["capacity"], 1)
        self.assertEqual(result.details["projected_count"], 2)

        overloaded = self.move(plan, allow_overload=True)
        self.assertTrue(overloaded.ok, overloaded.message)

    def test_backdated_move_over_paid_coverage_is_refused(self):
        plan = EnrolmentPlanFactory(weekly=True, level=self.level, price_cents=2500)
        result = self.move(plan, effective_date=d(2026, 1, 12))
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "CONSISTENCY_ERROR")
        self.assertEqual(Enrolment.objects.filter(student=self.student).count(), 1)
        self.old.refresh_from_db()
        self.assertEqual(self.old.status, EnrolmentStatus.ACTIVE)

    def test_validation_failures(self):
        other_level = EnrolmentPlanFactory(weekly=True, level=LevelFactory(name="Senior Ballet"))
        self.assertEqual(self.move(other_level).code, "VALIDATION_ERROR")

        plan = EnrolmentPlanFactory(weekly=True, level=self.level)
        with freeze_today(TODAY):
            result = move_student_to_class(
                self.student.pk, self.monday.pk, self.monday.pk, plan.pk, TODAY
            )
        self.assertEqual(result.code, "VALIDATION_ERROR")
        self.assertEqual(Enrolment.objects.filter(student=self.student).count(), 1)

    def test_unknown_plan_is_a_validation_error(self):
        result = self.move(EnrolmentPlanFactory.build(pk=999999))
        self.assertEqual(result.code, "VALIDATION_ERROR")

    def test_per_class_move_carries_coverage_as_credits(self):
        old = EnrolmentFactory(template=ClassTemplateFactory(level=self.level, day_of_week=0))
        append_event(old, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(TODAY):
            before = refresh_snapshot(old.pk)
            result = move_student_to_class(
                old.student_id,
                old.template_id,
                self.wednesday.pk,
                EnrolmentPlanFactory(level=self.level).pk,
                TODAY,
            )
            self.assertTrue(result.ok, result.message)
            carried = refresh_snapshot(result.data["new_enrolment_id"])

        self.assertEqual(before.paid_through_date, d(2026, 3, 9))
        self.assertEqual(total_balance(old), 0)
        self.assertEqual(carried.credit_balance, 5)
        self.assertEqual(carried.paid_through_date, d(2026, 3, 4))

    def test_move_endpoint(self):
        client = APIClient()
        client.force_authenticate(AdminUserFactory())
        plan = EnrolmentPlanFactory(weekly=True, level=self.level, price_cents=2500)
        with freeze_today(TODAY):
            response = client.post(
                "/api/enrolments/move/",
                {
                    "student_id": self.student.pk,
                    "from_template_id": self.monday.pk,
                    "to_template_id": self.wednesday.pk,
                    "plan_id": plan.pk,
                    "effective_date": "2026-02-02",
                },
                format="json",
            )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["old_enrolment_id"], self.old.pk)
        self.assertEqual(response.data["family_id"], self.student.family_id)


class LifecycleTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0)
        self.student = StudentFactory()

    def test_enrol_refreshes_snapshot(self):
        plan = EnrolmentPlanFactory(weekly=True)
        with freeze_today(TODAY):
            result = enrol_student(
                self.student.pk, self.template.pk, plan.pk, TODAY, paid_through_date=d(2026, 2, 23)
            )
        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.data["snapshot"].next_payment_due_date, d(2026, 3, 2))
        self.assertEqual(list(result.data["enrolment"].assigned_templates()), [self.template])

    def test_enrol_respects_capacity(self):
        self.template.capacity = 1
        self.template.save()
        EnrolmentFactory(template=self.template, start_date=d(2026, 1, 5))
        with freeze_today(TODAY):
            result = enrol_student(self.student.pk, self.template.pk, EnrolmentPlanFactory().pk, TODAY)
        self.assertEqual(result.code, "CAPACITY_EXCEEDED")

    def test_pause_freezes_and_resume_skips_paused_weeks(self):
        enrolment = EnrolmentFactory(student=self.student, template=self.template)
        append_event(enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(TODAY):
            paused = pause_enrolment(enrolment.pk, d(2026, 2, 3), reason="Injury")
        self.assertTrue(paused.ok, paused.message)
        self.assertEqual(paused.data["enrolment"].status, EnrolmentStatus.PAUSED)

        with freeze_today(d(2026, 2, 23)):
            resumed = resume_enrolment(enrolment.pk)
        self.assertTrue(resumed.ok, resumed.message)
        # 02-09 and 02-16 fall inside the pause, so the five remaining credits run from 02-23.
        self.assertEqual(resumed.data["snapshot"].credit_balance, 4)
        self.assertEqual(resumed.data["snapshot"].paid_through_date, d(2026, 3, 23))
        self.assertEqual(
            list(enrolment.status_logs.values_list("new_status", flat=True).order_by("pk")),
            [EnrolmentStatus.PAUSED, EnrolmentStatus.ACTIVE],
        )

    def test_cancel_is_terminal(self):
        enrolment = EnrolmentFactory(student=self.student, template=self.template)
        with freeze_today(TODAY):
            result = cancel_enrolment(enrolment.pk, d(2026, 2, 20), reason="Moving away")
            again = cancel_enrolment(enrolment.pk)
        self.assertTrue(result.ok, result.message)
        enrolment.refresh_from_db()
        self.assertEqual(enrolment.status, EnrolmentStatus.CANCELLED)
        self.assertEqual(enrolment.end_date, d(2026, 2, 20))
        self.assertIsNotNone(enrolment.cancelled_at)
        self.assertEqual(again.code, "VALIDATION_ERROR")

    def test_resume_requires_pause(self):
        enrolment = EnrolmentFactory(student=self.student, template=self.template)
        self.assertEqual(resume_enrolment(enrolment.pk, TODAY).code, "VALIDATION_ERROR")


class ManualPaidThroughTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0)

    def test_per_class_edit_adds_matching_credits(self):
        enrolment = EnrolmentFactory(template=self.template)
        append_event(enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(TODAY):
            result = update_paid_through_date(enrolment.pk, d(2026, 3, 23), note="Goodwill")
        self.assertTrue(result.ok, result.message)
        snapshot = result.data["snapshot"]
        self.assertEqual(snapshot.credit_balance, 7)
        self.assertEqual(snapshot.paid_through_date, d(2026, 3, 23))
        audit = EnrolmentCoverageAudit.objects.get(
            enrolment=enrolment, reason=CoverageAuditReason.PAIDTHROUGH_MANUAL_EDIT
        )
        self.assertEqual(audit.new_paid_through_date, d(2026, 3, 23))
        self.assertEqual(audit.new_credits, 7)

    def test_per_class_edit_can_remove_credits(self):
        enrolment = EnrolmentFactory(template=self.template)
        append_event(enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(TODAY):
            result = update_paid_through_date(enrolment.pk, d(2026, 2, 16))
        self.assertEqual(result.data["snapshot"].credit_balance, 2)
        self.assertEqual(result.data["snapshot"].paid_through_date, d(2026, 2, 16))

    def test_per_week_edit_sets_date(self):
        enrolment = EnrolmentFactory(template=self.template, plan=EnrolmentPlanFactory(weekly=True))
        with freeze_today(TODAY):
            result = update_paid_through_date(enrolment.pk, d(2026, 4, 6))
        enrolment.refresh_from_db()
        self.assertEqual(enrolment.paid_through_date, d(2026, 4, 6))
        self.assertEqual(result.data["snapshot"].next_payment_due_date, d(2026, 4, 13))

    def test_rejects_dates_before_enrolment(self):
        enrolment = EnrolmentFactory(template=self.template)
        result = update_paid_through_date(enrolment.pk, d(2025, 12, 1))
        self.assertEqual(result.code, "VALIDATION_ERROR")


class PlanImmutabilityTests(TestCase):
    def test_invoiced_plan_billing_terms_are_locked(self):
        enrolment = EnrolmentFactory()
        create_enrolment_invoice(enrolment, today=TODAY)
        plan = enrolment.plan
        plan.name = "Renamed"
        plan.full_clean()

        plan.price_cents = 1
        with self.assertRaises(ValidationError) as ctx:
            plan.full_clean()
        self.assertIn("price_cents", ctx.exception.message_dict)

    def test_uninvoiced_plan_can_change(self):
        plan = EnrolmentPlanFactory()
        plan.price_cents = 1
        plan.full_clean()


class RefreshCommandTests(TestCase):
    def test_refreshes_active_enrolments(self):
        from io import StringIO

        from django.core.management import call_command

        enrolment = EnrolmentFactory(template=ClassTemplateFactory(day_of_week=0))
        append_event(enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        EnrolmentFactory(status=EnrolmentStatus.CANCELLED)
        out = StringIO()
        with freeze_today(TODAY):
            call_command("refresh_enrolment_billing", stdout=out)
        self.assertIn("Refreshed 1 active enrolments.", out.getvalue())
        enrolment.refresh_from_db()
        self.assertEqual(enrolment.paid_through_date_computed, d(2026, 3, 9))

    def test_single_enrolment_report(self):
        from io import StringIO

        from django.core.management import call_command

        enrolment = EnrolmentFactory(template=ClassTemplateFactory(day_of_week=0))
        out = StringIO()
        with freeze_today(TODAY):
            call_command("refresh_enrolment_billing", "--enrolment", str(enrolment.pk), stdout=out)
        self.assertIn(f"#{enrolment.pk}: paid through None, next due 2026-02-09, credits -5", out.getvalue())


class EnrolmentFactoryTests(TestCase):
    def test_assigned_templates_are_saved_without_extra_save(self):
        extra = ClassTemplateFactory(day_of_week=2)
        with warnings.catch_warnings():
            warnings.filterwarnings("error", message=".*_after_postgeneration.*")
            enrolment = EnrolmentFactory(assigned=[extra])
        self.assertEqual([t.pk for t in enrolment.assigned_templates()], [enrolment.template_id, extra.pk])
