import datetime
from types import SimpleNamespace

from django.test import SimpleTestCase, TestCase

from apps.billing.coverage import (
    BillingSnapshot,
    calculate_paid_through_date,
    resolve_weekly_coverage_window,
)
from apps.billing.invoicing import create_enrolment_invoice, record_payment
from apps.billing.ledger import append_event, balance_as_of, ensure_consumption_events, total_balance
from apps.billing.models import CreditEventType, EnrolmentCreditEvent, InvoiceStatus
from apps.billing.occurrences import (
    Exclusions,
    HolidayRange,
    TemplateSchedule,
    count_occurrences_between,
    list_enrolment_occurrences,
    list_occurrences,
)
from apps.billing.proration import (
    calculate_away_delta_days,
    cancellation_delta_days,
    compute_move_adjustment,
    compute_prorated_paid_through,
    count_missed_occurrences,
    plan_unit_price_cents,
)
from apps.billing.services import (
    get_billing_status_for_enrolments,
    get_enrolment_billing_status,
    refresh_snapshot,
    register_credit_consumption_for_date,
)
from apps.classes.models import Holiday
from apps.classes.services import cancel_class_occurrence, uncancel_class_occurrence
from apps.common.exceptions import InvalidInput
from apps.common.factories import (
    ClassCancellationFactory,
    ClassTemplateFactory,
    EnrolmentFactory,
    EnrolmentPlanFactory,
)
from apps.common.testing import freeze_today
from apps.enrolments.models import EnrolmentStatus

d = datetime.date
MONDAY = TemplateSchedule(template_id=1, day_of_week=0)
WEDNESDAY = TemplateSchedule(template_id=2, day_of_week=2)


def plan(billing_type, price_cents, sessions_per_week=1, block_class_count=None):
    return SimpleNamespace(
        billing_type=billing_type,
        price_cents=price_cents,
        sessions_per_week=sessions_per_week,
        block_class_count=block_class_count,
    )


class OccurrenceResolverTests(SimpleTestCase):
    def test_lists_weekday_dates_inside_window(self):
        dates = list_occurrences(MONDAY, d(2026, 1, 1), d(2026, 1, 31))
        self.assertEqual(dates, [d(2026, 1, 5), d(2026, 1, 12), d(2026, 1, 19), d(2026, 1, 26)])

    def test_template_without_weekday_has_no_occurrences(self):
        template = TemplateSchedule(template_id=3, day_of_week=None)
        self.assertEqual(list_occurrences(template, d(2026, 1, 1), d(2026, 12, 31)), [])

    def test_template_dates_narrow_the_window(self):
        template = TemplateSchedule(
            template_id=4, day_of_week=0, start_date=d(2026, 1, 12), end_date=d(2026, 1, 20)
        )
        self.assertEqual(
            list_occurrences(template, d(2026, 1, 1), d(2026, 3, 1)),
            [d(2026, 1, 12), d(2026, 1, 19)],
        )

    def test_holiday_scope(self):
        level_template = TemplateSchedule(template_id=5, day_of_week=0, level_id=7)
        exclusions = Exclusions(
            holidays=[
                HolidayRange(d(2026, 1, 5), d(2026, 1, 5)),
                HolidayRange(d(2026, 1, 12), d(2026, 1, 12), level_id=8),
                HolidayRange(d(2026, 1, 19), d(2026, 1, 19), level_id=7),
            ]
        )
        self.assertEqual(
            list_occurrences(level_template, d(2026, 1, 1), d(2026, 1, 31), exclusions),
            [d(2026, 1, 12), d(2026, 1, 26)],
        )

    def test_cancellation_only_excludes_its_template(self):
        exclusions = Exclusions(cancellations={(1, d(2026, 1, 12))})
        merged = list_enrolment_occurrences(
            [MONDAY, WEDNESDAY], d(2026, 1, 12), d(2026, 1, 18), exclusions
        )
        self.assertEqual([(o.date, o.template_id) for o in merged], [(d(2026, 1, 14), 2)])

    def test_open_window_stops_at_lookahead_cap(self):
        dates = list_occurrences(MONDAY, d(2026, 1, 5))
        self.assertEqual(len(dates), 521)
        self.assertEqual(dates[-1], d(2026, 1, 5) + datetime.timedelta(weeks=520))

    def test_count_between_is_exclusive_then_inclusive(self):
        self.assertEqual(count_occurrences_between([MONDAY], d(2026, 1, 5), d(2026, 1, 26)), 3)
        self.assertEqual(count_occurrences_between([MONDAY], d(2026, 1, 26), d(2026, 1, 5)), 0)


class PaidThroughTests(SimpleTestCase):
    def test_without_holidays(self):
        result = calculate_paid_through_date(d(2026, 1, 12), 8, 0)
        self.assertEqual(result.paid_through_date, d(2026, 3, 2))
        self.assertEqual(result.next_due_date, d(2026, 3, 9))

    def test_holiday_pushes_paid_through_one_week(self):
        result = calculate_paid_through_date(d(2026, 1, 12), 8, 0, holidays=[d(2026, 1, 26)])
        self.assertEqual(result.paid_through_date, d(2026, 3, 9))

    def test_custom_credit_count(self):
        result = calculate_paid_through_date(d(2026, 1, 12), 11, 0)
        self.assertEqual(result.paid_through_date, d(2026, 3, 23))

    def test_exhausted_credits_give_next_due_and_no_paid_through(self):
        for credits in (0, -3):
            result = calculate_paid_through_date(d(2026, 1, 12), credits, 0)
            self.assertIsNone(result.paid_through_date)
            self.assertEqual(result.next_due_date, d(2026, 1, 12))
            self.assertEqual(result.remaining_credits, credits)

    def test_no_schedule(self):
        result = calculate_paid_through_date(d(2026, 1, 12), 8, None)
        self.assertIsNone(result.paid_through_date)
        self.assertIsNone(result.next_due_date)

    def test_end_date_caps_coverage(self):
        result = calculate_paid_through_date(d(2026, 1, 12), 8, 0, end_date=d(2026, 1, 31))
        self.assertEqual(result.paid_through_date, d(2026, 1, 26))
        self.assertIsNone(result.next_due_date)
        self.assertEqual(result.remaining_credits, 5)

    def test_overdue_flag(self):
        snapshot = BillingSnapshot(
            enrolment_id=1,
            billing_type="PER_CLASS",
            paid_through_date=None,
            next_payment_due_date=d(2026, 2, 9),
            remaining_credits=-1,
            credit_balance=-1,
            covered_occurrences=0,
            sessions_per_week=1,
            as_of=d(2026, 2, 2),
        )
        self.assertTrue(snapshot.is_overdue)


class WeeklyCoverageWindowTests(SimpleTestCase):
    def test_new_purchase_starts_at_enrolment_start(self):
        window = resolve_weekly_coverage_window(
            [MONDAY],
            enrolment_start=d(2026, 2, 2),
            paid_through_date=None,
            duration_weeks=8,
            sessions_per_week=1,
            today=d(2026, 2, 2),
        )
        self.assertEqual(window.coverage_start, d(2026, 2, 2))
        self.assertEqual(window.coverage_end, d(2026, 3, 23))

    def test_pay_ahead_continues_after_paid_through(self):
        window = resolve_weekly_coverage_window(
            [MONDAY],
            enrolment_start=d(2026, 1, 5),
            paid_through_date=d(2026, 3, 9),
            duration_weeks=8,
            sessions_per_week=1,
            today=d(2026, 2, 2),
        )
        self.assertEqual(window.coverage_start, d(2026, 3, 16))
        self.assertEqual(window.coverage_end, d(2026, 5, 4))

    def test_holiday_extends_window(self):
        window = resolve_weekly_coverage_window(
            [MONDAY],
            enrolment_start=d(2026, 1, 5),
            paid_through_date=d(2026, 3, 9),
            duration_weeks=2,
            sessions_per_week=1,
            today=d(2026, 2, 2),
            exclusions=Exclusions(holidays=[HolidayRange(d(2026, 3, 23), d(2026, 3, 23))]),
        )
        self.assertEqual(window.coverage_end, d(2026, 3, 30))

    def test_duplicate_weekdays_are_collapsed(self):
        window = resolve_weekly_coverage_window(
            [MONDAY, TemplateSchedule(template_id=9, day_of_week=0), WEDNESDAY],
            enrolment_start=d(2026, 1, 5),
            paid_through_date=None,
            duration_weeks=1,
            sessions_per_week=2,
            today=d(2026, 1, 5),
        )
        self.assertEqual(window.coverage_end, d(2026, 1, 7))

    def test_requires_duration(self):
        with self.assertRaises(ValueError):
            resolve_weekly_coverage_window(
                [MONDAY],
                enrolment_start=d(2026, 1, 5),
                paid_through_date=None,
                duration_weeks=0,
                sessions_per_week=1,
                today=d(2026, 1, 5),
            )


class ProrationTests(SimpleTestCase):
    def test_cancellation_delta_days(self):
        self.assertEqual(cancellation_delta_days(0, d(2026, 1, 12)), 7)
        self.assertEqual(cancellation_delta_days(2, d(2026, 1, 12)), 2)
        self.assertEqual(cancellation_delta_days(None, d(2026, 1, 12)), 7)

    def test_unit_prices(self):
        self.assertEqual(plan_unit_price_cents(plan("PER_WEEK", 5000, sessions_per_week=2)), 2500)
        self.assertEqual(plan_unit_price_cents(plan("PER_CLASS", 20000, block_class_count=10)), 2000)

    def test_cheaper_destination_extends_paid_through(self):
        result = compute_prorated_paid_through(
            d(2026, 1, 1), d(2026, 1, 15), plan("PER_WEEK", 200), plan("PER_WEEK", 100), [MONDAY]
        )
        self.assertEqual(result, d(2026, 1, 29))

    def test_dearer_destination_shortens_paid_through(self):
        result = compute_prorated_paid_through(
            d(2026, 1, 1), d(2026, 1, 15), plan("PER_WEEK", 100), plan("PER_WEEK", 200), [MONDAY]
        )
        self.assertEqual(result, d(2026, 1, 8))

    def test_per_class_destination_rounds_to_next_class(self):
        result = compute_prorated_paid_through(
            d(2026, 1, 1),
            d(2026, 1, 15),
            plan("PER_CLASS", 200, block_class_count=4),
            plan("PER_CLASS", 100, block_class_count=4),
            [MONDAY],
        )
        self.assertEqual(result, d(2026, 2, 2))

    def test_nothing_left_to_prorate(self):
        self.assertIsNone(
            compute_prorated_paid_through(d(2026, 1, 1), None, plan("PER_WEEK", 1), plan("PER_WEEK", 1))
        )
        self.assertEqual(
            compute_prorated_paid_through(
                d(2026, 1, 20), d(2026, 1, 15), plan("PER_WEEK", 1), plan("PER_WEEK", 2)
            ),
            d(2026, 1, 15),
        )

    def test_move_adjustment_charges_for_lost_classes(self):
        adjustment = compute_move_adjustment(
            d(2026, 3, 30), d(2026, 3, 3), [WEDNESDAY], plan("PER_WEEK", 5000)
        )
        self.assertFalse(adjustment.is_credit)
        self.assertEqual(adjustment.occurrences, 4)
        self.assertEqual(adjustment.amount_cents, 20000)

    def test_move_adjustment_rounds_half_up(self):
        adjustment = compute_move_adjustment(
            d(2026, 1, 5), d(2026, 1, 12), [MONDAY], plan("PER_WEEK", 1001, sessions_per_week=2)
        )
        self.assertTrue(adjustment.is_credit)
        self.assertEqual(adjustment.occurrences, 1)
        self.assertEqual(adjustment.amount_cents, 501)

    def test_single_weekly_class_shifts_by_whole_weeks(self):
        missed = count_missed_occurrences([MONDAY], d(2026, 1, 5), d(2026, 1, 11), d(2026, 1, 1), None)
        self.assertEqual(missed, 1)
        self.assertEqual(calculate_away_delta_days(d(2026, 1, 12), missed, [MONDAY]), 7)

    def test_multi_class_shift_lands_on_nth_occurrence(self):
        templates = [MONDAY, WEDNESDAY]
        missed = count_missed_occurrences(templates, d(2026, 1, 5), d(2026, 1, 11), d(2026, 1, 1), None)
        self.assertEqual(missed, 2)
        self.assertEqual(calculate_away_delta_days(d(2026, 1, 7), missed, templates), 7)

    def test_weekly_shift_skips_holiday_after_paid_through(self):
        exclusions = Exclusions(holidays=[HolidayRange(d(2026, 3, 9), d(2026, 3, 9))])
        self.assertEqual(calculate_away_delta_days(d(2026, 3, 2), 2, [MONDAY]), 14)
        self.assertEqual(calculate_away_delta_days(d(2026, 3, 2), 2, [MONDAY], exclusions=exclusions), 21)

    def test_holiday_in_away_range_is_not_missed(self):
        exclusions = Exclusions(holidays=[HolidayRange(d(2026, 1, 12), d(2026, 1, 12))])
        missed = count_missed_occurrences(
            [MONDAY], d(2026, 1, 12), d(2026, 1, 18), d(2026, 1, 1), None, exclusions
        )
        self.assertEqual(missed, 0)


class PerClassSnapshotTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0, start_date=d(2026, 1, 1))
        self.enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 1, 5))
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))

    def test_snapshot_consumes_past_classes_and_walks_forward(self):
        with freeze_today(d(2026, 2, 2)):
            snapshot = get_enrolment_billing_status(self.enrolment.pk)
        self.assertEqual(snapshot.credit_balance, 5)
        self.assertEqual(snapshot.paid_through_date, d(2026, 3, 9))
        self.assertEqual(snapshot.next_payment_due_date, d(2026, 3, 16))
        self.assertFalse(snapshot.is_overdue)

        self.enrolment.refresh_from_db()
        self.assertEqual(self.enrolment.credits_balance_cached, 5)
        self.assertEqual(self.enrolment.paid_through_date_computed, d(2026, 3, 9))
        self.assertEqual(self.enrolment.next_due_date_computed, d(2026, 3, 16))

    def test_consumption_backfill_is_idempotent(self):
        self.assertEqual(ensure_consumption_events(self.enrolment, d(2026, 2, 2)), 5)
        self.assertEqual(ensure_consumption_events(self.enrolment, d(2026, 2, 2)), 0)
        consumed = EnrolmentCreditEvent.objects.filter(
            enrolment=self.enrolment, event_type=CreditEventType.CONSUME
        )
        self.assertEqual(consumed.count(), 5)
        self.assertEqual(total_balance(self.enrolment), 5)

    def test_future_as_of_projects_the_same_paid_through(self):
        with freeze_today(d(2026, 2, 2)):
            snapshot = get_enrolment_billing_status(self.enrolment.pk, d(2026, 2, 16))
        self.assertEqual(snapshot.credit_balance, 3)
        self.assertEqual(snapshot.paid_through_date, d(2026, 3, 9))
        self.enrolment.refresh_from_db()
        self.assertEqual(self.enrolment.credits_balance_cached, 5)
        self.assertFalse(
            EnrolmentCreditEvent.objects.filter(occurred_on__gt=d(2026, 2, 2)).exists()
        )

    def test_holiday_moves_paid_through(self):
        Holiday.objects.create(name="Show week", start_date=d(2026, 2, 16), end_date=d(2026, 2, 16))
        with freeze_today(d(2026, 2, 2)):
            snapshot = refresh_snapshot(self.enrolment.pk)
        self.assertEqual(snapshot.paid_through_date, d(2026, 3, 16))

    def test_exhausted_credits_are_overdue(self):
        enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 1, 5))
        with freeze_today(d(2026, 2, 2)):
            snapshot = get_enrolment_billing_status(enrolment.pk)
        self.assertEqual(snapshot.credit_balance, -5)
        self.assertIsNone(snapshot.paid_through_date)
        self.assertEqual(snapshot.next_payment_due_date, d(2026, 2, 9))
        self.assertTrue(snapshot.is_overdue)

    def test_no_schedule(self):
        template = ClassTemplateFactory(day_of_week=None)
        enrolment = EnrolmentFactory(template=template, start_date=d(2026, 1, 5))
        append_event(enrolment, CreditEventType.PURCHASE, 4, d(2026, 1, 5))
        with freeze_today(d(2026, 2, 2)):
            snapshot = get_enrolment_billing_status(enrolment.pk)
        self.assertIsNone(snapshot.paid_through_date)
        self.assertIsNone(snapshot.next_payment_due_date)
        self.assertEqual(snapshot.credit_balance, 4)

    def test_paused_enrolment_returns_frozen_snapshot(self):
        with freeze_today(d(2026, 2, 2)):
            refresh_snapshot(self.enrolment.pk)
        self.enrolment.refresh_from_db()
        self.enrolment.status = EnrolmentStatus.PAUSED
        self.enrolment.save(update_fields=["status"])
        with freeze_today(d(2026, 3, 2)):
            snapshot = get_enrolment_billing_status(self.enrolment.pk)
        self.assertEqual(snapshot.credit_balance, 5)
        self.assertEqual(snapshot.paid_through_date, d(2026, 3, 9))

    def test_batch_skips_unknown_ids(self):
        with freeze_today(d(2026, 2, 2)):
            snapshots = get_billing_status_for_enrolments([self.enrolment.pk, 999999, self.enrolment.pk])
        self.assertEqual(list(snapshots), [self.enrolment.pk])


class LedgerTests(TestCase):
    def setUp(self):
        self.enrolment = EnrolmentFactory(template__day_of_week=None)

    def test_balance_as_of_only_counts_events_on_or_before(self):
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        append_event(self.enrolment, CreditEventType.MANUAL_ADJUST, -2, d(2026, 2, 1))
        append_event(self.enrolment, CreditEventType.CANCELLATION_CREDIT, 1, d(2026, 1, 20))
        self.assertEqual(balance_as_of(self.enrolment, d(2026, 1, 4)), 0)
        self.assertEqual(balance_as_of(self.enrolment, d(2026, 1, 20)), 11)
        self.assertEqual(balance_as_of(self.enrolment, d(2026, 2, 1)), 9)

    def test_backdated_event_changes_history_only_from_its_date(self):
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 2, 1))
        before = balance_as_of(self.enrolment, d(2026, 1, 15))
        append_event(self.enrolment, CreditEventType.MANUAL_ADJUST, 3, d(2026, 1, 10))
        self.assertEqual(before, 0)
        self.assertEqual(balance_as_of(self.enrolment, d(2026, 1, 15)), 3)
        self.assertEqual(
            list(EnrolmentCreditEvent.objects.order_by("pk").values_list("occurred_on", flat=True)),
            [d(2026, 2, 1), d(2026, 1, 10)],
        )

    def test_append_returns_new_balance(self):
        self.assertEqual(append_event(self.enrolment, CreditEventType.PURCHASE, 4, d(2026, 1, 5)), 4)

    def test_rejects_zero_and_unknown_events(self):
        with self.assertRaises(InvalidInput):
            append_event(self.enrolment, CreditEventType.PURCHASE, 0, d(2026, 1, 5))
        with self.assertRaises(InvalidInput):
            append_event(self.enrolment, "REFUND", 1, d(2026, 1, 5))


class AttendanceConsumptionTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0, start_date=d(2026, 1, 1))
        self.enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 2, 2))
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 2, 2))

    def test_attendance_records_one_consumption(self):
        from apps.attendance.models import Attendance

        with freeze_today(d(2026, 2, 2)):
            attendance = Attendance.objects.create(
                template=self.template, date=d(2026, 2, 2), student=self.enrolment.student
            )
            attendance.status = "LATE"
            attendance.save()
            refresh_snapshot(self.enrolment.pk)

        consumed = EnrolmentCreditEvent.objects.filter(
            enrolment=self.enrolment, event_type=CreditEventType.CONSUME
        )
        self.assertEqual(consumed.count(), 1)
        self.assertEqual(consumed.get().attendance, attendance)

    def test_cancelled_occurrence_is_not_consumed(self):
        ClassCancellationFactory(template=self.template, date=d(2026, 2, 9))
        with freeze_today(d(2026, 2, 2)):
            result = register_credit_consumption_for_date(
                self.template.pk, self.enrolment.student_id, d(2026, 2, 9)
            )
        self.assertIsNone(result)

    def test_per_week_enrolments_are_ignored(self):
        weekly = EnrolmentFactory(
            template=self.template, plan=EnrolmentPlanFactory(weekly=True), start_date=d(2026, 2, 2)
        )
        with freeze_today(d(2026, 2, 2)):
            result = register_credit_consumption_for_date(self.template.pk, weekly.student_id, d(2026, 2, 2))
        self.assertIsNone(result)


class CancellationCreditTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0, start_date=d(2026, 1, 1))

    def test_per_class_round_trip_restores_snapshot(self):
        enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 1, 5))
        append_event(enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(d(2026, 2, 2)):
            before = refresh_snapshot(enrolment.pk)
            result = cancel_class_occurrence(self.template.pk, d(2026, 2, 9), reason="Flood")
            self.assertTrue(result.ok, result.message)
            credited = get_enrolment_billing_status(enrolment.pk)
            removed = uncancel_class_occurrence(self.template.pk, d(2026, 2, 9))
            self.assertTrue(removed.ok, removed.message)
            after = get_enrolment_billing_status(enrolment.pk)

        self.assertEqual(credited.credit_balance, 6)
        self.assertEqual(credited.paid_through_date, d(2026, 3, 23))
        self.assertEqual(after, before)

    def test_per_week_round_trip_restores_snapshot(self):
        enrolment = EnrolmentFactory(
            template=self.template,
            plan=EnrolmentPlanFactory(weekly=True),
            start_date=d(2026, 1, 5),
            paid_through_date=d(2026, 3, 2),
        )
        with freeze_today(d(2026, 2, 2)):
            before = refresh_snapshot(enrolment.pk)
            cancel_class_occurrence(self.template.pk, d(2026, 2, 9))
            credited = get_enrolment_billing_status(enrolment.pk)
            uncancel_class_occurrence(self.template.pk, d(2026, 2, 9))
            after = get_enrolment_billing_status(enrolment.pk)

        self.assertEqual(before.paid_through_date, d(2026, 3, 2))
        self.assertEqual(credited.paid_through_date, d(2026, 3, 9))
        self.assertEqual(credited.next_payment_due_date, d(2026, 3, 16))
        self.assertEqual(after, before)

    def test_per_week_round_trip_without_explicit_paid_through(self):
        enrolment = EnrolmentFactory(
            template=self.template,
            plan=EnrolmentPlanFactory(weekly=True),
            start_date=d(2026, 1, 5),
        )
        with freeze_today(d(2026, 2, 2)):
            before = refresh_snapshot(enrolment.pk)
            cancel_class_occurrence(self.template.pk, d(2026, 2, 9))
            credited = get_enrolment_billing_status(enrolment.pk)
            uncancel_class_occurrence(self.template.pk, d(2026, 2, 9))
            after = get_enrolment_billing_status(enrolment.pk)

        self.assertEqual(before.paid_through_date, d(2026, 1, 5))
        self.assertEqual(credited.paid_through_date, d(2026, 1, 12))
        self.assertEqual(credited.next_payment_due_date, d(2026, 1, 19))
        self.assertEqual(after, before)
        enrolment.refresh_from_db()
        self.assertIsNone(enrolment.paid_through_date)

    def test_repeat_cancellation_does_not_double_credit(self):
        enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 1, 5))
        with freeze_today(d(2026, 2, 2)):
            cancel_class_occurrence(self.template.pk, d(2026, 2, 9))
            result = cancel_class_occurrence(self.template.pk, d(2026, 2, 9))
        self.assertEqual(result.data["adjustments"], [])
        self.assertEqual(
            EnrolmentCreditEvent.objects.filter(
                enrolment=enrolment, event_type=CreditEventType.CANCELLATION_CREDIT
            ).count(),
            1,
        )


class InvoiceApplicationTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0, start_date=d(2026, 1, 1))

    def test_paid_block_invoice_purchases_credits_once(self):
        enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 2, 2))
        with freeze_today(d(2026, 2, 2)):
            invoice = create_enrolment_invoice(enrolment)
            self.assertEqual(invoice.credits_purchased, 10)
            result = record_payment(invoice.pk, invoice.amount_cents)
            again = record_payment(invoice.pk, 100)

        self.assertTrue(result.ok)
        self.assertTrue(again.ok)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.PAID)
        self.assertEqual(
            EnrolmentCreditEvent.objects.filter(
                enrolment=enrolment, event_type=CreditEventType.PURCHASE
            ).count(),
            1,
        )
        self.assertEqual(result.data["snapshot"].paid_through_date, d(2026, 4, 6))

    def test_paid_weekly_invoice_advances_paid_through(self):
        enrolment = EnrolmentFactory(
            template=self.template, plan=EnrolmentPlanFactory(weekly=True), start_date=d(2026, 2, 2)
        )
        with freeze_today(d(2026, 2, 2)):
            invoice = create_enrolment_invoice(enrolment)
            record_payment(invoice.pk, invoice.amount_cents)

        self.assertEqual(invoice.coverage_end, d(2026, 4, 6))
        enrolment.refresh_from_db()
        self.assertEqual(enrolment.paid_through_date, d(2026, 4, 6))
        self.assertEqual(enrolment.next_due_date_computed, d(2026, 4, 13))

    def test_partial_payment_leaves_invoice_open(self):
        enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 2, 2))
        with freeze_today(d(2026, 2, 2)):
            invoice = create_enrolment_invoice(enrolment)
            result = record_payment(invoice.pk, 500)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.SENT)
        self.assertIsNone(result.data["snapshot"])

    def test_rejects_non_positive_payment(self):
        enrolment = EnrolmentFactory(template=self.template)
        invoice = create_enrolment_invoice(enrolment, today=d(2026, 2, 2))
        result = record_payment(invoice.pk, 0)
        self.assertFalse(result.ok)
        self.assertEqual(result.code, "VALIDATION_ERROR")


class BillingApiTests(TestCase):
    def setUp(self):
        from rest_framework.test import APIClient

        from apps.common.factories import AdminUserFactory

        self.client = APIClient()
        self.client.force_authenticate(AdminUserFactory())
        self.template = ClassTemplateFactory(day_of_week=0, start_date=d(2026, 1, 1))
        self.enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 1, 5))
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))

    def test_status_endpoint(self):
        with freeze_today(d(2026, 2, 2)):
            response = self.client.get(f"/api/billing/enrolments/{self.enrolment.pk}/status/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["paid_through_date"], "2026-03-09")
        self.assertEqual(response.data["next_payment_due_date"], "2026-03-16")
        self.assertEqual(response.data["credit_balance"], 5)
        self.assertFalse(response.data["is_overdue"])

    def test_status_endpoint_unknown_enrolment(self):
        response = self.client.get("/api/billing/enrolments/999999/status/")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.data["code"], "NOT_FOUND")

    def test_batch_status(self):
        with freeze_today(d(2026, 2, 2)):
            response = self.client.post(
                "/api/billing/enrolments/status/",
                {"enrolment_ids": [self.enrolment.pk, 999999], "as_of": "2026-02-16"},
                format="json",
            )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]["as_of"], "2026-02-16")
        self.assertEqual(response.data[0]["credit_balance"], 3)

    def test_list_filters_by_billing_type(self):
        EnrolmentFactory(template=self.template, plan=EnrolmentPlanFactory(weekly=True))
        response = self.client.get("/api/billing/enrolments/", {"billing_type": "PER_CLASS"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["id"] for row in response.data["results"]], [self.enrolment.pk])

    def test_record_payment(self):
        with freeze_today(d(2026, 2, 2)):
            invoice = create_enrolment_invoice(self.enrolment)
            response = self.client.post(
                "/api/billing/payments/",
                {"invoice_id": invoice.pk, "amount_cents": invoice.amount_cents},
                format="json",
            )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["invoice"]["status"], InvoiceStatus.PAID)
        self.assertEqual(response.data["snapshot"]["credit_balance"], 15)

    def test_requires_staff(self):
        from rest_framework.test import APIClient

        from apps.common.factories import UserFactory

        client = APIClient()
        client.force_authenticate(UserFactory())
        response = client.get(f"/api/billing/enrolments/{self.enrolment.pk}/status/")
        self.assertEqual(response.status_code, 403)
