import datetime

from django.test import TestCase
from rest_framework.test import APIClient

from apps.away.models import AwayPeriod, AwayPeriodImpact, AwayScope
from apps.away.services import (
    away_coverage_on,
    create_away_period,
    delete_away_period,
    update_away_period,
)
from apps.billing.ledger import append_event
from apps.billing.models import CreditEventType, EnrolmentCreditEvent
from apps.billing.services import get_enrolment_billing_status, refresh_snapshot
from apps.common.factories import (
    AdminUserFactory,
    ClassTemplateFactory,
    EnrolmentFactory,
    EnrolmentPlanFactory,
    FamilyFactory,
    HolidayFactory,
    StudentFactory,
)
from apps.common.testing import freeze_today
from apps.enrolments.models import CoverageAuditReason, Enrolment, EnrolmentCoverageAudit

d = datetime.date
TODAY = d(2026, 2, 2)


class WeeklyAwayTests(TestCase):
    def setUp(self):
        self.family = FamilyFactory()
        self.student = StudentFactory(family=self.family)
        self.enrolment = EnrolmentFactory(
            student=self.student,
            template=ClassTemplateFactory(day_of_week=0),
            plan=EnrolmentPlanFactory(weekly=True),
            paid_through_date=d(2026, 3, 2),
        )

    def paid_through(self):
        self.enrolment.refresh_from_db()
        return self.enrolment.paid_through_date

    def test_create_update_delete_round_trip(self):
        with freeze_today(TODAY):
            created = create_away_period(
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 15),
                note="Holiday at the coast",
            )
            self.assertTrue(created.ok, created.message)
            self.assertEqual(self.paid_through(), d(2026, 3, 9))
            impact = created.data["impacts"][0]
            self.assertEqual(impact.missed_occurrences, 1)
            self.assertEqual(impact.paid_through_delta_days, 7)

            updated = update_away_period(
                created.data["id"],
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 22),
            )
            self.assertTrue(updated.ok, updated.message)
            self.assertEqual(self.paid_through(), d(2026, 3, 16))
            self.assertEqual(AwayPeriodImpact.objects.count(), 1)

            deleted = delete_away_period(created.data["id"])
            self.assertTrue(deleted.ok, deleted.message)

        self.assertEqual(self.paid_through(), d(2026, 3, 2))
        self.assertFalse(AwayPeriodImpact.objects.exists())
        self.assertIsNotNone(AwayPeriod.objects.get(pk=created.data["id"]).deleted_at)
        self.assertEqual(
            EnrolmentCoverageAudit.objects.filter(
                enrolment=self.enrolment, reason=CoverageAuditReason.AWAY_PERIOD_REVERSAL
            ).count(),
            2,
        )

    def test_deleted_period_cannot_be_deleted_again(self):
        with freeze_today(TODAY):
            created = create_away_period(
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 15),
            )
            delete_away_period(created.data["id"])
            again = delete_away_period(created.data["id"])
        self.assertEqual(again.code, "NOT_FOUND")

    def test_range_without_classes_has_no_impact(self):
        with freeze_today(TODAY):
            result = create_away_period(
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 10),
                end_date=d(2026, 2, 14),
            )
        self.assertTrue(result.ok)
        self.assertEqual(result.data["impacts"], [])
        self.assertEqual(self.paid_through(), d(2026, 3, 2))

    def test_extension_skips_holiday_after_paid_through(self):
        HolidayFactory(name="Labour Day", start_date=d(2026, 3, 9))
        with freeze_today(TODAY):
            created = create_away_period(
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 22),
            )
            impact = created.data["impacts"][0]
            self.assertEqual(impact.missed_occurrences, 2)
            self.assertEqual(impact.paid_through_delta_days, 21)
            self.assertEqual(self.paid_through(), d(2026, 3, 23))

            delete_away_period(created.data["id"])
        self.assertEqual(self.paid_through(), d(2026, 3, 2))

    def test_reversal_is_clamped_to_start_date(self):
        with freeze_today(TODAY):
            created = create_away_period(
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 15),
            )
            Enrolment.objects.filter(pk=self.enrolment.pk).update(paid_through_date=d(2026, 1, 8))
            delete_away_period(created.data["id"])
        self.assertEqual(self.paid_through(), d(2026, 1, 5))

    def test_unset_paid_through_round_trip(self):
        Enrolment.objects.filter(pk=self.enrolment.pk).update(paid_through_date=None)
        with freeze_today(TODAY):
            created = create_away_period(
                family_id=self.family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 15),
            )
            self.assertEqual(self.paid_through(), d(2026, 1, 12))
            delete_away_period(created.data["id"])
        self.assertIsNone(self.paid_through())
        self.assertEqual(get_enrolment_billing_status(self.enrolment.pk).paid_through_date, d(2026, 1, 5))


class PerClassAwayTests(TestCase):
    def test_missed_classes_are_returned_as_credits(self):
        family = FamilyFactory()
        enrolment = EnrolmentFactory(
            student=StudentFactory(family=family), template=ClassTemplateFactory(day_of_week=0)
        )
        append_event(enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(TODAY):
            refresh_snapshot(enrolment.pk)
            created = create_away_period(
                family_id=family.pk,
                scope=AwayScope.FAMILY,
                start_date=d(2026, 2, 9),
                end_date=d(2026, 2, 15),
            )
            enrolment.refresh_from_db()
            self.assertEqual(enrolment.credits_balance_cached, 6)
            self.assertEqual(enrolment.paid_through_date_computed, d(2026, 3, 16))

            delete_away_period(created.data["id"])
            enrolment.refresh_from_db()

        self.assertEqual(enrolment.credits_balance_cached, 5)
        self.assertEqual(enrolment.paid_through_date_computed, d(2026, 3, 9))
        self.assertFalse(
            EnrolmentCreditEvent.objects.filter(
                enrolment=enrolment, event_type=CreditEventType.MANUAL_ADJUST
            ).exists()
        )


class AwayScopeTests(TestCase):
    def setUp(self):
        self.family = FamilyFactory()
        template = ClassTemplateFactory(day_of_week=0)
        self.alice = StudentFactory(family=self.family, first_name="Alice")
        self.ben = StudentFactory(family=self.family, first_name="Ben")
        for student in (self.alice, self.ben):
            EnrolmentFactory(
                student=student,
                template=template,
                plan=EnrolmentPlanFactory(weekly=True),
                paid_through_date=d(2026, 3, 2),
            )

    def create(self, **kwargs):
        params = {
            "family_id": self.family.pk,
            "scope": AwayScope.FAMILY,
            "start_date": d(2026, 2, 9),
            "end_date": d(2026, 2, 15),
        }
        params.update(kwargs)
        with freeze_today(TODAY):
            return create_away_period(**params)

    def test_student_scope_only_touches_that_student(self):
        result = self.create(scope=AwayScope.STUDENT, student_id=self.alice.pk)
        self.assertTrue(result.ok, result.message)
        self.assertEqual(
            [impact.enrolment.student_id for impact in result.data["impacts"]], [self.alice.pk]
        )

    def test_overlapping_periods_are_rejected(self):
        self.assertTrue(self.create().ok)
        overlap = self.create(
            scope=AwayScope.STUDENT, student_id=self.ben.pk, start_date=d(2026, 2, 15), end_date=d(2026, 2, 20)
        )
        self.assertEqual(overlap.code, "VALIDATION_ERROR")
        self.assertIn("overlaps", overlap.message)

    def test_sibling_periods_may_overlap(self):
        self.assertTrue(self.create(scope=AwayScope.STUDENT, student_id=self.alice.pk).ok)
        self.assertTrue(self.create(scope=AwayScope.STUDENT, student_id=self.ben.pk).ok)

    def test_input_validation(self):
        self.assertEqual(
            self.create(start_date=d(2026, 2, 15), end_date=d(2026, 2, 9)).code, "VALIDATION_ERROR"
        )
        self.assertEqual(self.create(scope=AwayScope.STUDENT).code, "VALIDATION_ERROR")
        self.assertEqual(
            self.create(scope=AwayScope.STUDENT, student_id=StudentFactory().pk).code,
            "VALIDATION_ERROR",
        )
        self.assertEqual(self.create(family_id=999999).code, "NOT_FOUND")

    def test_student_specific_period_wins(self):
        family_wide = AwayPeriod.objects.create(
            family=self.family, start_date=d(2026, 2, 1), end_date=d(2026, 2, 28)
        )
        own = AwayPeriod.objects.create(
            family=self.family, student=self.alice, start_date=d(2026, 2, 9), end_date=d(2026, 2, 9)
        )
        coverage = away_coverage_on([self.alice, self.ben, StudentFactory()], d(2026, 2, 9))
        self.assertEqual(coverage, {self.alice.pk: own, self.ben.pk: family_wide})

    def test_api_round_trip(self):
        client = APIClient()
        client.force_authenticate(AdminUserFactory())
        with freeze_today(TODAY):
            response = client.post(
                "/api/away/",
                {
                    "family_id": self.family.pk,
                    "scope": "FAMILY",
                    "start_date": "2026-02-09",
                    "end_date": "2026-02-15",
                },
                format="json",
            )
            self.assertEqual(response.status_code, 201)
            self.assertEqual(len(response.data["impacts"]), 2)
            self.assertEqual(response.data["impacts"][0]["paid_through_delta_days"], 7)

            deleted = client.delete(f"/api/away/{response.data['id']}/")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(deleted.data["family_id"], self.family.pk)
