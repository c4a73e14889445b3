import datetime

from django.test import TestCase
from rest_framework.test import APIClient

from apps.billing.ledger import append_event
from apps.billing.models import CreditEventType, EnrolmentAdjustment
from apps.billing.services import refresh_snapshot
from apps.classes.models import ClassCancellation
from apps.classes.services import (
    cancel_class_occurrence,
    create_holiday,
    delete_holiday,
    uncancel_class_occurrence,
    update_holiday,
)
from apps.common.factories import AdminUserFactory, ClassTemplateFactory, EnrolmentFactory, LevelFactory
from apps.common.testing import freeze_today
from apps.enrolments.models import EnrolmentStatus

d = datetime.date
TODAY = d(2026, 2, 2)


class HolidayRefreshTests(TestCase):
    def setUp(self):
        self.level = LevelFactory(name="Hip Hop 1")
        self.template = ClassTemplateFactory(level=self.level, day_of_week=0)
        self.enrolment = EnrolmentFactory(template=self.template)
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 1, 5))
        with freeze_today(TODAY):
            refresh_snapshot(self.enrolment.pk)

    def paid_through(self):
        self.enrolment.refresh_from_db()
        return self.enrolment.paid_through_date_computed

    def test_holiday_lifecycle_refreshes_cached_coverage(self):
        self.assertEqual(self.paid_through(), d(2026, 3, 9))
        with freeze_today(TODAY):
            created = create_holiday(name="Mid-term break", start_date=d(2026, 2, 16), end_date=d(2026, 2, 16))
            self.assertTrue(created.ok, created.message)
            self.assertEqual(created.data["refreshed"], 1)
            self.assertEqual(self.paid_through(), d(2026, 3, 16))

            moved = update_holiday(created.data["holiday"].pk, level=LevelFactory(name="Ballet 2"))
            self.assertTrue(moved.ok, moved.message)
            self.assertEqual(self.paid_through(), d(2026, 3, 9))

            update_holiday(created.data["holiday"].pk, level=self.level, end_date="2026-02-23")
            self.assertEqual(self.paid_through(), d(2026, 3, 23))

            deleted = delete_holiday(created.data["holiday"].pk)
            self.assertTrue(deleted.ok, deleted.message)
        self.assertEqual(self.paid_through(), d(2026, 3, 9))

    def test_holiday_dates_are_validated(self):
        result = create_holiday(name="Backwards", start_date=d(2026, 2, 16), end_date=d(2026, 2, 9))
        self.assertEqual(result.code, "VALIDATION_ERROR")

    def test_template_scoped_holiday_only_touches_its_class(self):
        other = ClassTemplateFactory(level=self.level, day_of_week=0)
        with freeze_today(TODAY):
            result = create_holiday(
                name="Studio repaint", start_date=d(2026, 2, 16), end_date=d(2026, 2, 16), template=other
            )
        self.assertEqual(result.data["refreshed"], 0)
        self.assertEqual(self.paid_through(), d(2026, 3, 9))


class CancellationRulesTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0)

    def test_wrong_weekday_is_rejected(self):
        result = cancel_class_occurrence(self.template.pk, d(2026, 2, 10))
        self.assertEqual(result.code, "VALIDATION_ERROR")
        self.assertFalse(ClassCancellation.objects.exists())

    def test_unknown_template(self):
        self.assertEqual(cancel_class_occurrence(999999, d(2026, 2, 9)).code, "NOT_FOUND")

    def test_uncancel_requires_cancellation(self):
        self.assertEqual(uncancel_class_occurrence(self.template.pk, d(2026, 2, 9)).code, "NOT_FOUND")

    def test_paused_and_later_enrolments_are_not_credited(self):
        active = EnrolmentFactory(template=self.template)
        EnrolmentFactory(template=self.template, status=EnrolmentStatus.PAUSED)
        EnrolmentFactory(template=self.template, start_date=d(2026, 3, 2))
        with freeze_today(TODAY):
            result = cancel_class_occurrence(self.template.pk, d(2026, 2, 9), reason="Storm")
        self.assertEqual([a.enrolment_id for a in result.data["adjustments"]], [active.pk])
        self.assertEqual(EnrolmentAdjustment.objects.count(), 1)

    def test_api(self):
        enrolment = EnrolmentFactory(template=self.template)
        client = APIClient()
        client.force_authenticate(AdminUserFactory())
        payload = {"template_id": self.template.pk, "date": "2026-02-09", "reason": "Teacher unwell"}
        with freeze_today(TODAY):
            created = client.post("/api/classes/cancellations/", payload, format="json")
            removed = client.post("/api/classes/cancellations/remove/", payload, format="json")
            missing = client.post("/api/classes/cancellations/remove/", payload, format="json")
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.data["credited_enrolment_ids"], [enrolment.pk])
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(removed.data["enrolment_ids"], [enrolment.pk])
        self.assertEqual(missing.status_code, 404)
