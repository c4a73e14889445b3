import datetime

from django.test import TestCase

from apps.attendance.models import Attendance
from apps.billing.ledger import append_event
from apps.billing.models import CreditEventType, EnrolmentCreditEvent
from apps.billing.services import refresh_snapshot
from apps.common.factories import ClassTemplateFactory, EnrolmentFactory
from apps.common.testing import freeze_today

d = datetime.date


class AttendanceSignalTests(TestCase):
    def setUp(self):
        self.template = ClassTemplateFactory(day_of_week=0)
        self.enrolment = EnrolmentFactory(template=self.template, start_date=d(2026, 2, 2))
        append_event(self.enrolment, CreditEventType.PURCHASE, 10, d(2026, 2, 2))

    def consumed(self):
        return EnrolmentCreditEvent.objects.filter(
            enrolment=self.enrolment, event_type=CreditEventType.CONSUME
        )

    def test_absent_then_present_consumes_once(self):
        with freeze_today(d(2026, 2, 2)):
            attendance = Attendance.objects.create(
                template=self.template,
                date=d(2026, 2, 2),
                student=self.enrolment.student,
                status="ABSENT",
            )
            self.assertFalse(self.consumed().exists())

            attendance.status = "PRESENT"
            attendance.save()
            attendance.status = "LATE"
            attendance.save()

        self.assertEqual(self.consumed().count(), 1)
        self.enrolment.refresh_from_db()
        self.assertEqual(self.enrolment.credits_balance_cached, 9)

    def test_marking_an_already_backfilled_class_does_not_double_consume(self):
        with freeze_today(d(2026, 2, 9)):
            refresh_snapshot(self.enrolment.pk)
            self.assertEqual(self.consumed().count(), 2)
            Attendance.objects.create(template=self.template, date=d(2026, 2, 9), student=self.enrolment.student)
        self.assertEqual(self.consumed().count(), 2)

    def test_student_without_enrolment_is_ignored(self):
        other = ClassTemplateFactory(day_of_week=2)
        with freeze_today(d(2026, 2, 4)):
            Attendance.objects.create(template=other, date=d(2026, 2, 4), student=self.enrolment.student)
        self.assertFalse(self.consumed().exists())
