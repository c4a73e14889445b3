import datetime

from django.test import SimpleTestCase, TestCase
from rest_framework.test import APIClient

from apps.attendance.models import Attendance
from apps.away.models import AwayPeriod
from apps.common.factories import (
    AdminUserFactory,
    ClassCancellationFactory,
    ClassTemplateFactory,
    EnrolmentFactory,
    EnrolmentPlanFactory,
    LevelFactory,
    StudentFactory,
)
from apps.common.testing import freeze_today
from apps.makeups.availability import compute_makeup_availability, makeup_availability
from apps.makeups.models import MakeupBooking, MakeupStatus
from apps.makeups.services import book_makeup, cancel_makeup_booking

d = datetime.date
TODAY = d(2026, 2, 2)
SESSION = d(2026, 2, 9)


class MakeupArithmeticTests(SimpleTestCase):
    def test_available_seats(self):
        self.assertEqual(makeup_availability(6, 6, 1, 0), 1)
        self.assertEqual(makeup_availability(8, 6, 0, 0), 2)
        self.assertEqual(makeup_availability(8, 8, 2, 1), 1)

    def test_never_negative(self):
        self.assertEqual(makeup_availability(4, 6, 0, 1), 0)


class MakeupBookingTests(TestCase):
    def setUp(self):
        self.level = LevelFactory(name="Intermediate Tap")
        self.template = ClassTemplateFactory(level=self.level, day_of_week=0, capacity=2)
        self.regulars = [
            EnrolmentFactory(
                template=self.template,
                student=StudentFactory(level=self.level),
                plan=EnrolmentPlanFactory(weekly=True),
            )
            for _ in range(2)
        ]
        self.visitor = StudentFactory(level=self.level)

    def book(self, student=None, on_date=SESSION):
        with freeze_today(TODAY):
            return book_makeup((student or self.visitor).pk, self.template.pk, on_date)

    def test_full_class_has_no_seats(self):
        availability = compute_makeup_availability(self.template, SESSION)
        self.assertEqual(availability.scheduled_count, 2)
        self.assertEqual(availability.available, 0)
        self.assertEqual(self.book().code, "VALIDATION_ERROR")

    def test_excused_student_frees_a_seat(self):
        Attendance.objects.create(
            template=self.template, date=SESSION, student=self.regulars[0].student, status="EXCUSED"
        )
        result = self.book()
        self.assertTrue(result.ok, result.message)
        self.assertEqual(result.data["available"], 0)
        self.assertEqual(result.data["booking"].status, MakeupStatus.BOOKED)
        self.assertEqual(compute_makeup_availability(self.template, SESSION).booked_makeups_count, 1)

    def test_away_student_frees_a_seat(self):
        student = self.regulars[1].student
        AwayPeriod.objects.create(
            family=student.family, start_date=d(2026, 2, 7), end_date=d(2026, 2, 14)
        )
        availability = compute_makeup_availability(self.template, SESSION)
        self.assertEqual(availability.excused_scheduled_count, 1)
        self.assertTrue(self.book().ok)

    def test_booking_rules(self):
        self.template.capacity = 10
        self.template.save()
        self.assertEqual(self.book(on_date=d(2026, 1, 26)).code, "VALIDATION_ERROR")
        self.assertEqual(self.book(on_date=d(2026, 2, 10)).code, "VALIDATION_ERROR")
        self.assertEqual(self.book(StudentFactory(level=None)).code, "VALIDATION_ERROR")
        self.assertEqual(
            self.book(StudentFactory(level=LevelFactory(name="Senior Tap"))).code, "VALIDATION_ERROR"
        )
        self.assertEqual(self.book(self.regulars[0].student).code, "VALIDATION_ERROR")

        ClassCancellationFactory(template=self.template, date=d(2026, 2, 16))
        self.assertEqual(self.book(on_date=d(2026, 2, 16)).code, "VALIDATION_ERROR")

        self.assertTrue(self.book().ok)
        duplicate = self.book()
        self.assertEqual(duplicate.code, "VALIDATION_ERROR")
        self.assertIn("already has a makeup", duplicate.message)

    def test_cancelled_booking_releases_seat(self):
        self.template.capacity = 3
        self.template.save()
        booking = self.book().data["booking"]
        with freeze_today(TODAY):
            result = cancel_makeup_booking(booking.pk)
            again = cancel_makeup_booking(booking.pk)
        self.assertTrue(result.ok)
        self.assertEqual(again.code, "VALIDATION_ERROR")
        self.assertEqual(compute_makeup_availability(self.template, SESSION).available, 1)
        self.assertTrue(self.book().ok)
        self.assertEqual(MakeupBooking.objects.filter(student=self.visitor).count(), 2)

    def test_api(self):
        self.template.capacity = 3
        self.template.save()
        client = APIClient()
        client.force_authenticate(AdminUserFactory())
        availability = client.get(
            "/api/makeups/availability/", {"template_id": self.template.pk, "date": "2026-02-09"}
        )
        self.assertEqual(availability.status_code, 200)
        self.assertEqual(availability.data["available"], 1)

        with freeze_today(TODAY):
            created = client.post(
                "/api/makeups/bookings/",
                {"student_id": self.visitor.pk, "template_id": self.template.pk, "date": "2026-02-09"},
                format="json",
            )
            self.assertEqual(created.status_code, 201)
            self.assertEqual(created.data["available"], 0)
            cancelled = client.post(f"/api/makeups/bookings/{created.data['id']}/cancel/")
        self.assertEqual(cancelled.status_code, 200)
        self.assertEqual(cancelled.data["status"], MakeupStatus.CANCELLED)
