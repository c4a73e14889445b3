from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from django.db.models import Q

from apps.attendance.models import Attendance
from apps.away.services import away_coverage_on
from apps.classes.models import ClassTemplate
from apps.common.utils.dates import to_studio_date
from apps.enrolments.models import Enrolment
from apps.makeups.models import MakeupBooking, MakeupStatus


@dataclass(frozen=True)
class SessionAvailability:
    template_id: int
    date: date
    capacity: int
    scheduled_count: int
    excused_scheduled_count: int
    booked_makeups_count: int
    available: int


def makeup_availability(capacity: int, scheduled: int, excused: int, booked: int) -> int:
    """Spare seats: scheduled students who are excused free their seat."""
    return max(0, capacity - (scheduled - excused) - booked)


def scheduled_enrolments(template: ClassTemplate, on_date: date):
    return (
        Enrolment.objects.filter(
            status__in=Enrolment.BILLABLE_STATUSES,
            start_date__lte=on_date,
        )
        .filter(Q(end_date__isnull=True) | Q(end_date__gte=on_date))
        .filter(Q(template=template) | Q(class_assignments__template=template))
        .select_related("student")
        .distinct()
    )


def compute_makeup_availability(template: ClassTemplate, on_date) -> SessionAvailability:
    """
    Seats open for makeups in one occurrence. Students marked EXCUSED or
    covered by an away period count as excused.
    """
    on_date = to_studio_date(on_date)
    students = {e.student_id: e.student for e in scheduled_enrolments(template, on_date)}
    excused = set(
        Attendance.objects.filter(
            template=template, date=on_date, status="EXCUSED", student_id__in=students
        ).values_list("student_id", flat=True)
    )
    excused.update(away_coverage_on(students.values(), on_date))
    booked = MakeupBooking.objects.filter(
        template=template, date=on_date, status=MakeupStatus.BOOKED
    ).count()
    return SessionAvailability(
        template_id=template.pk,
        date=on_date,
        capacity=template.capacity,
        scheduled_count=len(students),
        excused_scheduled_count=len(excused),
        booked_makeups_count=booked,
        available=makeup_availability(template.capacity, len(students), len(excused), booked),
    )
