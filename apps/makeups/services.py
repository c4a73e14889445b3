from __future__ import annotations

import logging

from django.db import IntegrityError, transaction

from apps.billing.occurrences import list_occurrences
from apps.classes.models import ClassTemplate
from apps.classes.schedule import load_exclusions, to_schedule
from apps.common.exceptions import DomainError, InvalidInput, NotFound
from apps.common.results import ActionResult
from apps.common.utils.dates import studio_today, to_studio_date
from apps.makeups.availability import compute_makeup_availability, scheduled_enrolments
from apps.makeups.models import MakeupBooking, MakeupStatus
from apps.students.models import Student

logger = logging.getLogger(__name__)


def occurrence_runs(template: ClassTemplate, on_date) -> bool:
    """True when the template has a scheduled, non-holiday, non-cancelled class on ``on_date``."""
    exclusions = load_exclusions([template], on_date, on_date)
    return bool(list_occurrences(to_schedule(template), on_date, on_date, exclusions))


def book_makeup(student_id, template_id, on_date, *, missed_date=None, enrolment=None, actor=None) -> ActionResult:
    on_date = to_studio_date(on_date)
    try:
        with transaction.atomic():
            try:
                template = ClassTemplate.objects.select_for_update().get(pk=template_id)
            except ClassTemplate.DoesNotExist:
                raise NotFound("Class template not found.")
            try:
                student = Student.objects.get(pk=student_id)
            except Student.DoesNotExist:
                raise NotFound("Student not found.")
            if on_date < studio_today():
                raise InvalidInput("Makeups cannot be booked into past sessions.")
            if not occurrence_runs(template, on_date):
                raise InvalidInput("The selected class is not running on that date.")
            if student.level_id is None:
                raise InvalidInput("Student level is required to book a makeup.")
            if template.level_id != student.level_id:
                raise InvalidInput("Makeups must be booked into a class at the same level.")
            if scheduled_enrolments(template, on_date).filter(student=student).exists():
                raise InvalidInput("Student is already scheduled in that class session.")
            availability = compute_makeup_availability(template, on_date)
            if availability.available <= 0:
                raise InvalidInput("No makeup spots are available for that session.")
            try:
                with transaction.atomic():
                    booking = MakeupBooking.objects.create(
                        student=student,
                        enrolment=enrolment,
                        template=template,
                        date=on_date,
                        missed_date=to_studio_date(missed_date),
                        created_by=actor,
                    )
            except IntegrityError:
                raise InvalidInput("Student already has a makeup booking for that session.")
    except DomainError as exc:
        return ActionResult.from_error(exc)
    logger.info("Booked makeup for %s in %s on %s", student, template.name, on_date)
    return ActionResult.success({"booking": booking, "available": availability.available - 1})


def cancel_makeup_booking(booking_id) -> ActionResult:
    try:
        with transaction.atomic():
            try:
                booking = MakeupBooking.objects.select_for_update().get(pk=booking_id)
            except MakeupBooking.DoesNotExist:
                raise NotFound("Makeup booking not found.")
            if booking.status != MakeupStatus.BOOKED:
                raise InvalidInput("Only booked makeups can be cancelled.")
            if booking.date < studio_today():
                raise InvalidInput("Past makeup sessions cannot be cancelled.")
            booking.status = MakeupStatus.CANCELLED
            booking.save(update_fields=["status"])
    except DomainError as exc:
        return ActionResult.from_error(exc)
    return ActionResult.success({"booking": booking})
