from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from apps.attendance.models import ATTENDED_STATUSES, Attendance
from apps.billing.services import register_credit_consumption_for_date


@receiver(pre_save, sender=Attendance)
def _store_old_status(sender, instance: Attendance, **kwargs):
    if instance.pk:
        instance._old_status = (
            Attendance.objects.filter(pk=instance.pk).values_list("status", flat=True).first()
        )
    else:
        instance._old_status = None


@receiver(post_save, sender=Attendance)
def _consume_credit_after_attendance(sender, instance: Attendance, **kwargs):
    old_status = getattr(instance, "_old_status", None)
    if instance.status not in ATTENDED_STATUSES or old_status in ATTENDED_STATUSES:
        return
    # Scheduled occurrences are consumed anyway; this records the attendance link.
    register_credit_consumption_for_date(
        instance.template_id, instance.student_id, instance.date, attendance=instance
    )
