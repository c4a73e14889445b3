from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("classes", "0001_initial"),
        ("enrolments", "0001_initial"),
        ("students", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="MakeupBooking",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("missed_date", models.DateField(blank=True, null=True)),
                ("status", models.CharField(choices=[("BOOKED", "Booked"), ("ATTENDED", "Attended"), ("CANCELLED", "Cancelled")], default="BOOKED", max_length=10)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="makeup_bookings", to=settings.AUTH_USER_MODEL)),
                ("enrolment", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="makeup_bookings", to="enrolments.enrolment")),
                ("student", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="makeup_bookings", to="students.student")),
                ("template", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="makeup_bookings", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["-date"],
                "constraints": [models.UniqueConstraint(condition=models.Q(("status", "BOOKED")), fields=("student", "template", "date"), name="uniq_active_makeup_booking")],
            },
        ),
    ]
