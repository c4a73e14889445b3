from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("classes", "0001_initial"),
        ("students", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Attendance",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("status", models.CharField(choices=[("PRESENT", "Present"), ("LATE", "Late"), ("ABSENT", "Absent"), ("EXCUSED", "Excused")], default="PRESENT", max_length=10)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("marked_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="marked_attendances", to=settings.AUTH_USER_MODEL)),
                ("student", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="attendances", to="students.student")),
                ("template", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="attendances", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["-date", "student__first_name"],
                "indexes": [models.Index(fields=["template", "date"], name="attendance_occurrence_idx")],
                "constraints": [models.UniqueConstraint(fields=("template", "date", "student"), name="uniq_attendance_occurrence_student")],
            },
        ),
    ]
