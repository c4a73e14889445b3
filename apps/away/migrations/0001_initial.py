from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("students", "0001_initial"),
        ("enrolments", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="AwayPeriod",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                ("note", models.CharField(blank=True, max_length=255)),
                ("deleted_at", models.DateTimeField(blank=True, null=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="away_periods", to=settings.AUTH_USER_MODEL)),
                ("family", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="away_periods", to="students.family")),
                ("student", models.ForeignKey(blank=True, help_text="Empty when the whole family is away", null=True, on_delete=django.db.models.deletion.CASCADE, related_name="away_periods", to="students.student")),
            ],
            options={
                "ordering": ["-start_date"],
                "indexes": [models.Index(fields=["family", "start_date", "end_date"], name="away_family_range_idx")],
            },
        ),
        migrations.CreateModel(
            name="AwayPeriodImpact",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("missed_occurrences", models.PositiveIntegerField(default=0)),
                ("paid_through_delta_days", models.IntegerField(default=0)),
                ("previous_paid_through_date", models.DateField(blank=True, null=True)),
                ("credits_delta", models.IntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("away_period", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="impacts", to="away.awayperiod")),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="away_impacts", to="enrolments.enrolment")),
            ],
            options={
                "constraints": [models.UniqueConstraint(fields=("away_period", "enrolment"), name="uniq_away_impact_enrolment")],
            },
        ),
    ]
