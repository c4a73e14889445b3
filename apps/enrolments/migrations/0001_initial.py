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
            name="EnrolmentPlan",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=255)),
                ("billing_type", models.CharField(choices=[("PER_WEEK", "Per week"), ("PER_CLASS", "Per class")], max_length=20)),
                ("price_cents", models.PositiveIntegerField(default=0)),
                ("duration_weeks", models.PositiveIntegerField(blank=True, help_text="Weeks covered by one PER_WEEK purchase", null=True)),
                ("sessions_per_week", models.PositiveSmallIntegerField(default=1)),
                ("block_class_count", models.PositiveIntegerField(blank=True, help_text="Classes covered by one PER_CLASS purchase", null=True)),
                ("active", models.BooleanField(default=True)),
                ("level", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="plans", to="classes.level")),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Enrolment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("status", models.CharField(choices=[("ACTIVE", "Active"), ("PAUSED", "Paused"), ("CHANGEOVER", "Changeover"), ("CANCELLED", "Cancelled")], default="ACTIVE", max_length=20)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(blank=True, null=True)),
                ("paid_through_date", models.DateField(blank=True, help_text="Explicit paid-through date (authoritative when set)", null=True)),
                ("paid_through_date_computed", models.DateField(blank=True, editable=False, null=True)),
                ("next_due_date_computed", models.DateField(blank=True, editable=False, null=True)),
                ("credits_balance_cached", models.IntegerField(blank=True, editable=False, null=True)),
                ("billing_refreshed_at", models.DateTimeField(blank=True, editable=False, null=True)),
                ("billing_group_id", models.BigIntegerField(blank=True, help_text="Shared by enrolments chained through class moves", null=True)),
                ("cancelled_at", models.DateTimeField(blank=True, null=True)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("plan", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="enrolments", to="enrolments.enrolmentplan")),
                ("student", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="enrolments", to="students.student")),
                ("template", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="enrolments", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["-start_date", "-id"],
                "indexes": [
                    models.Index(fields=["student"], name="enrolment_student_idx"),
                    models.Index(fields=["template"], name="enrolment_template_idx"),
                    models.Index(fields=["status"], name="enrolment_status_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="EnrolmentClassAssignment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="class_assignments", to="enrolments.enrolment")),
                ("template", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="class_assignments", to="classes.classtemplate")),
            ],
            options={
                "constraints": [models.UniqueConstraint(fields=("enrolment", "template"), name="uniq_enrolment_template_assignment")],
            },
        ),
        migrations.AddField(
            model_name="enrolment",
            name="templates",
            field=models.ManyToManyField(blank=True, related_name="assigned_enrolments", through="enrolments.EnrolmentClassAssignment", to="classes.classtemplate"),
        ),
        migrations.CreateModel(
            name="EnrolmentStatusLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("old_status", models.CharField(blank=True, max_length=20)),
                ("new_status", models.CharField(max_length=20)),
                ("reason", models.CharField(blank=True, max_length=50)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="status_logs", to="enrolments.enrolment")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="EnrolmentPause",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("start_date", models.DateField()),
                ("end_date", models.DateField(blank=True, null=True)),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="pauses", to="enrolments.enrolment")),
            ],
            options={
                "ordering": ["start_date"],
            },
        ),
        migrations.CreateModel(
            name="EnrolmentCoverageAudit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("reason", models.CharField(choices=[("PAIDTHROUGH_MANUAL_EDIT", "Manual paid-through edit"), ("CANCELLATION_CREDIT", "Cancellation credit"), ("CANCELLATION_REVERSAL", "Cancellation reversal"), ("AWAY_PERIOD", "Away period"), ("AWAY_PERIOD_REVERSAL", "Away period reversal"), ("CLASS_MOVE", "Class move"), ("INVOICE_APPLIED", "Invoice applied")], max_length=40)),
                ("previous_paid_through_date", models.DateField(blank=True, null=True)),
                ("new_paid_through_date", models.DateField(blank=True, null=True)),
                ("previous_credits", models.IntegerField(blank=True, null=True)),
                ("new_credits", models.IntegerField(blank=True, null=True)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("actor", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="coverage_audits", to=settings.AUTH_USER_MODEL)),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="coverage_audits", to="enrolments.enrolment")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
    ]
