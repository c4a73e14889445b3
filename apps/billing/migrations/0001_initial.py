from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("attendance", "0001_initial"),
        ("away", "0001_initial"),
        ("classes", "0001_initial"),
        ("enrolments", "0001_initial"),
        ("students", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("status", models.CharField(choices=[("DRAFT", "Draft"), ("SENT", "Sent"), ("PAID", "Paid"), ("VOID", "Void")], default="DRAFT", max_length=10)),
                ("amount_cents", models.IntegerField(default=0, help_text="Negative for credit invoices")),
                ("amount_paid_cents", models.IntegerField(default=0)),
                ("issued_at", models.DateTimeField(blank=True, null=True)),
                ("due_date", models.DateField(blank=True, null=True)),
                ("paid_at", models.DateTimeField(blank=True, null=True)),
                ("coverage_start", models.DateField(blank=True, null=True)),
                ("coverage_end", models.DateField(blank=True, null=True)),
                ("credits_purchased", models.IntegerField(blank=True, null=True)),
                ("entitlements_applied_at", models.DateTimeField(blank=True, null=True)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("enrolment", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="invoices", to="enrolments.enrolment")),
                ("family", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="students.family")),
            ],
            options={
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLineItem",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("kind", models.CharField(choices=[("ENROLMENT", "Enrolment"), ("CLASS_CHANGE", "Class change"), ("CREDIT", "Credit"), ("OTHER", "Other")], default="ENROLMENT", max_length=20)),
                ("description", models.CharField(max_length=255)),
                ("quantity", models.PositiveIntegerField(default=1)),
                ("unit_price_cents", models.IntegerField(default=0)),
                ("amount_cents", models.IntegerField(default=0)),
                ("invoice", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="line_items", to="billing.invoice")),
            ],
            options={
                "ordering": ["id"],
            },
        ),
        migrations.CreateModel(
            name="Payment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("amount_cents", models.IntegerField()),
                ("method", models.CharField(choices=[("CASH", "Cash"), ("CARD", "Card"), ("BANK_TRANSFER", "Bank transfer"), ("CREDIT", "Account credit")], default="CASH", max_length=20)),
                ("paid_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("family", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="payments", to="students.family")),
                ("invoice", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="payments", to="billing.invoice")),
            ],
            options={
                "ordering": ["-paid_at"],
            },
        ),
        migrations.CreateModel(
            name="EnrolmentAdjustment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("adjustment_type", models.CharField(choices=[("CANCELLATION_CREDIT", "Cancellation credit")], default="CANCELLATION_CREDIT", max_length=30)),
                ("credits_delta", models.IntegerField(blank=True, null=True)),
                ("paid_through_delta_days", models.IntegerField(blank=True, null=True)),
                ("previous_paid_through_date", models.DateField(blank=True, null=True)),
                ("note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="enrolment_adjustments", to=settings.AUTH_USER_MODEL)),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="adjustments", to="enrolments.enrolment")),
                ("template", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="enrolment_adjustments", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["-date"],
                "constraints": [models.UniqueConstraint(fields=("enrolment", "template", "date", "adjustment_type"), name="uniq_adjustment_per_occurrence")],
            },
        ),
        migrations.CreateModel(
            name="EnrolmentCreditEvent",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("event_type", models.CharField(choices=[("PURCHASE", "Purchase"), ("CONSUME", "Consume"), ("CANCELLATION_CREDIT", "Cancellation credit"), ("MANUAL_ADJUST", "Manual adjust")], max_length=30)),
                ("credits_delta", models.IntegerField(help_text="Positive for purchase/credit, negative for consume/adjust down")),
                ("occurred_on", models.DateField()),
                ("note", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("adjustment", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="credit_events", to="billing.enrolmentadjustment")),
                ("attendance", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="credit_events", to="attendance.attendance")),
                ("away_impact", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="credit_events", to="away.awayperiodimpact")),
                ("enrolment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="credit_events", to="enrolments.enrolment")),
                ("invoice", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="credit_events", to="billing.invoice")),
                ("template", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="credit_events", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["occurred_on", "id"],
                "indexes": [models.Index(fields=["enrolment", "occurred_on"], name="credit_event_balance_idx")],
                "constraints": [models.UniqueConstraint(condition=models.Q(("event_type", "CONSUME")), fields=("enrolment", "template", "occurred_on"), name="uniq_consume_per_occurrence")],
            },
        ),
    ]
