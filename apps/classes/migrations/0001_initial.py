from django.conf import settings
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Level",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=100, unique=True)),
                ("sort_order", models.PositiveIntegerField(default=0)),
            ],
            options={
                "ordering": ["sort_order", "name"],
            },
        ),
        migrations.CreateModel(
            name="ClassTemplate",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=255)),
                ("day_of_week", models.IntegerField(blank=True, choices=[(0, "Monday"), (1, "Tuesday"), (2, "Wednesday"), (3, "Thursday"), (4, "Friday"), (5, "Saturday"), (6, "Sunday")], null=True)),
                ("start_time", models.PositiveSmallIntegerField(blank=True, help_text="Minutes since midnight", null=True)),
                ("end_time", models.PositiveSmallIntegerField(blank=True, help_text="Minutes since midnight", null=True)),
                ("start_date", models.DateField(blank=True, null=True)),
                ("end_date", models.DateField(blank=True, null=True)),
                ("capacity", models.PositiveIntegerField(default=12)),
                ("active", models.BooleanField(default=True)),
                ("level", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="templates", to="classes.level")),
                ("teacher", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="class_templates", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "ordering": ["day_of_week", "start_time", "name"],
                "indexes": [models.Index(fields=["level"], name="classtemplate_level_idx"), models.Index(fields=["day_of_week"], name="classtemplate_day_idx")],
            },
        ),
        migrations.CreateModel(
            name="Holiday",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("name", models.CharField(max_length=255)),
                ("start_date", models.DateField()),
                ("end_date", models.DateField()),
                ("note", models.CharField(blank=True, max_length=255)),
                ("level", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="holidays", to="classes.level")),
                ("template", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.CASCADE, related_name="holidays", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["start_date"],
                "indexes": [models.Index(fields=["start_date", "end_date"], name="holiday_range_idx")],
            },
        ),
        migrations.CreateModel(
            name="ClassCancellation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("date", models.DateField()),
                ("reason", models.CharField(blank=True, max_length=255)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("created_by", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="class_cancellations", to=settings.AUTH_USER_MODEL)),
                ("template", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="cancellations", to="classes.classtemplate")),
            ],
            options={
                "ordering": ["-date"],
                "constraints": [models.UniqueConstraint(fields=("template", "date"), name="uniq_cancellation_template_date")],
            },
        ),
    ]
