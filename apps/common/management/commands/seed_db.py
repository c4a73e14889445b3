import random
from datetime import date, timedelta

from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.billing.invoicing import create_enrolment_invoice, record_payment
from apps.classes.models import ClassTemplate, Holiday, Level
from apps.common.factories import FamilyFactory, StudentFactory
from apps.common.utils.dates import studio_today
from apps.enrolments.models import BillingType, EnrolmentPlan
from apps.enrolments.services import enrol_student

LEVELS = ["Tiny Tots", "Junior Jazz", "Intermediate Tap", "Senior Ballet"]
STYLES = ["Jazz", "Tap", "Ballet", "Hip Hop", "Contemporary"]


class Command(BaseCommand):
    help = "Seed levels, classes, plans, families and paid enrolments for local development."

    def add_arguments(self, parser):
        parser.add_argument("--families", type=int, default=20, help="Number of families")
        parser.add_argument("--classes_per_level", type=int, default=2, help="Weekly classes per level")
        parser.add_argument("--seed", type=int, default=None, help="Random seed for repeatable data")

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write(self.style.SUCCESS("--- Starting Database Seeding ---"))
        if options["seed"] is not None:
            random.seed(options["seed"])
            Faker.seed(options["seed"])
        fake = Faker("en_AU")
        today = studio_today()
        term_start = today - timedelta(days=today.weekday()) - timedelta(weeks=4)

        levels = []
        for order, name in enumerate(LEVELS):
            level, _ = Level.objects.get_or_create(name=name, defaults={"sort_order": order})
            levels.append(level)
        self.stdout.write(self.style.SUCCESS(f"Ensured {len(levels)} Levels."))

        templates = []
        for level in levels:
            for _ in range(options["classes_per_level"]):
                start_minutes = random.choice([15 * 60, 16 * 60, 17 * 60])
                templates.append(
                    ClassTemplate.objects.create(
                        name=f"{level.name} {random.choice(STYLES)}",
                        level=level,
                        day_of_week=random.randint(0, 5),
                        start_time=start_minutes,
                        end_time=start_minutes + 45,
                        start_date=term_start,
                        capacity=random.choice([8, 10, 12]),
                    )
                )
        self.stdout.write(self.style.SUCCESS(f"Created {len(templates)} Class Templates."))

        plans = {}
        for level in levels:
            plans[level.pk] = [
                EnrolmentPlan.objects.create(
                    name=f"{level.name} term (10 weeks)",
                    level=level,
                    billing_type=BillingType.PER_WEEK,
                    price_cents=2200,
                    duration_weeks=10,
                ),
                EnrolmentPlan.objects.create(
                    name=f"{level.name} 10-class pass",
                    level=level,
                    billing_type=BillingType.PER_CLASS,
                    price_cents=25000,
                    block_class_count=10,
                ),
            ]
        self.stdout.write(self.style.SUCCESS(f"Created {sum(len(p) for p in plans.values())} Enrolment Plans."))

        Holiday.objects.get_or_create(
            name="Mid-term break",
            start_date=term_start + timedelta(weeks=6),
            defaults={"end_date": term_start + timedelta(weeks=6, days=6)},
        )

        enrolled = skipped = 0
        for _ in range(options["families"]):
            family = FamilyFactory(name=f"{fake.last_name()} family")
            for _ in range(random.randint(1, 3)):
                template = random.choice(templates)
                student = StudentFactory(family=family, level=template.level)
                plan = random.choice(plans[template.level_id])
                result = enrol_student(student.pk, template.pk, plan.pk, _first_class(template, term_start))
                if not result.ok:
                    skipped += 1
                    continue
                enrolment = result.data["enrolment"]
                invoice = create_enrolment_invoice(enrolment, today=today)
                if random.random() < 0.8:
                    record_payment(invoice.pk, invoice.amount_cents)
                enrolled += 1

        self.stdout.write(self.style.SUCCESS(f"Created {enrolled} Enrolments ({skipped} skipped, class full)."))
        self.stdout.write(self.style.SUCCESS("--- Database Seeding Completed ---"))


def _first_class(template: ClassTemplate, on_or_after: date) -> date:
    return on_or_after + timedelta(days=(template.day_of_week - on_or_after.weekday()) % 7)
