import datetime

import factory
from django.contrib.auth import get_user_model
from faker import Faker

from apps.billing.models import Invoice, InvoiceStatus
from apps.classes.models import ClassCancellation, ClassTemplate, Holiday, Level
from apps.enrolments.models import (
    BillingType,
    Enrolment,
    EnrolmentClassAssignment,
    EnrolmentPlan,
    EnrolmentStatus,
)
from apps.students.models import Family, Student

User = get_user_model()
fake = Faker()


def _safe_text(s, max_len):
    return str(s)[:max_len]


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = User

    username = factory.Sequence(lambda n: f"user{n:05d}")
    password = factory.PostGenerationMethodCall("set_password", "password123")
    first_name = factory.LazyAttribute(lambda o: _safe_text(fake.first_name(), 150))
    last_name = factory.LazyAttribute(lambda o: _safe_text(fake.last_name(), 150))
    email = factory.Sequence(lambda n: f"user{n:05d}@example.com")
    is_staff = False
    is_active = True


class AdminUserFactory(UserFactory):
    is_staff = True
    is_superuser = True


class LevelFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Level
        django_get_or_create = ("name",)

    name = factory.Sequence(lambda n: f"Level {n}")
    sort_order = factory.Sequence(lambda n: n)


class ClassTemplateFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ClassTemplate

    name = factory.LazyAttribute(lambda o: _safe_text(f"{fake.word().title()} Dance", 255))
    level = factory.SubFactory(LevelFactory)
    day_of_week = 0
    start_time = 16 * 60
    end_time = 17 * 60
    start_date = datetime.date(2026, 1, 1)
    end_date = None
    capacity = 12
    active = True


class HolidayFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Holiday

    name = factory.LazyAttribute(lambda o: _safe_text(fake.catch_phrase(), 255))
    start_date = datetime.date(2026, 3, 2)
    end_date = factory.LazyAttribute(lambda o: o.start_date)
    level = None
    template = None


class ClassCancellationFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ClassCancellation

    template = factory.SubFactory(ClassTemplateFactory)
    date = datetime.date(2026, 3, 2)
    reason = "Teacher unwell"


class FamilyFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Family

    name = factory.LazyAttribute(lambda o: _safe_text(f"{fake.last_name()} family", 255))
    email = factory.Sequence(lambda n: f"family{n:05d}@example.com")
    phone = factory.Sequence(lambda n: f"04{n:08d}")


class StudentFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Student

    family = factory.SubFactory(FamilyFactory)
    first_name = factory.LazyAttribute(lambda o: _safe_text(fake.first_name(), 150))
    last_name = factory.LazyAttribute(lambda o: o.family.name.split()[0])
    level = None
    date_of_birth = factory.LazyAttribute(lambda o: fake.date_of_birth(minimum_age=4, maximum_age=16))


class EnrolmentPlanFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = EnrolmentPlan

    name = factory.Sequence(lambda n: f"Plan {n}")
    level = None
    billing_type = BillingType.PER_CLASS
    price_cents = 20000
    duration_weeks = None
    sessions_per_week = 1
    block_class_count = 10

    class Params:
        weekly = factory.Trait(
            billing_type=BillingType.PER_WEEK,
            price_cents=2500,
            duration_weeks=10,
            block_class_count=None,
        )


class EnrolmentFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Enrolment
        skip_postgeneration_save = True

    student = factory.SubFactory(StudentFactory)
    plan = factory.SubFactory(EnrolmentPlanFactory)
    template = factory.SubFactory(ClassTemplateFactory)
    status = EnrolmentStatus.ACTIVE
    start_date = datetime.date(2026, 1, 5)
    end_date = None
    paid_through_date = None

    @factory.post_generation
    def assigned(self, create, extracted, **kwargs):
        if not create:
            return
        EnrolmentClassAssignment.objects.get_or_create(enrolment=self, template=self.template)
        for template in extracted or ():
            EnrolmentClassAssignment.objects.get_or_create(enrolment=self, template=template)


class InvoiceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Invoice

    family = factory.SubFactory(FamilyFactory)
    enrolment = None
    status = InvoiceStatus.SENT
    amount_cents = 20000
