from datetime import date, datetime

import factory
from django.contrib.auth import get_user_model
from django.utils import timezone

from works.models import (
    Account, Customer, Period, PeriodTask, Priority, RecurrencePattern,
    Service, TaskTemplate, Work, WorkTask,
)


class UserFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = get_user_model()
        django_get_or_create = ("username",)

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.LazyAttribute(lambda o: f"{o.username}@example.com")


class AccountFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Account

    name = factory.Sequence(lambda n: f"Practice {n}")
    slug = factory.Sequence(lambda n: f"practice-{n}")


class CustomerFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Customer

    account = factory.SubFactory(AccountFactory)
    name = factory.Sequence(lambda n: f"Client {n}")
    email = factory.LazyAttribute(lambda o: f"client{o.name.split()[-1]}@example.com")


class ServiceFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Service

    account = factory.SubFactory(AccountFactory)
    name = "GST Filing"
    tax_rate = None


class WorkFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Work

    account = factory.SubFactory(AccountFactory)
    customer = factory.SubFactory(CustomerFactory, account=factory.SelfAttribute("..account"))
    service = factory.SubFactory(ServiceFactory, account=factory.SelfAttribute("..account"))
    title = factory.Sequence(lambda n: f"Engagement {n}")
    is_recurring = False
    due_date = date(2024, 9, 30)


class RecurringWorkFactory(WorkFactory):
    is_recurring = True
    recurrence_pattern = RecurrencePattern.MONTHLY
    recurrence_day = 20
    start_date = date(2024, 9, 1)
    due_date = None


class TaskTemplateFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = TaskTemplate

    work = factory.SubFactory(RecurringWorkFactory)
    title = factory.Sequence(lambda n: f"Template task {n}")
    priority = Priority.MEDIUM
    due_date_offset_days = 0
    display_order = factory.Sequence(lambda n: n)


class PeriodFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Period

    work = factory.SubFactory(RecurringWorkFactory)
    period_name = "September 2024"
    period_start_date = date(2024, 9, 1)
    period_end_date = date(2024, 9, 30)
    due_date = date(2024, 9, 20)


class PeriodTaskFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = PeriodTask

    period = factory.SubFactory(PeriodFactory)
    title = factory.Sequence(lambda n: f"Task {n}")
    due_date = date(2024, 9, 30)
    sort_order = factory.Sequence(lambda n: n)


class WorkTaskFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = WorkTask

    work = factory.SubFactory(WorkFactory)
    title = factory.Sequence(lambda n: f"Work task {n}")
    due_date = date(2024, 9, 30)
    sort_order = factory.Sequence(lambda n: n)


def at(year, month, day, hour=12):
    """Aware datetime passed as the explicit clock."""
    return timezone.make_aware(datetime(year, month, day, hour, 0))
