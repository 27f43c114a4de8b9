from datetime import date
from decimal import Decimal

import pytest

from works.models import Period, PeriodTask, Work, WorkActivity, WorkTask
from works.services import PeriodGenerator, PeriodService, StatusService, WorkTaskService
from works.validation.errors import (
    BusinessRuleError,
    DuplicatePeriodError,
    NotFoundError,
    PeriodLockedError,
    UnknownPatternError,
    ValidationError,
    WorkLockedError,
)
from tests.factories import (
    PeriodFactory,
    PeriodTaskFactory,
    RecurringWorkFactory,
    TaskTemplateFactory,
    UserFactory,
    WorkFactory,
    WorkTaskFactory,
    at,
)


@pytest.fixture
def work():
    work = RecurringWorkFactory(recurrence_pattern="monthly", recurrence_day=20, start_date=date(2024, 9, 1))
    TaskTemplateFactory(work=work, title="Collect invoices", due_date_offset_days=10, display_order=1)
    TaskTemplateFactory(work=work, title="Reconcile ledger", due_date_offset_days=-5, display_order=0)
    return work


@pytest.mark.django_db
class TestSeedInitialPeriod:
    def test_seeds_first_period_with_template_tasks(self, work):
        period = PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))

        assert period.period_name == "September 2024"
        assert period.period_start_date == date(2024, 9, 1)
        assert period.period_end_date == date(2024, 9, 30)
        assert period.due_date == date(2024, 9, 20)
        assert period.status == Period.Status.PENDING
        assert period.is_billed is False
        assert period.billing_amount is None

        tasks = list(period.tasks.order_by("sort_order", "id"))
        assert [t.title for t in tasks] == ["Reconcile ledger", "Collect invoices"]
        assert [t.due_date for t in tasks] == [date(2024, 9, 25), date(2024, 10, 10)]
        assert all(t.status == PeriodTask.Status.PENDING for t in tasks)
        assert all(t.template_id is not None for t in tasks)

    def test_seed_is_noop_when_periods_exist(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        assert PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5)) is None
        assert Period.objects.filter(work=work).count() == 1

    def test_seed_ignores_non_recurring_work(self):
        assert PeriodGenerator.seed_initial_period(WorkFactory().id) is None

    def test_inactive_templates_are_not_copied(self, work):
        TaskTemplateFactory(work=work, title="Retired step", is_active=False)
        period = PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        assert period.tasks.count() == 2

    def test_logs_period_created_activity(self, work):
        period = PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        activity = WorkActivity.objects.get(work=work, action=WorkActivity.Action.PERIOD_CREATED)
        assert activity.period == period
        assert activity.metadata["task_count"] == 2


@pytest.mark.django_db
class TestEnsureNextPeriod:
    def test_no_bootstrap_period_returns_none(self, work):
        assert PeriodGenerator.ensure_next_period(work.id, now=at(2024, 12, 1)) is None
        assert not Period.objects.filter(work=work).exists()

    def test_not_due_while_latest_is_open_and_in_future(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        assert PeriodGenerator.ensure_next_period(work.id, now=at(2024, 9, 10)) is None

    def test_not_due_on_the_due_date_itself(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        assert PeriodGenerator.ensure_next_period(work.id, now=at(2024, 9, 20)) is None

    def test_generates_after_due_date_passes(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))

        period = PeriodGenerator.ensure_next_period(work.id, now=at(2024, 9, 21))

        assert period.period_name == "October 2024"
        assert period.due_date == date(2024, 10, 20)
        assert period.period_end_date == date(2024, 10, 31)
        assert sorted(t.due_date for t in period.tasks.all()) == [date(2024, 10, 26), date(2024, 11, 10)]

    def test_generates_when_latest_is_completed(self, work):
        seeded = PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        StatusService.set_period_status(seeded.id, "completed", now=at(2024, 9, 10))

        period = PeriodGenerator.ensure_next_period(work.id, now=at(2024, 9, 10))
        assert period.due_date == date(2024, 10, 20)

    def test_second_call_is_idempotent(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        now = at(2024, 9, 21)

        first = PeriodGenerator.ensure_next_period(work.id, now=now)
        second = PeriodGenerator.ensure_next_period(work.id, now=now)

        assert first is not None
        assert second is None
        assert Period.objects.filter(work=work).count() == 2

    def test_catches_up_one_period_per_call(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        now = at(2025, 1, 5)

        created = [PeriodGenerator.ensure_next_period(work.id, now=now) for _ in range(5)]

        assert [p.due_date for p in created if p] == [
            date(2024, 10, 20), date(2024, 11, 20), date(2024, 12, 20), date(2025, 1, 20),
        ]
        assert created[-1] is None

    def test_anchor_31_clamps_through_february(self):
        work = RecurringWorkFactory(recurrence_day=31)
        PeriodFactory(work=work, period_name="January 2025", period_start_date=date(2025, 1, 1),
                      period_end_date=date(2025, 1, 31), due_date=date(2025, 1, 31))

        period = PeriodGenerator.ensure_next_period(work.id, now=at(2025, 2, 3))
        assert period.due_date == date(2025, 2, 28)
        assert period.period_name == "February 2025"

    def test_zero_templates_creates_empty_period(self):
        work = RecurringWorkFactory()
        PeriodFactory(work=work)
        period = PeriodGenerator.ensure_next_period(work.id, now=at(2024, 10, 1))
        assert period is not None
        assert period.tasks.count() == 0

    def test_unknown_pattern_creates_nothing(self):
        work = RecurringWorkFactory(recurrence_pattern="weekly")
        PeriodFactory(work=work)

        with pytest.raises(UnknownPatternError):
            PeriodGenerator.ensure_next_period(work.id, now=at(2024, 10, 1))
        assert Period.objects.filter(work=work).count() == 1

    def test_non_recurring_work_returns_none(self):
        assert PeriodGenerator.ensure_next_period(WorkFactory().id, now=at(2024, 10, 1)) is None

    def test_missing_work_raises_not_found(self):
        with pytest.raises(NotFoundError):
            PeriodGenerator.ensure_next_period(999999)

    def test_pattern_edit_leaves_existing_periods_untouched(self, work):
        seeded = PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        Work.objects.filter(pk=work.pk).update(recurrence_pattern="quarterly", recurrence_day=15)

        period = PeriodGenerator.ensure_next_period(work.id, now=at(2024, 9, 21))

        seeded.refresh_from_db()
        assert seeded.due_date == date(2024, 9, 20)
        assert seeded.period_name == "September 2024"
        assert period.due_date == date(2024, 12, 15)
        assert period.period_name == "Q4 2024"

    def test_losing_insert_race_is_a_noop(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        work.refresh_from_db()

        # Another caller already inserted this due date between check and insert.
        assert PeriodGenerator._insert_or_skip(work, date(2024, 9, 20)) is None
        assert Period.objects.filter(work=work).count() == 1
        assert PeriodTask.objects.filter(period__work=work).count() == 2


@pytest.mark.django_db
class TestReconcileAll:
    def test_seeds_generates_and_skips(self, work):
        due = RecurringWorkFactory()
        PeriodFactory(work=due, due_date=date(2024, 9, 20))
        not_due = RecurringWorkFactory()
        PeriodFactory(work=not_due, due_date=date(2024, 12, 20))
        broken = RecurringWorkFactory(recurrence_pattern="weekly")
        RecurringWorkFactory(status=Work.Status.COMPLETED)
        WorkFactory()

        results = PeriodGenerator.reconcile_all(now=at(2024, 10, 1))

        assert results == {"total": 4, "seeded": 1, "created": 1, "skipped": 1, "failed": 1}
        assert Period.objects.filter(work=work).count() == 1
        assert Period.objects.filter(work=due).count() == 2
        assert not Period.objects.filter(work=broken).exists()

    def test_rerun_creates_nothing(self, work):
        PeriodGenerator.reconcile_all(now=at(2024, 9, 5))
        results = PeriodGenerator.reconcile_all(now=at(2024, 9, 5))
        assert results["seeded"] == 0
        assert results["created"] == 0
        assert results["skipped"] == 1

    def test_get_due_works_previews_without_writing(self, work):
        due = PeriodGenerator.get_due_works(date(2024, 9, 5))
        assert [(w.id, reason) for w, reason in due] == [(work.id, "seed")]
        assert not Period.objects.exists()


@pytest.mark.django_db
class TestManualPeriods:
    def test_list_periods_most_recent_first(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        PeriodGenerator.ensure_next_period(work.id, now=at(2024, 9, 21))

        periods = PeriodService.list_periods(work.id)
        assert [p.due_date for p in periods] == [date(2024, 10, 20), date(2024, 9, 20)]

    def test_create_manual_period(self, work):
        period = PeriodService.create_manual_period(
            work.id, "Special audit", date(2024, 11, 1), date(2024, 11, 30), date(2024, 12, 5),
            billing_amount=Decimal("2500.00"), notes="One-off audit",
        )
        assert period.billing_amount == Decimal("2500.00")
        assert period.tasks.count() == 0

    def test_duplicate_due_date_is_a_conflict(self, work):
        PeriodGenerator.seed_initial_period(work.id, now=at(2024, 9, 5))
        with pytest.raises(DuplicatePeriodError) as exc_info:
            PeriodService.create_manual_period(
                work.id, "Again", date(2024, 9, 1), date(2024, 9, 30), date(2024, 9, 20),
            )
        assert exc_info.value.status == 409
        assert Period.objects.filter(work=work).count() == 1

    def test_start_after_end_is_rejected(self, work):
        with pytest.raises(ValidationError):
            PeriodService.create_manual_period(
                work.id, "Backwards", date(2024, 9, 30), date(2024, 9, 1), date(2024, 9, 20),
            )

    def test_non_recurring_work_is_rejected(self):
        with pytest.raises(BusinessRuleError):
            PeriodService.create_manual_period(
                WorkFactory().id, "Nope", date(2024, 9, 1), date(2024, 9, 30), date(2024, 9, 20),
            )


@pytest.mark.django_db
class TestManualTasks:
    def test_manual_task_goes_after_existing_tasks(self):
        period = PeriodFactory()
        PeriodTaskFactory(period=period, sort_order=4)

        task = PeriodService.create_manual_task(period.id, "Call client", date(2024, 9, 28), priority="high")

        assert task.template_id is None
        assert task.sort_order == 5
        assert task.priority == "high"
        assert [t.id for t in PeriodService.list_period_tasks(period.id)][-1] == task.id

    def test_billed_period_is_locked(self):
        period = PeriodFactory(is_billed=True, status=Period.Status.COMPLETED)
        with pytest.raises(PeriodLockedError):
            PeriodService.create_manual_task(period.id, "Late task", date(2024, 9, 28))

    def test_unknown_priority_is_rejected(self):
        period = PeriodFactory()
        with pytest.raises(ValidationError):
            PeriodService.create_manual_task(period.id, "Task", date(2024, 9, 28), priority="urgent")

    def test_notes_can_change_on_billed_period(self):
        period = PeriodFactory(is_billed=True, status=Period.Status.COMPLETED)
        updated = PeriodService.update_period_notes(period.id, "Filed late, penalty waived")
        assert updated.notes == "Filed late, penalty waived"

    def test_update_task_details(self):
        user = UserFactory()
        task = PeriodTaskFactory(remarks="")

        updated = PeriodService.update_task_details(
            task.id, assigned_to=user, actual_hours=Decimal("2.50"), remarks="Waiting on bank statement"
        )

        task.refresh_from_db()
        assert updated.id == task.id
        assert task.assigned_to == user
        assert task.actual_hours == Decimal("2.50")
        assert task.remarks == "Waiting on bank statement"
        entry = WorkActivity.objects.get(action=WorkActivity.Action.TASK_UPDATED)
        assert entry.metadata["fields"] == ["assigned_to", "actual_hours", "remarks"]

    def test_update_task_details_touches_only_given_fields(self):
        task = PeriodTaskFactory(remarks="Keep me", actual_hours=Decimal("1.00"))
        PeriodService.update_task_details(task.id, assigned_to=None)
        PeriodService.update_task_details(task.id, actual_hours=Decimal("3.00"))

        task.refresh_from_db()
        assert task.remarks == "Keep me"
        assert task.actual_hours == Decimal("3.00")
        assert WorkActivity.objects.filter(action=WorkActivity.Action.TASK_UPDATED).count() == 1

    def test_task_details_of_billed_period_are_locked(self):
        period = PeriodFactory(is_billed=True, status=Period.Status.COMPLETED)
        task = PeriodTaskFactory(period=period)
        with pytest.raises(PeriodLockedError):
            PeriodService.update_task_details(task.id, remarks="Too late")

    def test_unknown_task_field_is_rejected(self):
        task = PeriodTaskFactory()
        with pytest.raises(ValidationError):
            PeriodService.update_task_details(task.id, title="Renamed")

    def test_negative_actual_hours_is_rejected(self):
        task = PeriodTaskFactory()
        with pytest.raises(ValidationError):
            PeriodService.update_task_details(task.id, actual_hours=Decimal("-1"))


@pytest.mark.django_db
class TestWorkTasks:
    def test_copy_templates_to_one_off_work(self):
        work = WorkFactory(due_date=date(2024, 9, 30))
        TaskTemplateFactory(work=work, due_date_offset_days=10)
        TaskTemplateFactory(work=work, due_date_offset_days=-5)

        assert WorkTaskService.copy_templates_to_work(work.id) == 2
        assert sorted(t.due_date for t in work.tasks.all()) == [date(2024, 9, 25), date(2024, 10, 10)]

    def test_copy_runs_once(self):
        work = WorkFactory()
        TaskTemplateFactory(work=work)
        WorkTaskService.copy_templates_to_work(work.id)
        assert WorkTaskService.copy_templates_to_work(work.id) == 0
        assert WorkTask.objects.filter(work=work).count() == 1

    def test_recurring_work_is_rejected(self, work):
        with pytest.raises(BusinessRuleError):
            WorkTaskService.copy_templates_to_work(work.id)

    def test_create_manual_work_task(self):
        work = WorkFactory()
        first = WorkTaskService.create_manual_work_task(work.id, "Draft report", date(2024, 9, 20))
        second = WorkTaskService.create_manual_work_task(work.id, "Review report", date(2024, 9, 25))
        assert (first.sort_order, second.sort_order) == (0, 1)
        assert [t.id for t in WorkTaskService.list_work_tasks(work.id)] == [first.id, second.id]

    def test_update_work_task_details(self):
        task = WorkTaskFactory()
        WorkTaskService.update_work_task_details(task.id, actual_hours=Decimal("4.00"), remarks="Sent for signature")
        task.refresh_from_db()
        assert task.actual_hours == Decimal("4.00")
        assert task.remarks == "Sent for signature"

    def test_billed_work_is_locked(self):
        work = WorkFactory(is_billed=True, status=Work.Status.COMPLETED)
        task = WorkTaskFactory(work=work)
        with pytest.raises(WorkLockedError):
            WorkTaskService.create_manual_work_task(work.id, "Late task", date(2024, 9, 28))
        with pytest.raises(WorkLockedError):
            WorkTaskService.update_work_task_details(task.id, remarks="Too late")
