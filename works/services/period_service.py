from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from ..models import Period, PeriodTask, Priority, TaskTemplate, Work, WorkActivity
from ..validation.errors import (
    APIError,
    BusinessRuleError,
    DuplicatePeriodError,
    FieldError,
    NotFoundError,
    PeriodLockedError,
    TransactionFailureError,
    ValidationError,
)
from .activity_service import ActivityService
from .recurrence import coerce_pattern, initial_due_date, next_due_date, period_bounds_for, task_due_date
from .template_service import TaskTemplateService

logger = logging.getLogger(__name__)


def _today(now: Optional[datetime]) -> date:
    return timezone.localdate(now) if now else timezone.localdate()


def _lock_work(work_id: int) -> Work:
    try:
        return Work.objects.select_for_update().select_related('service').get(pk=work_id)
    except Work.DoesNotExist:
        raise NotFoundError(f"Work {work_id} not found")


def _get_period(period_id: int, for_update: bool = False) -> Period:
    qs = Period.objects.select_related('work')
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=period_id)
    except Period.DoesNotExist:
        raise NotFoundError(f"Period {period_id} not found")


def validate_priority(priority: str) -> str:
    if priority not in Priority.values:
        raise ValidationError(
            message=f"Unknown priority {priority!r}",
            fields=[FieldError(field="priority", code="FIELD_INVALID", message=f"Expected one of: {', '.join(Priority.values)}")],
        )
    return priority


TASK_DETAIL_FIELDS = ('assigned_to', 'actual_hours', 'remarks')


def apply_task_details(task, changes: Dict[str, object]) -> List[str]:
    """Write the editable detail fields of a period or work task; returns the fields changed."""
    unknown = sorted(set(changes) - set(TASK_DETAIL_FIELDS))
    if unknown:
        raise ValidationError(
            message=f"Cannot update task field(s): {', '.join(unknown)}",
            fields=[FieldError(field=name, code="FIELD_INVALID", message="Not editable") for name in unknown],
        )
    actual_hours = changes.get('actual_hours')
    if actual_hours is not None and actual_hours < 0:
        raise ValidationError(
            message="Actual hours cannot be negative",
            fields=[FieldError(field="actual_hours", code="FIELD_OUT_OF_RANGE", message="Must be zero or more")],
        )

    updated = []
    for name, value in changes.items():
        if name == 'remarks' and value is None:
            value = ""
        if getattr(task, name) != value:
            setattr(task, name, value)
            updated.append(name)
    if updated:
        task.save(update_fields=updated + ['updated_at'])
    return updated


class PeriodGenerator:
    """
    Derives periods of recurring works and populates them from the work's
    task templates.

    Every entry point is idempotent: the work row is locked while the next
    period is computed, and the (work, due_date) unique constraint turns a
    lost race into a no-op.
    """

    @staticmethod
    def _create_period_with_tasks(
        work: Work,
        due_date: date,
        templates: List[TaskTemplate],
        actor=None,
        now: Optional[datetime] = None,
        notes: str = "Auto-generated recurring period",
    ) -> Period:
        start, end, name = period_bounds_for(due_date, work.recurrence_pattern)

        period = Period.objects.create(
            work=work,
            period_name=name,
            period_start_date=start,
            period_end_date=end,
            due_date=due_date,
            status=Period.Status.PENDING,
            billing_amount=None,
            is_billed=False,
            notes=notes,
        )

        PeriodTask.objects.bulk_create([
            PeriodTask(
                period=period,
                template=template,
                title=template.title,
                description=template.description,
                priority=template.priority,
                due_date=task_due_date(end, template.due_date_offset_days),
                status=PeriodTask.Status.PENDING,
                estimated_hours=template.estimated_hours,
                sort_order=template.display_order,
            )
            for template in templates
        ])

        ActivityService.log(
            work,
            WorkActivity.Action.PERIOD_CREATED,
            f"Period {name} created with {len(templates)} task(s)",
            period=period,
            user=actor,
            metadata={
                'period_name': name,
                'period_start_date': start.isoformat(),
                'period_end_date': end.isoformat(),
                'due_date': due_date.isoformat(),
                'task_count': len(templates),
            },
            now=now,
        )
        return period

    @classmethod
    def _insert_or_skip(
        cls,
        work: Work,
        due_date: date,
        actor=None,
        now: Optional[datetime] = None,
    ) -> Optional[Period]:
        templates = TaskTemplateService.list_templates(work.id)
        try:
            with transaction.atomic():
                period = cls._create_period_with_tasks(work, due_date, templates, actor=actor, now=now)
        except IntegrityError:
            logger.info(f"Period for work {work.id} due {due_date} already exists, skipping")
            return None

        logger.info(
            f"Created period {period.id} ({period.period_name}) for work {work.id} "
            f"with {len(templates)} task(s)"
        )
        return period

    @classmethod
    def ensure_next_period(
        cls,
        work_id: int,
        now: Optional[datetime] = None,
        actor=None,
    ) -> Optional[Period]:
        """
        Create the next period of a recurring work if one is due.

        A new period is due when the latest period's due date has passed or
        the latest period is completed. Returns the created period, or None
        when nothing had to be created.
        """
        today = _today(now)

        try:
            with transaction.atomic():
                work = _lock_work(work_id)
                if not work.is_recurring:
                    return None
                pattern = coerce_pattern(work.recurrence_pattern)

                existing = list(work.periods.only('id', 'due_date', 'status'))
                if not existing:
                    logger.warning(f"Recurring work {work.id} has no bootstrap period; seed it first")
                    return None
                latest = max(existing, key=lambda p: p.due_date)

                if latest.due_date >= today and latest.status != Period.Status.COMPLETED:
                    return None

                next_due = next_due_date(latest.due_date, pattern, work.recurrence_day)
                if any(p.due_date == next_due for p in existing):
                    return None

                return cls._insert_or_skip(work, next_due, actor=actor, now=now)
        except DatabaseError as e:
            logger.exception(f"Error generating next period for work {work_id}")
            raise TransactionFailureError("Period generation", cause=e) from e

    @classmethod
    def seed_initial_period(
        cls,
        work_id: int,
        now: Optional[datetime] = None,
        actor=None,
    ) -> Optional[Period]:
        """Create the first period of a recurring work that has none."""
        try:
            with transaction.atomic():
                work = _lock_work(work_id)
                if not work.is_recurring:
                    return None
                pattern = coerce_pattern(work.recurrence_pattern)
                if work.periods.exists():
                    return None

                start_date = work.start_date or _today(now)
                due = initial_due_date(start_date, pattern, work.recurrence_day)
                return cls._insert_or_skip(work, due, actor=actor, now=now)
        except DatabaseError as e:
            logger.exception(f"Error seeding initial period for work {work_id}")
            raise TransactionFailureError("Period generation", cause=e) from e

    @staticmethod
    def get_due_works(today: date) -> List[tuple]:
        """Read-only preview of ``reconcile_all``: (work, "seed" | "next") pairs."""
        due = []
        works = (
            Work.objects.filter(is_recurring=True)
            .exclude(status=Work.Status.COMPLETED)
            .select_related('customer')
            .order_by('id')
        )
        for work in works:
            latest = work.periods.order_by('-due_date').first()
            if latest is None:
                due.append((work, "seed"))
            elif latest.due_date < today or latest.status == Period.Status.COMPLETED:
                due.append((work, "next"))
        return due

    @classmethod
    def reconcile_all(cls, now: Optional[datetime] = None) -> Dict[str, int]:
        work_ids = list(
            Work.objects.filter(is_recurring=True)
            .exclude(status=Work.Status.COMPLETED)
            .values_list('id', flat=True)
        )

        results = {
            'total': len(work_ids),
            'seeded': 0,
            'created': 0,
            'skipped': 0,
            'failed': 0,
        }

        for work_id in work_ids:
            try:
                if not Period.objects.filter(work_id=work_id).exists():
                    period = cls.seed_initial_period(work_id, now=now)
                    key = 'seeded'
                else:
                    period = cls.ensure_next_period(work_id, now=now)
                    key = 'created'
            except APIError:
                logger.exception(f"Reconciling periods failed for work {work_id}")
                results['failed'] += 1
                continue

            results[key if period else 'skipped'] += 1

        logger.info(
            f"Period reconcile: {results['seeded']} seeded, {results['created']} created, "
            f"{results['skipped']} skipped, {results['failed']} failed (of {results['total']})"
        )
        return results


class PeriodService:

    @staticmethod
    def list_periods(work_id: int) -> List[Period]:
        if not Work.objects.filter(pk=work_id).exists():
            raise NotFoundError(f"Work {work_id} not found")
        return list(Period.objects.filter(work_id=work_id).order_by('-due_date'))

    @staticmethod
    def list_period_tasks(period_id: int) -> List[PeriodTask]:
        if not Period.objects.filter(pk=period_id).exists():
            raise NotFoundError(f"Period {period_id} not found")
        return list(
            PeriodTask.objects.filter(period_id=period_id)
            .select_related('assigned_to')
            .order_by('sort_order', 'id')
        )

    @staticmethod
    @transaction.atomic
    def create_manual_period(
        work_id: int,
        period_name: str,
        period_start_date: date,
        period_end_date: date,
        due_date: date,
        billing_amount: Optional[Decimal] = None,
        notes: str = "",
        actor=None,
        now: Optional[datetime] = None,
    ) -> Period:
        if period_start_date > period_end_date:
            raise ValidationError(
                message="Period start date must not be after its end date",
                fields=[FieldError(field="period_end_date", code="FIELD_OUT_OF_RANGE", message="Must be on or after period_start_date")],
            )
        if billing_amount is not None and billing_amount < 0:
            raise ValidationError(
                message="Billing amount cannot be negative",
                fields=[FieldError(field="billing_amount", code="FIELD_OUT_OF_RANGE", message="Must be zero or more")],
            )

        work = _lock_work(work_id)
        if not work.is_recurring:
            raise BusinessRuleError(f"Work {work.id} is not recurring; periods belong to recurring works only")

        if Period.objects.filter(work=work, due_date=due_date).exists():
            raise DuplicatePeriodError(work.id, due_date)

        try:
            with transaction.atomic():
                period = Period.objects.create(
                    work=work,
                    period_name=period_name,
                    period_start_date=period_start_date,
                    period_end_date=period_end_date,
                    due_date=due_date,
                    billing_amount=billing_amount,
                    notes=notes,
                )
        except IntegrityError:
            raise DuplicatePeriodError(work.id, due_date)

        ActivityService.log(
            work,
            WorkActivity.Action.PERIOD_CREATED,
            f"Period {period_name} added manually",
            period=period,
            user=actor,
            metadata={'due_date': due_date.isoformat(), 'manual': True},
            now=now,
        )
        logger.info(f"Manual period {period.id} created for work {work.id}")
        return period

    @staticmethod
    @transaction.atomic
    def create_manual_task(
        period_id: int,
        title: str,
        due_date: date,
        priority: str = Priority.MEDIUM,
        description: str = "",
        assigned_to=None,
        estimated_hours: Optional[Decimal] = None,
        actor=None,
        now: Optional[datetime] = None,
    ) -> PeriodTask:
        period = _get_period(period_id, for_update=True)
        if period.is_billed:
            raise PeriodLockedError(period.id)
        validate_priority(priority)

        last_order = period.tasks.aggregate(Max('sort_order'))['sort_order__max']
        task = PeriodTask.objects.create(
            period=period,
            template=None,
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            assigned_to=assigned_to,
            estimated_hours=estimated_hours,
            sort_order=(last_order + 1) if last_order is not None else 0,
        )

        ActivityService.log(
            period.work,
            WorkActivity.Action.TASK_CREATED,
            f"Task '{title}' added to {period.period_name}",
            period=period,
            user=actor,
            metadata={'task_id': task.id, 'due_date': due_date.isoformat()},
            now=now,
        )
        logger.info(f"Manual task {task.id} added to period {period.id}")
        return task

    @staticmethod
    @transaction.atomic
    def update_task_details(task_id: int, actor=None, now: Optional[datetime] = None, **changes) -> PeriodTask:
        """
        Set ``assigned_to``, ``actual_hours`` or ``remarks`` on a period task.

        Only the keys passed are touched. Tasks of a billed period are locked.
        """
        period_id = PeriodTask.objects.filter(pk=task_id).values_list('period_id', flat=True).first()
        if period_id is None:
            raise NotFoundError(f"Task {task_id} not found")

        period = _get_period(period_id, for_update=True)
        task = PeriodTask.objects.select_for_update().get(pk=task_id)
        if period.is_billed:
            raise PeriodLockedError(period.id)

        updated = apply_task_details(task, changes)
        if updated:
            ActivityService.log(
                period.work,
                WorkActivity.Action.TASK_UPDATED,
                f"Task '{task.title}' updated: {', '.join(updated)}",
                period=period,
                user=actor,
                metadata={'task_id': task.id, 'fields': updated},
                now=now,
            )
        return task

    @staticmethod
    @transaction.atomic
    def update_period_notes(period_id: int, notes: str) -> Period:
        period = _get_period(period_id, for_update=True)
        period.notes = notes
        period.save(update_fields=['notes', 'updated_at'])
        return period

