from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from django.db import transaction
from django.db.models import Max
from django.utils import timezone

from ..models import Priority, Work, WorkActivity, WorkTask
from ..validation.errors import BusinessRuleError, NotFoundError, WorkLockedError
from .activity_service import ActivityService
from .period_service import apply_task_details, validate_priority
from .recurrence import task_due_date
from .template_service import TaskTemplateService

logger = logging.getLogger(__name__)


class WorkTaskService:
    """Task lists of one-off (non-recurring) works."""

    @staticmethod
    def _lock_one_off(work_id: int) -> Work:
        try:
            work = Work.objects.select_for_update().get(pk=work_id)
        except Work.DoesNotExist:
            raise NotFoundError(f"Work {work_id} not found")
        if work.is_recurring:
            raise BusinessRuleError(f"Work {work.id} is recurring; its tasks live on its periods")
        return work

    @staticmethod
    def list_work_tasks(work_id: int) -> List[WorkTask]:
        if not Work.objects.filter(pk=work_id).exists():
            raise NotFoundError(f"Work {work_id} not found")
        return list(WorkTask.objects.filter(work_id=work_id).order_by('sort_order', 'id'))

    @classmethod
    @transaction.atomic
    def copy_templates_to_work(cls, work_id: int, now: Optional[datetime] = None, actor=None) -> int:
        """
        Copy the work's active templates into its task list.

        Runs once: a work that already has tasks is left alone. Returns the
        number of tasks created.
        """
        work = cls._lock_one_off(work_id)
        if work.tasks.exists():
            return 0

        templates = TaskTemplateService.list_templates(work.id)
        if not templates:
            return 0

        base_date = work.due_date or timezone.localdate(now or timezone.now())
        WorkTask.objects.bulk_create([
            WorkTask(
                work=work,
                template=template,
                title=template.title,
                description=template.description,
                priority=template.priority,
                due_date=task_due_date(base_date, template.due_date_offset_days),
                estimated_hours=template.estimated_hours,
                sort_order=template.display_order,
            )
            for template in templates
        ])

        ActivityService.log(
            work,
            WorkActivity.Action.TASK_CREATED,
            f"{len(templates)} task(s) copied from templates",
            user=actor,
            metadata={'task_count': len(templates)},
            now=now,
        )
        logger.info(f"Copied {len(templates)} template task(s) to work {work.id}")
        return len(templates)

    @classmethod
    @transaction.atomic
    def create_manual_work_task(
        cls,
        work_id: int,
        title: str,
        due_date: date,
        priority: str = Priority.MEDIUM,
        description: str = "",
        assigned_to=None,
        estimated_hours: Optional[Decimal] = None,
        actor=None,
        now: Optional[datetime] = None,
    ) -> WorkTask:
        work = cls._lock_one_off(work_id)
        if work.is_billed:
            raise WorkLockedError(work.id)
        validate_priority(priority)

        last_order = work.tasks.aggregate(Max('sort_order'))['sort_order__max']
        task = WorkTask.objects.create(
            work=work,
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
            work,
            WorkActivity.Action.TASK_CREATED,
            f"Task '{title}' added",
            user=actor,
            metadata={'work_task_id': task.id, 'due_date': due_date.isoformat()},
            now=now,
        )
        return task

    @staticmethod
    @transaction.atomic
    def update_work_task_details(task_id: int, actor=None, now: Optional[datetime] = None, **changes) -> WorkTask:
        work_id = WorkTask.objects.filter(pk=task_id).values_list('work_id', flat=True).first()
        if work_id is None:
            raise NotFoundError(f"Task {task_id} not found")

        work = Work.objects.select_for_update().get(pk=work_id)
        task = WorkTask.objects.select_for_update().get(pk=task_id)
        if work.is_billed:
            raise WorkLockedError(work.id)

        updated = apply_task_details(task, changes)
        if updated:
            ActivityService.log(
                work,
                WorkActivity.Action.TASK_UPDATED,
                f"Task '{task.title}' updated: {', '.join(updated)}",
                user=actor,
                metadata={'work_task_id': task.id, 'fields': updated},
                now=now,
            )
        return task
