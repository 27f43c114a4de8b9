"""
Status state machine for period tasks, periods, work tasks and works.

Completing the last open task of a period (or of a one-off work) completes
the parent as well. Billing runs after the status change has committed, in
its own transaction, so a billing failure never undoes a completion.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Type

from django.db import models, transaction
from django.utils import timezone

from ..models import Period, PeriodTask, Work, WorkActivity, WorkTask
from ..validation.errors import (
    InvalidStatusError,
    InvalidTransitionError,
    NotFoundError,
    PeriodLockedError,
    TransactionFailureError,
    WorkLockedError,
)
from .activity_service import ActivityService
from .billing_service import BillingOutcome, BillingService

logger = logging.getLogger(__name__)

PENDING = "pending"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"

# Shared by tasks, periods and works; completed is terminal.
VALID_TRANSITIONS: Dict[str, List[str]] = {
    PENDING: [IN_PROGRESS, COMPLETED],
    IN_PROGRESS: [COMPLETED],
    COMPLETED: [],
}


def coerce_status(value, choices: Type[models.TextChoices]) -> str:
    if isinstance(value, str):
        normalized = value.strip().lower().replace("-", "_")
        if normalized in choices.values:
            return normalized
    raise InvalidStatusError(value, list(choices.values))


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in VALID_TRANSITIONS.get(from_status, [])


@dataclass
class TransitionResult:
    task: Optional[models.Model] = None
    period: Optional[Period] = None
    work: Optional[Work] = None
    changed: bool = False
    parent_completed: bool = False
    billing: Optional[BillingOutcome] = None


class StatusService:

    @staticmethod
    def _apply(instance, status: str, now: datetime, actor=None) -> List[str]:
        instance.status = status
        fields = ['status', 'updated_at']
        if status == COMPLETED:
            instance.completed_at = now
            fields.append('completed_at')
            if hasattr(instance, 'completed_by'):
                instance.completed_by = actor
                fields.append('completed_by')
        instance.save(update_fields=fields)
        return fields

    @staticmethod
    def _bill(bill, entity_id: int, now: datetime, actor=None) -> BillingOutcome:
        try:
            return bill(entity_id, now=now, actor=actor)
        except TransactionFailureError as e:
            logger.error(f"Billing failed after completion, retry later: {e.message}")
            return BillingOutcome(BillingOutcome.FAILED, message=e.message)

    @classmethod
    def _complete_period(cls, period: Period, now: datetime, actor=None, reason: str = "") -> None:
        cls._apply(period, COMPLETED, now)
        ActivityService.log(
            period.work,
            WorkActivity.Action.PERIOD_COMPLETED,
            f"Period {period.period_name} completed{reason}",
            period=period,
            user=actor,
            now=now,
        )
        logger.info(f"Period {period.id} completed{reason}")

    @classmethod
    def _complete_work(cls, work: Work, now: datetime, actor=None, reason: str = "") -> None:
        cls._apply(work, COMPLETED, now)
        ActivityService.log(
            work,
            WorkActivity.Action.WORK_COMPLETED,
            f"Work {work.title} completed{reason}",
            user=actor,
            now=now,
        )
        logger.info(f"Work {work.id} completed{reason}")

    @classmethod
    def set_task_status(cls, task_id: int, status, actor=None, now: Optional[datetime] = None) -> TransitionResult:
        """
        Move a period task to ``status``.

        Setting the current status again is a no-op. When this completes the
        period's last open task, the period is completed and then billed.
        """
        status = coerce_status(status, PeriodTask.Status)
        now = now or timezone.now()

        with transaction.atomic():
            period_id = PeriodTask.objects.filter(pk=task_id).values_list('period_id', flat=True).first()
            if period_id is None:
                raise NotFoundError(f"Task {task_id} not found")

            # Period first, then task; every writer locks in this order.
            period = Period.objects.select_for_update().select_related('work').get(pk=period_id)
            task = PeriodTask.objects.select_for_update().get(pk=task_id)
            result = TransitionResult(task=task, period=period, work=period.work)

            if task.status == status:
                return result
            if period.is_billed:
                raise PeriodLockedError(period.id)
            if not can_transition(task.status, status):
                raise InvalidTransitionError("task", task.status, status)

            previous = task.status
            cls._apply(task, status, now, actor)
            result.changed = True
            ActivityService.log(
                period.work,
                WorkActivity.Action.TASK_COMPLETED if status == COMPLETED else WorkActivity.Action.STATUS_CHANGED,
                f"Task '{task.title}' moved from {previous} to {status}",
                period=period,
                user=actor,
                metadata={'task_id': task.id, 'from': previous, 'to': status},
                now=now,
            )

            if status == COMPLETED and period.status != COMPLETED:
                if not period.tasks.exclude(status=COMPLETED).exists():
                    cls._complete_period(period, now, actor, reason=" (all tasks completed)")
                    result.parent_completed = True

        if result.parent_completed:
            result.billing = cls._bill(BillingService.maybe_bill_period, period.id, now, actor)
        return result

    @classmethod
    def set_period_status(cls, period_id: int, status, actor=None, now: Optional[datetime] = None) -> TransitionResult:
        """Manual status change; completing a period bills it whatever its tasks say."""
        status = coerce_status(status, Period.Status)
        now = now or timezone.now()

        with transaction.atomic():
            try:
                period = Period.objects.select_for_update().select_related('work').get(pk=period_id)
            except Period.DoesNotExist:
                raise NotFoundError(f"Period {period_id} not found")
            result = TransitionResult(period=period, work=period.work)

            if period.status == status:
                return result
            if period.is_billed:
                raise PeriodLockedError(period.id)
            if not can_transition(period.status, status):
                raise InvalidTransitionError("period", period.status, status)

            if status == COMPLETED:
                cls._complete_period(period, now, actor)
            else:
                previous = period.status
                cls._apply(period, status, now)
                ActivityService.log(
                    period.work,
                    WorkActivity.Action.STATUS_CHANGED,
                    f"Period {period.period_name} moved from {previous} to {status}",
                    period=period,
                    user=actor,
                    metadata={'from': previous, 'to': status},
                    now=now,
                )
            result.changed = True

        if status == COMPLETED:
            result.billing = cls._bill(BillingService.maybe_bill_period, period.id, now, actor)
        return result

    @classmethod
    def set_work_task_status(cls, task_id: int, status, actor=None, now: Optional[datetime] = None) -> TransitionResult:
        status = coerce_status(status, WorkTask.Status)
        now = now or timezone.now()

        with transaction.atomic():
            work_id = WorkTask.objects.filter(pk=task_id).values_list('work_id', flat=True).first()
            if work_id is None:
                raise NotFoundError(f"Task {task_id} not found")

            work = Work.objects.select_for_update().get(pk=work_id)
            task = WorkTask.objects.select_for_update().get(pk=task_id)
            result = TransitionResult(task=task, work=work)

            if task.status == status:
                return result
            if work.is_billed:
                raise WorkLockedError(work.id)
            if not can_transition(task.status, status):
                raise InvalidTransitionError("task", task.status, status)

            previous = task.status
            cls._apply(task, status, now, actor)
            result.changed = True
            ActivityService.log(
                work,
                WorkActivity.Action.TASK_COMPLETED if status == COMPLETED else WorkActivity.Action.STATUS_CHANGED,
                f"Task '{task.title}' moved from {previous} to {status}",
                user=actor,
                metadata={'work_task_id': task.id, 'from': previous, 'to': status},
                now=now,
            )

            if status == COMPLETED and not work.is_recurring and work.status != COMPLETED:
                if not work.tasks.exclude(status=COMPLETED).exists():
                    cls._complete_work(work, now, actor, reason=" (all tasks completed)")
                    result.parent_completed = True

        if result.parent_completed:
            result.billing = cls._bill(BillingService.maybe_bill_work, work.id, now, actor)
        return result

    @classmethod
    def set_work_status(cls, work_id: int, status, actor=None, now: Optional[datetime] = None) -> TransitionResult:
        status = coerce_status(status, Work.Status)
        now = now or timezone.now()

        with transaction.atomic():
            try:
                work = Work.objects.select_for_update().get(pk=work_id)
            except Work.DoesNotExist:
                raise NotFoundError(f"Work {work_id} not found")
            result = TransitionResult(work=work)

            if work.status == status:
                return result
            if not can_transition(work.status, status):
                raise InvalidTransitionError("work", work.status, status)

            if status == COMPLETED:
                cls._complete_work(work, now, actor)
            else:
                previous = work.status
                cls._apply(work, status, now)
                ActivityService.log(
                    work,
                    WorkActivity.Action.STATUS_CHANGED,
                    f"Work {work.title} moved from {previous} to {status}",
                    user=actor,
                    metadata={'from': previous, 'to': status},
                    now=now,
                )
            result.changed = True

        if status == COMPLETED and not work.is_recurring:
            result.billing = cls._bill(BillingService.maybe_bill_work, work.id, now, actor)
        return result
