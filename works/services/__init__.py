"""
PracticeFlow Services Layer

Business logic for recurring works, following strict separation:
- Models: Pure data + constraints (no business logic)
- Services: Business logic + transactions + side effects orchestration
- Views/APIs: Request parsing, status coercion, response mapping

Period generation, status changes and billing are idempotent and safe to
call from a request, the management command or a scheduler.
"""

from .activity_service import ActivityService
from .billing_service import BillingOutcome, BillingService
from .period_service import PeriodGenerator, PeriodService
from .status_service import StatusService, TransitionResult, coerce_status
from .template_service import TaskTemplateService
from .work_task_service import WorkTaskService

__all__ = [
    "ActivityService",
    "BillingOutcome",
    "BillingService",
    "PeriodGenerator",
    "PeriodService",
    "StatusService",
    "TransitionResult",
    "coerce_status",
    "TaskTemplateService",
    "WorkTaskService",
]
