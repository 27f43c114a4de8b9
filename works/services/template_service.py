from __future__ import annotations

from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from works.models import TaskTemplate


class TaskTemplateService:
    """Read-only view of a work's task templates, as used during generation."""

    @staticmethod
    def list_templates(work_id: int) -> List["TaskTemplate"]:
        from works.models import TaskTemplate
        return list(
            TaskTemplate.objects.filter(work_id=work_id, is_active=True).order_by('display_order', 'id')
        )
