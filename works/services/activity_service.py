from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from django.utils import timezone

if TYPE_CHECKING:
    from datetime import datetime
    from works.models import Period, Work, WorkActivity

logger = logging.getLogger(__name__)


class ActivityService:

    @staticmethod
    def log(
        work: "Work",
        action: str,
        description: str,
        period: Optional["Period"] = None,
        user=None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional["datetime"] = None,
    ) -> "WorkActivity":
        from works.models import WorkActivity

        return WorkActivity.objects.create(
            work=work,
            period=period,
            user=user,
            action=action,
            description=description,
            metadata=metadata or {},
            timestamp=now or timezone.now(),
        )

    @staticmethod
    def list_for_work(work_id: int, limit: int = 50) -> List["WorkActivity"]:
        from works.models import WorkActivity
        return list(
            WorkActivity.objects.filter(work_id=work_id)
            .select_related('period', 'user')
            .order_by('-timestamp', '-id')[:limit]
        )
