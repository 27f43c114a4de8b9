from datetime import date
from io import StringIO

import pytest
from django.core.management import call_command

from works.models import Period
from tests.factories import PeriodFactory, RecurringWorkFactory


@pytest.mark.django_db
class TestReconcilePeriodsCommand:
    def test_seeds_and_generates(self):
        fresh = RecurringWorkFactory(start_date=date(2024, 9, 1))
        due = RecurringWorkFactory()
        PeriodFactory(work=due, due_date=date(2024, 9, 20))
        out = StringIO()

        call_command("reconcile_periods", "--date", "2024-10-01", stdout=out)

        assert "1 seeded, 1 created, 0 skipped, 0 failed (of 2 total)" in out.getvalue()
        assert Period.objects.filter(work=fresh).get().due_date == date(2024, 9, 20)
        assert Period.objects.filter(work=due).order_by("-due_date").first().due_date == date(2024, 10, 20)

    def test_dry_run_writes_nothing(self):
        work = RecurringWorkFactory(title="Monthly GST")
        out = StringIO()

        call_command("reconcile_periods", "--date", "2024-10-01", "--dry-run", stdout=out)

        output = out.getvalue()
        assert "[DRY RUN] Found 1 works needing a period" in output
        assert f"Work #{work.id}: Monthly GST" in output
        assert not Period.objects.exists()

    def test_invalid_date(self):
        err = StringIO()
        call_command("reconcile_periods", "--date", "01/10/2024", stderr=err)
        assert "Invalid date format" in err.getvalue()
