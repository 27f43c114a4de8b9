import logging
from datetime import date, datetime, time

from django.core.management.base import BaseCommand
from django.utils import timezone

from works.services.period_service import PeriodGenerator

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Seed and generate due periods for every active recurring work"

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            type=str,
            help='Date to reconcile as of (YYYY-MM-DD). Defaults to today.',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show which works would get a period without creating anything.',
        )

    def handle(self, *args, **options):
        target_date = None
        if options['date']:
            try:
                target_date = date.fromisoformat(options['date'])
            except ValueError:
                self.stderr.write(self.style.ERROR(f"Invalid date format: {options['date']}"))
                return

        target_date = target_date or timezone.localdate()
        now = timezone.make_aware(datetime.combine(target_date, time(12, 0)))
        dry_run = options['dry_run']

        self.stdout.write(f"Reconciling recurring periods as of {target_date}")

        if dry_run:
            due = PeriodGenerator.get_due_works(target_date)
            self.stdout.write(f"[DRY RUN] Found {len(due)} works needing a period:")
            for work, reason in due:
                label = "initial period" if reason == "seed" else "next period"
                self.stdout.write(
                    f"  - Work #{work.id}: {work.title} for {work.customer.name} "
                    f"({work.recurrence_pattern}) - {label}"
                )
            return

        results = PeriodGenerator.reconcile_all(now=now)

        self.stdout.write(self.style.SUCCESS(
            f"Reconcile complete: "
            f"{results['seeded']} seeded, "
            f"{results['created']} created, "
            f"{results['skipped']} skipped, "
            f"{results['failed']} failed "
            f"(of {results['total']} total)"
        ))

        if results['failed'] > 0:
            self.stdout.write(self.style.WARNING(
                f"Check logs for details on {results['failed']} failed works."
            ))
