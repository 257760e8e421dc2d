"""
Management command to finish cancellations whose billing period has ended.

Run periodically via cron or scheduled task.
Example: ./manage.py expire_subscriptions --dry-run
"""

from django.core.management.base import BaseCommand

from apps.billing.services import expire_subscriptions


class Command(BaseCommand):
    help = "Cancel subscriptions flagged cancel_at_period_end whose period has ended"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show how many subscriptions would be cancelled without changing them",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        count = expire_subscriptions(dry_run=dry_run)

        if dry_run:
            self.stdout.write(self.style.WARNING(f"[DRY RUN] Would cancel {count} subscriptions"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Cancelled {count} subscriptions"))
