"""
Management command to expire stale invitations.

Run periodically via cron or scheduled task.
Example: ./manage.py expire_invitations --dry-run
"""

from django.core.management.base import BaseCommand

from apps.organizations.services import expire_invitations


class Command(BaseCommand):
    help = "Mark pending invitations past their expiry date as expired"

    def add_arguments(self, parser):
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show how many invitations would expire without changing them",
        )

    def handle(self, *args, **options):
        dry_run = options["dry_run"]
        count = expire_invitations(dry_run=dry_run)

        if dry_run:
            self.stdout.write(self.style.WARNING(f"[DRY RUN] Would expire {count} invitations"))
        else:
            self.stdout.write(self.style.SUCCESS(f"Expired {count} invitations"))
