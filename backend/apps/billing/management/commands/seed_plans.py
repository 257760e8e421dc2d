"""
Management command to create the default plan catalog.

Safe to run repeatedly; existing plans are left alone unless --update is given.
Usage: python manage.py seed_plans [--update]
"""

from django.core.management.base import BaseCommand

from apps.billing.plans import seed_default_plans


class Command(BaseCommand):
    help = "Create the default subscription plans"

    def add_arguments(self, parser):
        parser.add_argument(
            "--update",
            action="store_true",
            help="Overwrite prices, limits and features of existing plans",
        )

    def handle(self, *args, **options):
        created, updated = seed_default_plans(update_existing=options["update"])
        self.stdout.write(
            self.style.SUCCESS(f"Plans seeded: {created} created, {updated} updated")
        )
