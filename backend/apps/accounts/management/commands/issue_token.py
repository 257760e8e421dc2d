"""
Management command to mint an API bearer token for a user.

Intended for local development and operations scripts.
Example: ./manage.py issue_token alice@example.com --minutes 30
"""

from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError

from apps.accounts.models import User
from apps.core.security import issue_access_token


class Command(BaseCommand):
    help = "Print a signed bearer token for the given user"

    def add_arguments(self, parser):
        parser.add_argument("email", type=str, help="Email of an existing active user")
        parser.add_argument(
            "--minutes",
            type=int,
            default=None,
            help="Token lifetime in minutes (default: JWT_EXPIRY_MINUTES)",
        )

    def handle(self, *args, **options):
        user = User.objects.filter(email__iexact=options["email"], is_active=True).first()
        if user is None:
            raise CommandError(f"No active user with email {options['email']}")

        minutes = options["minutes"]
        token = issue_access_token(
            user, expires_in=timedelta(minutes=minutes) if minutes else None
        )
        self.stdout.write(token)
