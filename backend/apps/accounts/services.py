"""
Accounts services - user lookup and creation.
"""

from django.db import IntegrityError, transaction

from apps.accounts.models import User
from apps.core.logging import get_logger

logger = get_logger(__name__)


def get_or_create_user(email: str, name: str = "") -> User:
    """
    Get or create a User by email.

    Called when an invitation is accepted by someone who has never signed in.
    A non-empty name overwrites the stored one.

    Uses select_for_update for explicit row locking under concurrent requests.
    """
    email = User.objects.normalize_email(email).lower()
    with transaction.atomic():
        try:
            user = User.objects.select_for_update().get(email__iexact=email)
            if name and user.name != name:
                user.name = name
                user.save(update_fields=["name", "updated_at"])
            return user
        except User.DoesNotExist:
            pass

    try:
        with transaction.atomic():
            user = User.objects.create_user(email=email, name=name)
    except IntegrityError:
        # Concurrent insert won the race, fetch the winner
        return User.objects.get(email__iexact=email)

    logger.info("user_created", user_id=str(user.id))
    return user
