"""
Factories for organizations app models.
"""

from datetime import timedelta

import factory
from django.utils import timezone
from factory.django import DjangoModelFactory

from apps.organizations.models import Invitation
from tests.accounts.factories import OrganizationFactory, UserFactory


class InvitationFactory(DjangoModelFactory):
    """Factory for a pending Invitation that expires in a week."""

    class Meta:
        model = Invitation

    organization = factory.SubFactory(OrganizationFactory)
    email = factory.Sequence(lambda n: f"invitee{n}@example.com")
    role = "member"
    token = factory.Sequence(lambda n: f"invite-token-{n:06d}")
    invited_by = factory.SubFactory(UserFactory)
    expires_at = factory.LazyFunction(lambda: timezone.now() + timedelta(days=7))
    status = Invitation.Status.PENDING
