"""
Tests for organizations management commands.
"""

from datetime import timedelta
from io import StringIO

import pytest
from django.core.management import call_command
from django.utils import timezone

from apps.organizations.models import Invitation

from .factories import InvitationFactory


@pytest.mark.django_db
class TestExpireInvitationsCommand:
    def test_expires_stale(self) -> None:
        stale = InvitationFactory(expires_at=timezone.now() - timedelta(days=1))
        out = StringIO()

        call_command("expire_invitations", stdout=out)

        stale.refresh_from_db()
        assert stale.status == Invitation.Status.EXPIRED
        assert "Expired 1 invitations" in out.getvalue()

    def test_dry_run(self) -> None:
        stale = InvitationFactory(expires_at=timezone.now() - timedelta(days=1))
        out = StringIO()

        call_command("expire_invitations", "--dry-run", stdout=out)

        stale.refresh_from_db()
        assert stale.status == Invitation.Status.PENDING
        assert "Would expire 1 invitations" in out.getvalue()
