"""
Organization emails - invitations and join confirmations.

Sending is fire-and-forget: emails go out after the surrounding
transaction commits, and delivery failures are logged without affecting
the operation that triggered them.
"""

from collections.abc import Callable
from urllib.parse import urlencode

from django.conf import settings
from django.core.mail import send_mail
from django.db import transaction

from apps.accounts.models import Member
from apps.core.logging import get_logger
from apps.organizations.models import Invitation

logger = get_logger(__name__)


def _send_after_commit(event: str, recipient: str, send: Callable[[], object]) -> None:
    def _deliver() -> None:
        try:
            send()
        except Exception:
            logger.exception(f"{event}_email_failed", recipient=recipient)
        else:
            logger.info(f"{event}_email_sent", recipient=recipient)

    transaction.on_commit(_deliver)


def build_accept_url(invitation: Invitation) -> str:
    return f"{settings.INVITATION_ACCEPT_URL}?{urlencode({'token': invitation.token})}"


def send_invitation_email(invitation: Invitation, inviter_name: str = "") -> None:
    """Queue the invitation email for delivery after commit."""
    organization = invitation.organization
    inviter = inviter_name or "A teammate"
    subject = f"You've been invited to join {organization.name}"
    body = (
        f"{inviter} invited you to join {organization.name} as {invitation.role}.\n\n"
        f"Accept the invitation: {build_accept_url(invitation)}\n\n"
        f"This invitation expires on {invitation.expires_at:%Y-%m-%d %H:%M} UTC."
    )
    _send_after_commit(
        "invitation",
        invitation.email,
        lambda: send_mail(
            subject,
            body,
            settings.DEFAULT_FROM_EMAIL,
            [invitation.email],
            fail_silently=False,
        ),
    )


def send_member_joined_email(member: Member) -> None:
    """Queue the welcome email sent after an invitation is accepted."""
    organization = member.organization
    email = member.user.email
    _send_after_commit(
        "member_joined",
        email,
        lambda: send_mail(
            f"Welcome to {organization.name}",
            f"You are now a member of {organization.name} with the {member.role} role.",
            settings.DEFAULT_FROM_EMAIL,
            [email],
            fail_silently=False,
        ),
    )
