"""
Organization services - tenancy, membership and invitations.

Joins and removals record the joined member head-count as the current
period's ``users_count`` in the same transaction.
"""

import secrets
from datetime import datetime, timedelta
from uuid import UUID

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone
from django.utils.text import slugify

from apps.accounts.models import Member, User
from apps.accounts.services import get_or_create_user
from apps.billing.usage import upsert_current_usage
from apps.core.exceptions import AccessDeniedError, NotFoundError, ValidationError
from apps.core.logging import get_logger
from apps.core.utils import DEFAULT_PAGE_SIZE, paginate
from apps.organizations.models import Invitation, Organization
from apps.organizations.notifications import send_invitation_email, send_member_joined_email

logger = get_logger(__name__)

INVITABLE_ROLES = (Member.Role.MEMBER, Member.Role.ADMIN)


def generate_invitation_token() -> str:
    """32 random bytes, URL-safe."""
    return secrets.token_urlsafe(32)


def record_member_count(organization: Organization) -> None:
    """Record the joined head-count as this period's ``users_count``."""
    joined = Member.objects.filter(
        organization=organization, status=Member.Status.JOINED
    ).count()
    upsert_current_usage(organization, {"users_count": joined})


def create_organization(
    name: str,
    created_by: User,
    slug: str | None = None,
    description: str | None = None,
) -> tuple[Organization, Member]:
    """
    Create an organization with its creator as joined owner.

    Raises:
        ValidationError: If the name is blank or the slug is taken
    """
    if not name.strip():
        raise ValidationError("Organization name is required")
    slug = slugify(slug or name)
    if not slug:
        raise ValidationError("Organization slug is required")

    try:
        with transaction.atomic():
            organization = Organization.objects.create(
                name=name.strip(),
                slug=slug,
                description=description,
                created_by=created_by,
            )
            now = timezone.now()
            owner = Member.objects.create(
                user=created_by,
                organization=organization,
                role=Member.Role.OWNER,
                status=Member.Status.JOINED,
                joined_at=now,
            )
            record_member_count(organization)
    except IntegrityError:
        raise ValidationError("Organization slug is already taken") from None

    logger.info(
        "organization_created",
        organization_id=str(organization.id),
        user_id=str(created_by.id),
        slug=slug,
    )
    return organization, owner


def list_organizations(
    user: User, page: int = 0, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[Organization], int]:
    """Organizations the user has joined, newest first."""
    queryset = Organization.objects.filter(
        members__user=user, members__status=Member.Status.JOINED
    ).order_by("-created_at")
    return paginate(queryset, page, page_size)


def update_organization(
    organization: Organization,
    name: str | None = None,
    description: str | None = None,
    logo_url: str | None = None,
) -> Organization:
    """
    Partially update an organization's profile. ``None`` leaves a field untouched.

    Raises:
        ValidationError: If ``name`` is given but blank
    """
    update_fields = []
    if name is not None:
        if not name.strip():
            raise ValidationError("Organization name is required")
        organization.name = name.strip()
        update_fields.append("name")
    if description is not None:
        organization.description = description
        update_fields.append("description")
    if logo_url is not None:
        organization.logo_url = logo_url
        update_fields.append("logo_url")

    if update_fields:
        organization.save(update_fields=[*update_fields, "updated_at"])
        logger.info(
            "organization_updated",
            organization_id=str(organization.id),
            fields=update_fields,
        )
    return organization


def delete_organization(organization: Organization, actor: Member) -> None:
    """
    Delete an organization with everything it owns.

    Memberships, invitations, subscriptions, usage rows, invoices with their
    line items, payments, payment methods and billing events go with it.

    Raises:
        AccessDeniedError: If the actor is not a joined owner of the organization
    """
    if not actor.is_owner or actor.organization_id != organization.id:
        raise AccessDeniedError("Owner access required")

    organization_id = str(organization.id)
    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=organization.pk).first()
        organization.delete()

    logger.info(
        "organization_deleted",
        organization_id=organization_id,
        deleted_by=str(actor.user_id),
    )


def list_members(organization: Organization) -> list[Member]:
    """Joined members, in joining order."""
    return list(
        Member.objects.select_related("user")
        .filter(organization=organization, status=Member.Status.JOINED)
        .order_by("joined_at", "created_at")
    )


def list_pending_invitations(organization: Organization) -> list[Invitation]:
    return list(
        Invitation.objects.filter(
            organization=organization, status=Invitation.Status.PENDING
        ).order_by("-created_at")
    )


def invite_member(
    organization: Organization,
    inviter: Member,
    email: str,
    role: str = Member.Role.MEMBER,
) -> Invitation:
    """
    Invite an email address to join the organization.

    Args:
        organization: Organization to join.
        inviter: Joined admin or owner sending the invitation.
        email: Invitee address.
        role: 'member' or 'admin'.

    Returns:
        The pending Invitation. The email is sent after commit.

    Raises:
        AccessDeniedError: If the inviter is not an admin
        ValidationError: If the role is invalid, the user already belongs to the
            organization, or an invitation is already pending
    """
    if not inviter.is_admin or inviter.organization_id != organization.id:
        raise AccessDeniedError("Admin access required")
    if role not in INVITABLE_ROLES:
        raise ValidationError("Role must be 'member' or 'admin'")

    email = User.objects.normalize_email(email).strip().lower()
    if not email:
        raise ValidationError("Email is required")

    now = timezone.now()
    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=organization.pk).first()

        if Member.objects.filter(
            organization=organization,
            user__email__iexact=email,
            status=Member.Status.JOINED,
        ).exists():
            raise ValidationError("User is already a member of this organization")

        if Invitation.objects.filter(
            organization=organization,
            email__iexact=email,
            status=Invitation.Status.PENDING,
            expires_at__gt=now,
        ).exists():
            raise ValidationError("An invitation is already pending for this email")

        invitation = Invitation.objects.create(
            organization=organization,
            email=email,
            role=role,
            token=generate_invitation_token(),
            invited_by=inviter.user,
            expires_at=now + timedelta(days=settings.INVITATION_EXPIRY_DAYS),
        )
        send_invitation_email(invitation, inviter_name=inviter.user.name or inviter.user.email)

    logger.info(
        "member_invited",
        organization_id=str(organization.id),
        invitation_id=str(invitation.id),
        role=role,
        invited_by=str(inviter.user_id),
    )
    return invitation


def accept_invitation(token: str, user: User | None = None, name: str = "") -> Member:
    """
    Accept an invitation and join the organization.

    The token is single-use. Without ``user`` the invitee account is looked
    up (or created) by the invitation's email.

    Raises:
        NotFoundError: If no pending invitation has this token
        ValidationError: If the invitation has expired
        AccessDeniedError: If ``user`` is not the invited email address
    """
    invitation = (
        Invitation.objects.select_related("organization")
        .filter(token=token, status=Invitation.Status.PENDING)
        .first()
    )
    if invitation is None:
        raise NotFoundError("Invitation not found")

    if invitation.is_expired:
        Invitation.objects.filter(pk=invitation.pk, status=Invitation.Status.PENDING).update(
            status=Invitation.Status.EXPIRED, updated_at=timezone.now()
        )
        raise ValidationError("Invitation has expired")

    if user is not None and user.email.lower() != invitation.email.lower():
        logger.warning(
            "access_denied",
            user_id=str(user.id),
            invitation_id=str(invitation.id),
            reason="invitation_email_mismatch",
        )
        raise AccessDeniedError("Invitation was sent to a different email address")

    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=invitation.organization_id).first()
        locked = (
            Invitation.objects.select_for_update()
            .filter(pk=invitation.pk, status=Invitation.Status.PENDING)
            .first()
        )
        if locked is None:
            raise NotFoundError("Invitation not found")

        if user is None:
            user = get_or_create_user(locked.email, name=name)

        now = timezone.now()
        member, _ = Member.objects.get_or_create(
            user=user,
            organization=invitation.organization,
            defaults={"role": locked.role, "status": Member.Status.INVITED},
        )
        already_joined = member.status == Member.Status.JOINED
        member.role = locked.role
        member.status = Member.Status.JOINED
        member.invited_by_id = locked.invited_by_id
        member.invited_at = locked.invited_at
        member.joined_at = now
        member.save(
            update_fields=["role", "status", "invited_by", "invited_at", "joined_at", "updated_at"]
        )

        locked.status = Invitation.Status.ACCEPTED
        locked.used_at = now
        locked.save(update_fields=["status", "used_at", "updated_at"])

        if not already_joined:
            record_member_count(invitation.organization)
        send_member_joined_email(member)

    logger.info(
        "invitation_accepted",
        organization_id=str(invitation.organization_id),
        invitation_id=str(invitation.id),
        user_id=str(user.id),
        role=member.role,
    )
    return member


def cancel_invitation(organization: Organization, invitation_id: UUID | str) -> Invitation:
    """
    Withdraw a pending invitation.

    Raises:
        NotFoundError: If no pending invitation of the organization has this id
    """
    try:
        invitation = Invitation.objects.get(
            id=invitation_id,
            organization=organization,
            status=Invitation.Status.PENDING,
        )
    except (Invitation.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError("Invitation not found") from None

    invitation.status = Invitation.Status.CANCELLED
    invitation.save(update_fields=["status", "updated_at"])
    logger.info(
        "invitation_cancelled",
        organization_id=str(organization.id),
        invitation_id=str(invitation.id),
    )
    return invitation


def _get_joined_member(organization: Organization, user_id: UUID | str) -> Member:
    member = (
        Member.objects.select_related("user")
        .filter(organization=organization, user_id=user_id, status=Member.Status.JOINED)
        .first()
    )
    if member is None:
        raise ValidationError("User is not a member of this organization")
    return member


def update_member_role(
    organization: Organization,
    actor: Member,
    user_id: UUID | str,
    role: str,
) -> Member:
    """
    Change another member's role.

    Raises:
        AccessDeniedError: If the actor is not an admin, or an admin targets an owner
        ValidationError: If the actor targets themself, the target is not a member,
            or the role is not 'member' or 'admin'
    """
    if not actor.is_admin or actor.organization_id != organization.id:
        raise AccessDeniedError("Admin access required")
    if str(actor.user_id) == str(user_id):
        raise ValidationError("You cannot change your own role")
    if role not in INVITABLE_ROLES:
        raise ValidationError("Role must be 'member' or 'admin'")

    member = _get_joined_member(organization, user_id)
    if member.is_owner and not actor.is_owner:
        raise AccessDeniedError("Only owners can change an owner's role")

    previous_role = member.role
    member.role = role
    member.save(update_fields=["role", "updated_at"])

    logger.info(
        "member_role_updated",
        organization_id=str(organization.id),
        user_id=str(member.user_id),
        previous_role=previous_role,
        role=role,
        updated_by=str(actor.user_id),
    )
    return member


def remove_member(organization: Organization, actor: Member, user_id: UUID | str) -> Member:
    """
    Remove a member from the organization. The membership row is kept with status ``left``.

    Raises:
        AccessDeniedError: If the actor is not an admin, or an admin targets an owner
        ValidationError: If the actor targets themself or the target is not a member
    """
    if not actor.is_admin or actor.organization_id != organization.id:
        raise AccessDeniedError("Admin access required")
    if str(actor.user_id) == str(user_id):
        raise ValidationError("You cannot remove yourself from the organization")

    with transaction.atomic():
        Organization.objects.select_for_update().filter(pk=organization.pk).first()
        member = _get_joined_member(organization, user_id)
        if member.is_owner and not actor.is_owner:
            raise AccessDeniedError("Only owners can remove an owner")

        member.status = Member.Status.LEFT
        member.save(update_fields=["status", "updated_at"])
        record_member_count(organization)

    logger.info(
        "member_removed",
        organization_id=str(organization.id),
        user_id=str(member.user_id),
        removed_by=str(actor.user_id),
    )
    return member


def expire_invitations(now: datetime | None = None, dry_run: bool = False) -> int:
    """
    Mark pending invitations past their expiry as ``expired``.

    Returns:
        Number of invitations expired (or that would be, with dry_run)
    """
    now = now or timezone.now()
    stale = Invitation.objects.filter(status=Invitation.Status.PENDING, expires_at__lte=now)
    if dry_run:
        return stale.count()

    count = stale.update(status=Invitation.Status.EXPIRED, updated_at=now)
    if count:
        logger.info("invitations_expired", count=count)
    return count
