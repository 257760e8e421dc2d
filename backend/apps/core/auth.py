"""
Authentication context for request lifecycle.

BearerAuth populates the user; endpoints scoped to an organization resolve
the caller's membership through ``for_organization`` before touching data.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

from django.core.exceptions import ValidationError as DjangoValidationError

from apps.core.exceptions import AccessDeniedError, AuthenticationError, NotFoundError
from apps.core.logging import bind_contextvars, get_logger

if TYPE_CHECKING:
    from apps.accounts.models import Member, User
    from apps.organizations.models import Organization

logger = get_logger(__name__)


@dataclass
class AuthContext:
    """
    Authentication context attached to requests as ``request.auth``.

    Attributes:
        user: The authenticated User, or None if not authenticated
        member: The Member record linking user to the organization in scope, or None
        organization: The Organization the user is acting within, or None
    """

    user: "User | None" = None
    member: "Member | None" = None
    organization: "Organization | None" = None

    @property
    def is_authenticated(self) -> bool:
        """Check if a user has been resolved from the bearer token."""
        return self.user is not None

    def require_user(self) -> "User":
        """
        Get the authenticated user or raise.

        Raises:
            AuthenticationError: If no user was resolved
        """
        if self.user is None:
            raise AuthenticationError("Not authenticated")
        return self.user

    def for_organization(
        self, organization_id: UUID | str
    ) -> tuple["User", "Member", "Organization"]:
        """
        Resolve the caller's joined membership in an organization.

        Returns:
            Tuple of (user, member, organization)

        Raises:
            AuthenticationError: If not authenticated
            NotFoundError: If the organization does not exist
            AccessDeniedError: If the user is not a joined member
        """
        from apps.accounts.models import Member
        from apps.organizations.models import Organization

        user = self.require_user()

        try:
            organization = Organization.objects.get(id=organization_id)
        except (Organization.DoesNotExist, DjangoValidationError, ValueError):
            raise NotFoundError("Organization not found") from None

        member = (
            Member.objects.select_related("user")
            .filter(user=user, organization=organization, status=Member.Status.JOINED)
            .first()
        )
        if member is None:
            logger.warning(
                "access_denied",
                user_id=str(user.id),
                organization_id=str(organization.id),
                reason="not_a_member",
            )
            raise AccessDeniedError("Access denied to this organization")

        self.member = member
        self.organization = organization
        bind_contextvars(organization_id=str(organization.id))
        return user, member, organization

    def require_role(
        self, organization_id: UUID | str, role: str
    ) -> tuple["User", "Member", "Organization"]:
        """
        Resolve membership and verify the caller holds at least ``role``.

        Roles rank member < admin < owner.

        Raises:
            AccessDeniedError: If the member's role ranks below ``role``
        """
        user, member, organization = self.for_organization(organization_id)
        if not member.has_role(role):
            logger.warning(
                "access_denied",
                user_id=str(user.id),
                organization_id=str(organization.id),
                reason="insufficient_role",
                required_role=role,
                role=member.role,
            )
            raise AccessDeniedError(f"{role.capitalize()} access required")
        return user, member, organization

    def require_admin(
        self, organization_id: UUID | str
    ) -> tuple["User", "Member", "Organization"]:
        """Shortcut for ``require_role(organization_id, "admin")``."""
        return self.require_role(organization_id, "admin")
