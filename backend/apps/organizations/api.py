"""
Organization API endpoints.

Creating organizations, listing members, invitations and member
management. Invitation acceptance identifies the invitee by the token
alone; a bearer token, when sent, must belong to the invited address.
"""

from uuid import UUID

from django.http import HttpRequest
from ninja import Router

from apps.accounts.models import Member
from apps.core.schemas import ErrorResponse, MessageResponse, PaginationMeta
from apps.core.security import BearerAuth, get_auth_context
from apps.core.types import AuthenticatedHttpRequest
from apps.core.utils import DEFAULT_PAGE_SIZE
from apps.organizations import services
from apps.organizations.schemas import (
    AcceptInvitationRequest,
    CreateOrganizationRequest,
    InvitationListResponse,
    InvitationOut,
    InvitationResponse,
    InviteMemberRequest,
    MemberListResponse,
    MemberOut,
    MemberResponse,
    OrganizationListResponse,
    OrganizationOut,
    OrganizationResponse,
    UpdateMemberRoleRequest,
    UpdateOrganizationRequest,
)

router = Router(tags=["organizations"])
bearer_auth = BearerAuth()

ERRORS = {
    400: ErrorResponse,
    401: ErrorResponse,
    403: ErrorResponse,
    404: ErrorResponse,
}


def _member_out(member: Member) -> MemberOut:
    return MemberOut(
        user_id=member.user_id,
        email=member.user.email,
        name=member.user.name,
        role=member.role,
        status=member.status,
        invited_at=member.invited_at,
        joined_at=member.joined_at,
    )


@router.get(
    "/organizations",
    response={200: OrganizationListResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="listOrganizations",
    summary="List the caller's organizations",
)
def list_organizations(
    request: AuthenticatedHttpRequest, page: int = 0
) -> OrganizationListResponse:
    user = get_auth_context(request).require_user()
    organizations, total = services.list_organizations(user, page)
    return OrganizationListResponse(
        list=[OrganizationOut.from_orm(organization) for organization in organizations],
        meta=PaginationMeta.build(page, DEFAULT_PAGE_SIZE, total),
    )


@router.post(
    "/organizations",
    response={200: OrganizationResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="createOrganization",
    summary="Create an organization",
)
def create_organization(
    request: AuthenticatedHttpRequest, payload: CreateOrganizationRequest
) -> OrganizationResponse:
    """The caller becomes the owner."""
    user = get_auth_context(request).require_user()
    organization, _ = services.create_organization(
        name=payload.name,
        created_by=user,
        slug=payload.slug,
        description=payload.description,
    )
    return OrganizationResponse(data=OrganizationOut.from_orm(organization))


@router.get(
    "/organizations/{org_id}",
    response={200: OrganizationResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="getOrganization",
    summary="Get organization details",
)
def get_organization(request: AuthenticatedHttpRequest, org_id: UUID) -> OrganizationResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    return OrganizationResponse(data=OrganizationOut.from_orm(organization))


@router.put(
    "/organizations/{org_id}",
    response={200: OrganizationResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="updateOrganization",
    summary="Update organization details",
)
def update_organization(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: UpdateOrganizationRequest
) -> OrganizationResponse:
    """Admin only."""
    _, _, organization = get_auth_context(request).require_admin(org_id)
    organization = services.update_organization(
        organization,
        name=payload.name,
        description=payload.description,
        logo_url=payload.logo_url,
    )
    return OrganizationResponse(data=OrganizationOut.from_orm(organization))


@router.delete(
    "/organizations/{org_id}",
    response={200: MessageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="deleteOrganization",
    summary="Delete an organization",
)
def delete_organization(request: AuthenticatedHttpRequest, org_id: UUID) -> MessageResponse:
    """Owner only. Removes all billing and membership data of the organization."""
    _, member, organization = get_auth_context(request).require_role(org_id, "owner")
    services.delete_organization(organization, member)
    return MessageResponse(message="Organization deleted")


@router.get(
    "/organizations/{org_id}/members",
    response={200: MemberListResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="listMembers",
    summary="List joined members",
)
def list_members(request: AuthenticatedHttpRequest, org_id: UUID) -> MemberListResponse:
    _, _, organization = get_auth_context(request).for_organization(org_id)
    return MemberListResponse(
        list=[_member_out(member) for member in services.list_members(organization)]
    )


@router.post(
    "/organizations/{org_id}/invite",
    response={200: InvitationResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="inviteMember",
    summary="Invite someone by email",
)
def invite_member(
    request: AuthenticatedHttpRequest, org_id: UUID, payload: InviteMemberRequest
) -> InvitationResponse:
    """Admin only. The invitation email is sent in the background."""
    _, member, organization = get_auth_context(request).require_admin(org_id)
    invitation = services.invite_member(
        organization, inviter=member, email=payload.email, role=payload.role
    )
    return InvitationResponse(data=InvitationOut.from_orm(invitation))


@router.get(
    "/organizations/{org_id}/invites",
    response={200: InvitationListResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="listInvitations",
    summary="List pending invitations",
)
def list_invitations(request: AuthenticatedHttpRequest, org_id: UUID) -> InvitationListResponse:
    """Admin only."""
    _, _, organization = get_auth_context(request).require_admin(org_id)
    return InvitationListResponse(
        list=[InvitationOut.from_orm(i) for i in services.list_pending_invitations(organization)]
    )


@router.delete(
    "/organizations/{org_id}/invites/{invitation_id}",
    response={200: MessageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="cancelInvitation",
    summary="Withdraw a pending invitation",
)
def cancel_invitation(
    request: AuthenticatedHttpRequest, org_id: UUID, invitation_id: UUID
) -> MessageResponse:
    """Admin only."""
    _, _, organization = get_auth_context(request).require_admin(org_id)
    services.cancel_invitation(organization, invitation_id)
    return MessageResponse(message="Invitation cancelled")


@router.post(
    "/invitations/{token}/accept",
    response={200: MemberResponse, **ERRORS},
    operation_id="acceptInvitation",
    summary="Accept an invitation",
)
def accept_invitation(
    request: HttpRequest, token: str, payload: AcceptInvitationRequest
) -> MemberResponse:
    """
    Join the organization with the invitation token.

    The token itself authenticates the invitee. When a bearer token is also
    sent, it must belong to the invited email address.
    """
    user = None
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        auth = bearer_auth.authenticate(request, header.split(" ", 1)[1].strip())
        user = auth.user if auth is not None else None
    member = services.accept_invitation(token, user=user, name=payload.name)
    return MemberResponse(data=_member_out(member))


@router.put(
    "/organizations/{org_id}/members/{user_id}/role",
    response={200: MemberResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="updateMemberRole",
    summary="Change a member's role",
)
def update_member_role(
    request: AuthenticatedHttpRequest, org_id: UUID, user_id: UUID, payload: UpdateMemberRoleRequest
) -> MemberResponse:
    """Admin only. Members cannot change their own role."""
    _, member, organization = get_auth_context(request).require_admin(org_id)
    updated = services.update_member_role(organization, member, user_id, payload.role)
    return MemberResponse(data=_member_out(updated))


@router.delete(
    "/organizations/{org_id}/members/{user_id}",
    response={200: MessageResponse, **ERRORS},
    auth=bearer_auth,
    operation_id="removeMember",
    summary="Remove a member",
)
def remove_member(
    request: AuthenticatedHttpRequest, org_id: UUID, user_id: UUID
) -> MessageResponse:
    """Admin only. Members cannot remove themselves."""
    _, member, organization = get_auth_context(request).require_admin(org_id)
    services.remove_member(organization, member, user_id)
    return MessageResponse(message="Member removed")
