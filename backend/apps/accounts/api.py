"""
Accounts API endpoints - the authenticated user's profile and memberships.
"""

from ninja import Router

from apps.accounts.models import Member
from apps.accounts.schemas import MeOut, MeResponse, MembershipInfo, UserInfo
from apps.core.schemas import ErrorResponse
from apps.core.security import BearerAuth, get_auth_context
from apps.core.types import AuthenticatedHttpRequest

router = Router(tags=["auth"])
bearer_auth = BearerAuth()


@router.get(
    "/me",
    response={200: MeResponse, 401: ErrorResponse},
    auth=bearer_auth,
    operation_id="getCurrentUser",
    summary="Get current user and organizations",
)
def get_current_user(request: AuthenticatedHttpRequest) -> MeResponse:
    """Profile of the bearer token's user with every joined organization."""
    user = get_auth_context(request).require_user()
    memberships = (
        Member.objects.select_related("organization")
        .filter(user=user, status=Member.Status.JOINED)
        .order_by("organization__name")
    )
    return MeResponse(
        data=MeOut(
            user=UserInfo(id=user.id, email=user.email, name=user.name),
            memberships=[
                MembershipInfo(
                    organization_id=m.organization_id,
                    organization_name=m.organization.name,
                    role=m.role,
                )
                for m in memberships
            ],
        )
    )
