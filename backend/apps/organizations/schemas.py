"""
Organization API schemas - tenancy, members and invitations.
"""

from datetime import datetime
from typing import Literal
from uuid import UUID

from ninja import Schema
from pydantic import Field

from apps.core.schemas import BaseResponse, PaginationMeta


class OrganizationOut(Schema):
    id: UUID
    name: str
    slug: str
    description: str | None = None
    logo_url: str | None = None
    status: str
    plan_id: UUID | None = None
    billing_cycle: str
    subscription_status: str
    next_billing_date: datetime | None = None
    created_at: datetime


class OrganizationResponse(BaseResponse):
    data: OrganizationOut


class OrganizationListResponse(BaseResponse):
    meta: PaginationMeta
    list: list[OrganizationOut]


class CreateOrganizationRequest(Schema):
    name: str = Field(min_length=1, max_length=255)
    slug: str | None = Field(default=None, max_length=255)
    description: str | None = None


class UpdateOrganizationRequest(Schema):
    """Omitted fields are left unchanged."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    logo_url: str | None = Field(default=None, max_length=500)


class MemberOut(Schema):
    """Joined member with user details."""

    user_id: UUID
    email: str
    name: str
    role: str
    status: str
    invited_at: datetime | None = None
    joined_at: datetime | None = None


class MemberResponse(BaseResponse):
    data: MemberOut


class MemberListResponse(BaseResponse):
    list: list[MemberOut]


class InvitationOut(Schema):
    """Invitation without its secret token."""

    id: UUID
    email: str
    role: str
    status: str
    invited_at: datetime
    expires_at: datetime
    used_at: datetime | None = None


class InvitationResponse(BaseResponse):
    data: InvitationOut


class InvitationListResponse(BaseResponse):
    list: list[InvitationOut]


class InviteMemberRequest(Schema):
    email: str = Field(min_length=3, max_length=254)
    role: Literal["member", "admin"] = "member"


class AcceptInvitationRequest(Schema):
    name: str = Field(default="", max_length=255)


class UpdateMemberRoleRequest(Schema):
    role: Literal["member", "admin"]
