"""
Accounts API schemas.
"""

from uuid import UUID

from ninja import Schema

from apps.core.schemas import BaseResponse


class UserInfo(Schema):
    id: UUID
    email: str
    name: str


class MembershipInfo(Schema):
    """One organization the user belongs to."""

    organization_id: UUID
    organization_name: str
    role: str


class MeOut(Schema):
    user: UserInfo
    memberships: list[MembershipInfo]


class MeResponse(BaseResponse):
    data: MeOut
