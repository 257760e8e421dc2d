"""
Tests for accounts API endpoints.
"""

import pytest
from django.test import Client, RequestFactory

from apps.accounts.api import get_current_user
from apps.accounts.models import Member
from apps.core.auth import AuthContext
from apps.core.exceptions import AuthenticationError
from tests.accounts.factories import MemberFactory, OrganizationFactory, UserFactory
from tests.conftest import make_request_with_auth, response_json


@pytest.mark.django_db
class TestGetCurrentUser:
    def test_returns_profile_and_joined_memberships(self, request_factory: RequestFactory) -> None:
        user = UserFactory(name="Morgan")
        alpha = OrganizationFactory(name="Alpha")
        beta = OrganizationFactory(name="Beta")
        MemberFactory(user=user, organization=beta, role="admin")
        MemberFactory(user=user, organization=alpha, role="owner")
        MemberFactory(user=user, status=Member.Status.LEFT)
        request = make_request_with_auth(
            request_factory.get("/api/v1/auth/me"), AuthContext(user=user)
        )

        result = get_current_user(request)

        assert result.error_code == 0
        assert result.data.user.email == user.email
        assert result.data.user.name == "Morgan"
        assert [(m.organization_name, m.role) for m in result.data.memberships] == [
            ("Alpha", "owner"),
            ("Beta", "admin"),
        ]

    def test_unauthenticated(self, request_factory: RequestFactory) -> None:
        with pytest.raises(AuthenticationError):
            get_current_user(request_factory.get("/api/v1/auth/me"))

    def test_http_with_bearer_token(self, api_client: Client, bearer_headers) -> None:
        user = UserFactory()

        response = api_client.get("/api/v1/auth/me", headers=bearer_headers(user))

        assert response.status_code == 200
        body = response_json(response)
        assert body["data"]["user"]["id"] == str(user.id)
        assert body["data"]["memberships"] == []

    def test_http_lists_memberships(self, api_client: Client, bearer_headers) -> None:
        membership = MemberFactory(organization=OrganizationFactory(name="Initech"), role="admin")

        response = api_client.get("/api/v1/auth/me", headers=bearer_headers(membership.user))

        assert response.status_code == 200
        assert response_json(response)["data"]["memberships"] == [
            {
                "organization_id": str(membership.organization_id),
                "organization_name": "Initech",
                "role": "admin",
            }
        ]

    def test_http_without_token(self, api_client: Client) -> None:
        response = api_client.get("/api/v1/auth/me")

        assert response.status_code == 401
        assert response_json(response) == {
            "error_code": 401,
            "error_description": "Not authenticated",
        }

    def test_http_inactive_user_rejected(self, api_client: Client, bearer_headers) -> None:
        user = UserFactory(is_active=False)

        response = api_client.get("/api/v1/auth/me", headers=bearer_headers(user))

        assert response.status_code == 401
