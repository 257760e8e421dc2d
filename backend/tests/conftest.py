"""
Shared pytest fixtures for all tests.

Factories
---------
Import factories directly from their modules:

    from tests.accounts.factories import UserFactory, OrganizationFactory, MemberFactory
    from tests.organizations.factories import InvitationFactory
    from tests.billing.factories import PlanFactory, SubscriptionFactory, InvoiceFactory

Example usage:

    @pytest.mark.django_db
    def test_something():
        user = UserFactory.create(email="test@example.com")
        org = OrganizationFactory.create()
        member = MemberFactory.create(user=user, organization=org, role="admin")
"""

import json
from collections.abc import Callable
from typing import Any, cast

import pytest
from django.http import HttpRequest
from django.test import Client, RequestFactory
from django.test.client import WSGIRequest  # type: ignore[attr-defined]

from apps.core.auth import AuthContext
from apps.core.types import AuthenticatedHttpRequest


class MockRequest(HttpRequest):
    """
    HttpRequest subclass for tests that allows setting auth attribute.

    Example:
        request = MockRequest()
        request.auth = AuthContext(user=user)
    """

    auth: AuthContext


def make_request_with_auth(request: "WSGIRequest", auth: AuthContext) -> AuthenticatedHttpRequest:
    """
    Set auth on a request and return it typed as AuthenticatedHttpRequest.

    Example:
        request = request_factory.get("/api/v1/endpoint")
        request = make_request_with_auth(request, AuthContext(user=user))
    """
    request.auth = auth  # type: ignore[attr-defined]
    return cast(AuthenticatedHttpRequest, request)


def response_json(response: Any) -> dict[str, Any]:
    """Decode a django test client response body."""
    return cast(dict[str, Any], json.loads(response.content))


@pytest.fixture
def request_factory() -> RequestFactory:
    """
    Django request factory for unit testing endpoint functions directly.

    Example:
        def test_endpoint(request_factory):
            request = request_factory.get("/api/v1/endpoint")
            request.auth = AuthContext(user=user)
            result = my_endpoint(request)
    """
    return RequestFactory()


@pytest.fixture
def api_client() -> Client:
    """
    Django test client for full HTTP request/response cycle tests.

    Example:
        def test_api_returns_200(api_client):
            response = api_client.get("/api/v1/health")
            assert response.status_code == 200
    """
    return Client()


@pytest.fixture
def bearer_headers() -> Callable[[Any], dict[str, str]]:
    """
    Build an Authorization header for a user.

    Example:
        def test_me(api_client, bearer_headers):
            response = api_client.get("/api/v1/auth/me", headers=bearer_headers(user))
    """
    from apps.core.security import issue_access_token

    def _headers(user: Any) -> dict[str, str]:
        return {"Authorization": f"Bearer {issue_access_token(user)}"}

    return _headers


def create_authenticated_request(
    request_factory: RequestFactory,
    method: str,
    path: str,
    org: Any = None,
    role: str = "admin",
    user: Any = None,
) -> AuthenticatedHttpRequest:
    """
    Helper to create an authenticated request for a joined member of ``org``.

    Creates organization, user, and member if not provided. The member is
    available afterwards as ``request.auth.member`` once the endpoint has
    resolved it, and as ``request.member`` immediately.

    Args:
        request_factory: Django RequestFactory instance
        method: HTTP method (get, post, delete, patch, put)
        path: Request path
        org: Optional Organization instance (created if None)
        role: Member role (default: "admin")
        user: Optional User instance (created if None)

    Returns:
        Request object with auth attributes set
    """
    from tests.accounts.factories import MemberFactory, OrganizationFactory, UserFactory

    if org is None:
        org = OrganizationFactory.create()
    if user is None:
        user = UserFactory.create()
    member = MemberFactory.create(user=user, organization=org, role=role)

    method_func = getattr(request_factory, method.lower())
    request = method_func(path)

    typed_request = make_request_with_auth(request, AuthContext(user=user))
    typed_request.member = member  # type: ignore[attr-defined]
    typed_request.organization = org  # type: ignore[attr-defined]
    return typed_request


@pytest.fixture
def admin_member(db):
    """Create a joined member with admin role."""
    from tests.accounts.factories import MemberFactory

    return MemberFactory.create(role="admin")


@pytest.fixture
def member(db):
    """Create a joined regular member."""
    from tests.accounts.factories import MemberFactory

    return MemberFactory.create(role="member")


@pytest.fixture
def owner_member(db):
    """Create a joined member with owner role."""
    from tests.accounts.factories import MemberFactory

    return MemberFactory.create(role="owner")
