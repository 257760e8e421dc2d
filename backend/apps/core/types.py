"""
Custom type definitions for the application.

These types help mypy understand attributes added by authentication.
"""

from django.http import HttpRequest

from apps.core.auth import AuthContext


class AuthenticatedHttpRequest(HttpRequest):
    """
    HttpRequest after BearerAuth succeeded.

    Use this type for endpoints that require authentication.
    """

    auth: AuthContext
    request_id: str
