"""
Core security - bearer JWT issuance and authentication for the API.
"""

from datetime import timedelta
from typing import TYPE_CHECKING, Any, cast

import jwt
from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import HttpRequest
from django.utils import timezone
from ninja.security import HttpBearer

from apps.core.auth import AuthContext
from apps.core.exceptions import AuthenticationError
from apps.core.logging import bind_contextvars, get_logger

if TYPE_CHECKING:
    from apps.accounts.models import User

logger = get_logger(__name__)


def issue_access_token(user: "User", expires_in: timedelta | None = None) -> str:
    """
    Mint a signed access token for a user.

    Args:
        user: The user the token identifies (``sub`` claim).
        expires_in: Lifetime; defaults to JWT_EXPIRY_MINUTES.

    Returns:
        Encoded JWT string.
    """
    now = timezone.now()
    lifetime = expires_in or timedelta(minutes=settings.JWT_EXPIRY_MINUTES)
    payload = {
        "sub": str(user.id),
        "email": user.email,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """
    Verify signature and expiry of an access token.

    Raises:
        AuthenticationError: If the token is expired, malformed or has no subject
    """
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired") from None
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token") from None
    return cast(dict[str, Any], payload)


class BearerAuth(HttpBearer):
    """
    Bearer token authentication for API endpoints.

    Resolves the ``sub`` claim to an active User and attaches an
    AuthContext. Returning None makes django-ninja answer 401.
    """

    def authenticate(self, request: HttpRequest, token: str) -> AuthContext | None:
        from apps.accounts.models import User

        if not token:
            return None

        try:
            payload = decode_access_token(token)
        except AuthenticationError as e:
            logger.info("bearer_token_rejected", reason=e.message)
            return None

        try:
            user = User.objects.filter(id=payload["sub"], is_active=True).first()
        except (DjangoValidationError, ValueError):
            user = None
        if user is None:
            logger.info("bearer_token_rejected", reason="unknown_user")
            return None

        bind_contextvars(user_id=str(user.id))
        return AuthContext(user=user)


def get_auth_context(request: HttpRequest) -> AuthContext:
    """
    Get the AuthContext attached by BearerAuth.

    Raises:
        AuthenticationError: If the request carries no authenticated user
    """
    auth = getattr(request, "auth", None)
    if not isinstance(auth, AuthContext) or not auth.is_authenticated:
        raise AuthenticationError("Not authenticated")
    return auth
