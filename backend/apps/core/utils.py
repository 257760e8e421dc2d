"""
Core utility functions.
"""

from collections.abc import Sequence
from typing import TypeVar, cast, overload

from django.db.models import QuerySet
from django.http import HttpRequest

from apps.core.exceptions import ValidationError

DEFAULT_PAGE_SIZE = 50

T = TypeVar("T")


@overload
def get_client_ip(request: HttpRequest) -> str | None: ...


@overload
def get_client_ip(request: HttpRequest, default: str) -> str: ...


def get_client_ip(request: HttpRequest, default: str | None = None) -> str | None:
    """
    Extract client IP from X-Forwarded-For or REMOTE_ADDR.

    Takes the first entry of a proxy chain (the original client).

    Args:
        request: The Django HTTP request.
        default: Fallback value when no IP can be determined.

    Returns:
        The client IP address, or default if not available.
    """
    x_forwarded_for: str | None = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()
    remote_addr = cast(str | None, request.META.get("REMOTE_ADDR"))
    if remote_addr is not None:
        return remote_addr
    return default


def validate_page(page: int) -> int:
    """Reject negative page numbers. Pages are zero-indexed."""
    if page < 0:
        raise ValidationError("Invalid page parameter")
    return page


def paginate(
    items: "QuerySet[T] | Sequence[T]", page: int, page_size: int = DEFAULT_PAGE_SIZE
) -> tuple[list[T], int]:
    """
    Slice one zero-indexed page out of a queryset or an in-memory sequence.

    Returns:
        Tuple of (items on the page, total item count)
    """
    validate_page(page)
    total = items.count() if isinstance(items, QuerySet) else len(items)
    offset = page * page_size
    return list(items[offset : offset + page_size]), total
