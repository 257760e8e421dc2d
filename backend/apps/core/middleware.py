"""
Core middleware.
"""

import time
import uuid
from collections.abc import Callable

from django.http import HttpRequest, HttpResponse

from apps.core.logging import bind_contextvars, clear_contextvars, get_logger
from apps.core.utils import get_client_ip

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware:
    """
    Binds a request id and request metadata to the logging context.

    The id is taken from the X-Request-ID header when present, generated
    otherwise, and echoed back on the response.
    """

    def __init__(self, get_response: Callable[[HttpRequest], HttpResponse]) -> None:
        self.get_response = get_response

    def __call__(self, request: HttpRequest) -> HttpResponse:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.request_id = request_id  # type: ignore[attr-defined]

        clear_contextvars()
        bind_contextvars(
            request_id=request_id,
            http_method=request.method,
            path=request.path,
            client_ip=get_client_ip(request, default="unknown"),
        )

        started = time.monotonic()
        try:
            response = self.get_response(request)
            logger.info(
                "request_finished",
                status_code=response.status_code,
                duration_s=time.monotonic() - started,
            )
            response[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_contextvars()
