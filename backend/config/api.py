"""
Django Ninja API configuration.

Every response, including errors, uses the envelope
``{error_code, error_description, ...}`` where error_code 0 means success
and any other value is the HTTP status.
"""

from django.http import HttpRequest, HttpResponse
from ninja import NinjaAPI
from ninja.errors import AuthenticationError as NinjaAuthenticationError
from ninja.errors import HttpError
from ninja.errors import ValidationError as NinjaValidationError

from apps.accounts.api import router as auth_router
from apps.billing.api import plans_router
from apps.billing.api import router as billing_router
from apps.core.exceptions import ServiceError
from apps.core.logging import get_logger
from apps.organizations.api import router as organizations_router

logger = get_logger(__name__)

api = NinjaAPI(
    title="Testlake API",
    version="1.0.0",
    description="Organizations, membership and subscription billing.",
    openapi_extra={
        "info": {
            "contact": {"name": "API Support"},
        },
        "tags": [
            {"name": "auth", "description": "Current user"},
            {"name": "organizations", "description": "Organizations, members and invitations"},
            {"name": "plans", "description": "Subscription plan catalog"},
            {
                "name": "billing",
                "description": "Subscriptions, usage, invoices, payments and payment methods",
            },
            {"name": "health", "description": "Service health checks"},
        ],
        "components": {
            "securitySchemes": {
                "bearerAuth": {
                    "type": "http",
                    "scheme": "bearer",
                    "bearerFormat": "JWT",
                    "description": "Access token. Include as: Authorization: Bearer <token>",
                }
            }
        },
    },
)


def error_envelope(request: HttpRequest, status: int, description: str) -> HttpResponse:
    return api.create_response(
        request,
        {"error_code": status, "error_description": description},
        status=status,
    )


@api.exception_handler(ServiceError)
def handle_service_error(request: HttpRequest, exc: ServiceError) -> HttpResponse:
    if exc.status_code >= 500:
        logger.error("service_error", error=exc.message)
    return error_envelope(request, exc.status_code, exc.message)


@api.exception_handler(NinjaValidationError)
def handle_validation_error(request: HttpRequest, exc: NinjaValidationError) -> HttpResponse:
    first = exc.errors[0] if exc.errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return error_envelope(request, 400, f"{location}: {message}" if location else message)


@api.exception_handler(NinjaAuthenticationError)
def handle_authentication_error(
    request: HttpRequest, exc: NinjaAuthenticationError
) -> HttpResponse:
    return error_envelope(request, 401, "Not authenticated")


@api.exception_handler(HttpError)
def handle_http_error(request: HttpRequest, exc: HttpError) -> HttpResponse:
    return error_envelope(request, exc.status_code, str(exc))


@api.exception_handler(Exception)
def handle_unexpected_error(request: HttpRequest, exc: Exception) -> HttpResponse:
    logger.exception("unhandled_api_error")
    return error_envelope(request, 500, "Internal server error")


# Register routers
api.add_router("/auth", auth_router)
api.add_router("/plans", plans_router)
api.add_router("/", organizations_router)
api.add_router("/", billing_router)


@api.get("/health", tags=["health"], operation_id="healthCheck", summary="Health check")
def health_check(request: HttpRequest) -> dict:
    """Health check endpoint for load balancer."""
    return {"error_code": 0, "error_description": "Success", "status": "ok"}
