"""
Core schemas - the response envelope shared by every endpoint.

Every response carries error_code (0 on success, the HTTP status otherwise)
and error_description. Successful responses add ``data`` (single object) or
``list`` (+ ``meta`` when paginated).
"""

import math

from ninja import Schema
from pydantic import Field

SUCCESS_DESCRIPTION = "Success"


class BaseResponse(Schema):
    """Envelope fields present on every response."""

    error_code: int = Field(default=0, description="0 on success, HTTP status on failure")
    error_description: str = Field(default=SUCCESS_DESCRIPTION)

    model_config = {
        "json_schema_extra": {"example": {"error_code": 0, "error_description": "Success"}}
    }


class ErrorResponse(BaseResponse):
    """Failure envelope."""

    model_config = {
        "json_schema_extra": {
            "example": {"error_code": 404, "error_description": "Subscription not found"}
        }
    }


class MessageResponse(BaseResponse):
    """Success envelope carrying only a human-readable message."""

    message: str


class PaginationMeta(Schema):
    """Zero-indexed pagination metadata."""

    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
        )
