"""Structured error response schemas."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    field: str | None = Field(default=None, description="Field that caused the error (for validation errors)")
    value: Any | None = Field(default=None, description="Invalid value (for validation errors)")


class ErrorResponse(BaseModel):
    """Standard error response structure.

    This provides consistent error responses across the API with:
    - Machine-readable error codes
    - Human-readable messages
    - Remediation hints
    - Request tracing information
    """

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'NotFound', 'Forbidden')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(
        default=None, description="Detailed error information (for validation errors)"
    )
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "ValidationError",
                "message": "Request validation failed",
                "details": [
                    {
                        "code": "invalid_tier",
                        "message": "Invalid tier: GOLD",
                        "field": "tier",
                        "value": "GOLD",
                    }
                ],
                "remediation": "Use one of the tier keys FREE, BASIC or ADVANCED",
                "request_id": "req_1234567890",
                "timestamp": "2024-01-15T10:30:00Z",
            }
        }
    )


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400/422)
    INVALID_REQUEST_BODY = "invalid_request_body"
    INVALID_TIER = "invalid_tier"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    VALIDATION_ERROR = "validation_error"

    # Not found errors (404)
    SHOP_NOT_FOUND = "shop_not_found"
    DISCOUNT_NOT_FOUND = "discount_not_found"

    # Authorization errors (401/403)
    INVALID_STOREFRONT_TOKEN = "invalid_storefront_token"
    TIER_LIMIT_REACHED = "tier_limit_reached"

    # Rate limiting (429)
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"

    # External service errors (503)
    DATABASE_ERROR = "database_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.INVALID_TIER: "Use one of the tier keys FREE, BASIC or ADVANCED",
    ErrorCode.SHOP_NOT_FOUND: "Verify the shop domain is correct and the app is installed",
    ErrorCode.INVALID_STOREFRONT_TOKEN: "Reload the storefront so the theme embed picks up the current token",
    ErrorCode.TIER_LIMIT_REACHED: "Hide another live discount or upgrade the plan",
    ErrorCode.RATE_LIMIT_EXCEEDED: "Too many requests. Please slow down and try again after the retry period.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
}
