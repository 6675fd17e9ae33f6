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

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "InsufficientCredits",
                "message": "Not enough credits. Purchase a credit pack to continue.",
                "details": [{"code": "insufficient_credits", "message": "Balance 0, required 1"}],
                "remediation": "Purchase a credit pack and retry the unlock.",
                "request_id": "req_1234567890",
                "timestamp": "2026-01-15T10:30:00Z",
            }
        }
    )

    error: str = Field(..., description="Error type (e.g., 'ValidationError', 'InsufficientCredits')")
    message: str = Field(..., description="Primary error message")
    details: list[ErrorDetail] | None = Field(default=None, description="Detailed error information")
    remediation: str | None = Field(default=None, description="Suggestion for fixing the error")
    request_id: str | None = Field(default=None, description="Request ID for tracing")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Error timestamp")


# Error codes enum for consistency
class ErrorCode:
    """Standard error codes used across the API."""

    # Validation errors (400)
    VALIDATION_ERROR = "validation_error"
    INVALID_EMAIL = "invalid_email"
    MISSING_REQUIRED_FIELD = "missing_required_field"
    INVALID_INTEGER = "invalid_integer"
    INVALID_DELTA = "invalid_delta"
    DELTA_TOO_LARGE = "delta_too_large"
    INVALID_SESSION_ID = "invalid_session_id"

    # Business outcomes
    INSUFFICIENT_CREDITS = "insufficient_credits"
    ALREADY_REFUNDED = "already_refunded"
    NO_UNLOCKS_TO_REFUND = "no_unlocks_to_refund"
    USER_NOT_FOUND = "user_not_found"

    # Auth
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_AUTHORIZED = "not_authorized"

    # External service errors (502, 503)
    STRIPE_API_ERROR = "stripe_api_error"
    EXTERNAL_GATEWAY_ERROR = "external_gateway_error"
    DATABASE_ERROR = "database_error"
    PERSISTENCE_ERROR = "persistence_error"

    # Internal errors (500)
    INTERNAL_ERROR = "internal_error"


# Remediation hints for common errors
REMEDIATION_HINTS = {
    ErrorCode.INVALID_EMAIL: "Provide a valid email address in the format: user@example.com",
    ErrorCode.INVALID_DELTA: "Provide a non-zero whole number of credits",
    ErrorCode.DELTA_TOO_LARGE: "Split the adjustment into smaller steps below the safety ceiling",
    ErrorCode.INVALID_SESSION_ID: "Use the checkout session id from the Stripe dashboard (starts with cs_)",
    ErrorCode.INSUFFICIENT_CREDITS: "Purchase a credit pack and retry the unlock.",
    ErrorCode.ALREADY_REFUNDED: "No action needed. The refund was recorded by an earlier request.",
    ErrorCode.NO_UNLOCKS_TO_REFUND: "The account has no paid unlocks on record",
    ErrorCode.USER_NOT_FOUND: "Check the email address; the user must have signed in at least once",
    ErrorCode.NOT_AUTHENTICATED: "Sign in again and retry with a fresh bearer token",
    ErrorCode.NOT_AUTHORIZED: "This action is limited to administrators",
    ErrorCode.STRIPE_API_ERROR: "Stripe payment processing is temporarily unavailable. Please try again later.",
    ErrorCode.EXTERNAL_GATEWAY_ERROR: "Stripe payment processing is temporarily unavailable. Please try again later.",
    ErrorCode.DATABASE_ERROR: "Database temporarily unavailable. Please try again in a few moments.",
    ErrorCode.PERSISTENCE_ERROR: "Retry the same request; it will not be applied twice.",
}
