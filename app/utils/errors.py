"""
Standardized error response utilities for the pricing API.

Provides consistent error response format across all endpoints:
{
    "error": {
        "message": "User-friendly error message",
        "code": "ERROR_CODE"
    }
}

Usage:
    from app.utils.errors import error_response, ErrorCode

    return error_response("Pricing rule not found", ErrorCode.NOT_FOUND, 404)
"""
import logging
from enum import Enum
from flask import jsonify
from typing import Optional

from .exceptions import PricingError, RuleValidationError, RemoteOperationFailure

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication & Authorization (401, 403)
    AUTH_REQUIRED = "AUTH_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"

    # Validation Errors (400)
    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Not Found (404)
    NOT_FOUND = "NOT_FOUND"
    RULE_NOT_FOUND = "PRICING_RULE_NOT_FOUND"
    SHOP_NOT_FOUND = "SHOP_NOT_FOUND"

    # Conflict (409)
    SAVE_RULE_FIRST = "SAVE_RULE_FIRST"

    # External Service Errors (502, 503)
    SHOPIFY_ERROR = "SHOPIFY_ERROR"
    SYNC_FAILED = "SYNC_FAILED"
    CATALOG_UNAVAILABLE = "CATALOG_UNAVAILABLE"

    # Server Errors (500)
    INTERNAL_ERROR = "INTERNAL_ERROR"


def error_response(
    message: str,
    code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    status_code: int = 500,
    log_error: bool = True,
    details: Optional[dict] = None,
    extra: Optional[dict] = None
) -> tuple:
    """
    Create a standardized error response.

    Args:
        message: User-friendly error message
        code: Error code from ErrorCode enum (or a plain string code)
        status_code: HTTP status code
        log_error: Whether to log the error (default True for 500s)
        details: Optional additional details (only logged, not returned to user)
        extra: Optional fields merged into the error body (e.g. field errors)

    Returns:
        Tuple of (response, status_code) for Flask
    """
    code_value = code.value if isinstance(code, ErrorCode) else code

    if log_error and status_code >= 500:
        logger.error(f"API Error [{code_value}]: {message}", extra={"details": details})
    elif log_error and status_code >= 400:
        logger.warning(f"API Error [{code_value}]: {message}", extra={"details": details})

    body = {
        "message": message,
        "code": code_value
    }
    if extra:
        body.update(extra)

    return jsonify({"error": body}), status_code


def pricing_error_response(error: PricingError) -> tuple:
    """Translate a business exception into a standardized error response."""
    extra = None
    if isinstance(error, RuleValidationError):
        extra = {"errors": [e.to_dict() for e in error.errors]}
    elif isinstance(error, RemoteOperationFailure):
        extra = {"reason": error.reason.value, "retryable": error.retryable}
    return error_response(error.message, error.code, error.status_code, extra=extra)


# Convenience functions for common error types
def bad_request(message: str, code: ErrorCode = ErrorCode.INVALID_REQUEST) -> tuple:
    """400 Bad Request error."""
    return error_response(message, code, 400, log_error=False)

