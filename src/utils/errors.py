"""
Error handling utilities for Lambda functions.

Provides standardized error responses with error codes and HTTP statuses.
"""

import json
from typing import Any, Dict, Optional, Tuple

# Upstream bodies are clipped before they reach the caller
MAX_DETAILS_LENGTH = 500


class ErrorCode:
    """Standard error codes for the application."""

    # Request errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"

    # Deployment errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Shopify errors
    SHOPIFY_ERROR = "SHOPIFY_ERROR"
    CHECKSHOP_FAIL = "CHECKSHOP_FAIL"

    # System errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AppError(Exception):
    """
    Application error with error code, message and HTTP status.

    Used to return structured JSON errors to storefront clients.
    """

    status_code = 500

    def __init__(
        self,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the JSON response body."""
        return {
            "ok": False,
            "error": self.error_code,
            "message": self.message,
            **self.details,
        }


class ValidationError(AppError):
    """Missing or unparseable request input."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, details)


class ConfigurationError(AppError):
    """Required Shopify connection settings are missing or invalid."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message, details)


class UpstreamError(AppError):
    """
    Shopify returned a non-success status, GraphQL errors or userErrors.

    `where` names the stage that failed so callers can tell the lookup or
    upsert steps apart.
    """

    status_code = 502

    def __init__(self, where: str, status: Optional[int], details: Any, message: str = "Shopify request failed"):
        self.where = where
        self.status = status
        super().__init__(
            ErrorCode.SHOPIFY_ERROR,
            message,
            {"where": where, "status": status, "details": truncate(details)},
        )


def truncate(value: Any, limit: int = MAX_DETAILS_LENGTH) -> str:
    """
    Render a diagnostic value as text and clip it.

    Args:
        value: String, dict or list from an upstream response
        limit: Maximum number of characters kept

    Returns:
        String of at most `limit` characters
    """
    if value is None:
        return ""
    if not isinstance(value, str):
        try:
            value = json.dumps(value, default=str)
        except (TypeError, ValueError):
            value = str(value)
    return value[:limit]


def handle_error(error: Exception) -> Tuple[int, Dict[str, Any]]:
    """
    Convert exception to standardized error response.

    Args:
        error: Exception to handle

    Returns:
        Tuple of HTTP status code and JSON body
    """
    if isinstance(error, AppError):
        return error.status_code, error.to_dict()

    # Unexpected error - return generic message, real detail stays in the logs
    return 500, {
        "ok": False,
        "error": ErrorCode.INTERNAL_ERROR,
        "message": "An unexpected error occurred. Please try again.",
        "details": type(error).__name__,
    }
