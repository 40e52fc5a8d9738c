"""
HTTP response builders for the storefront-facing Lambda handlers.

Provides consistent JSON bodies, CORS headers and the response body types
returned by the lookup and upsert endpoints.
"""

import json
from typing import Any, Dict, Iterable, List, Optional, TypedDict

from .errors import AppError, ErrorCode, handle_error

ALLOW_HEADERS = "Content-Type, Authorization"


class LookupResponse(TypedDict, total=False):
    """Body returned by the customer lookup endpoint."""

    ok: bool
    found: bool
    where: str
    count: int
    data: List[Dict[str, Any]]
    note: str
    ordersCount: int
    orders: List[Dict[str, Any]]


class UpsertResponse(TypedDict, total=False):
    """Body returned by the customer upsert endpoint."""

    ok: bool
    customerId: str
    created: List[str]
    createdMetaobjectsCount: int
    metafieldLinkedCount: int
    appliedTag: bool
    tagRepaired: bool
    fieldKeys: Dict[str, str]


def cors_headers(allow_origin: str, methods: Iterable[str]) -> Dict[str, str]:
    """
    Build CORS headers for a handler.

    Args:
        allow_origin: Storefront origin or "*"
        methods: Methods the handler implements (OPTIONS is always added)

    Returns:
        Header dictionary
    """
    allowed = [m.upper() for m in methods]
    if "OPTIONS" not in allowed:
        allowed.append("OPTIONS")
    return {
        "Access-Control-Allow-Origin": allow_origin,
        "Access-Control-Allow-Methods": ",".join(allowed),
        "Access-Control-Allow-Headers": ALLOW_HEADERS,
    }


def json_response(status_code: int, body: Any, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Build an API Gateway proxy response with a JSON body."""
    return {
        "statusCode": status_code,
        "headers": {**(headers or {}), "Content-Type": "application/json"},
        "body": json.dumps(body, default=str),
    }


def preflight_response(headers: Dict[str, str]) -> Dict[str, Any]:
    """Empty 204 answer to a CORS preflight."""
    return {"statusCode": 204, "headers": dict(headers), "body": ""}


def method_not_allowed(method: str, headers: Dict[str, str]) -> Dict[str, Any]:
    """405 answer for methods the handler does not implement."""
    return json_response(
        405,
        {"ok": False, "error": ErrorCode.METHOD_NOT_ALLOWED, "message": f"Method {method or 'UNKNOWN'} not allowed"},
        headers,
    )


def error_response(error: Exception, headers: Dict[str, str], logger: Any, message: str) -> Dict[str, Any]:
    """
    Log a failed request and build its JSON error response.

    Unexpected exceptions are logged with their traceback; the caller only
    sees a generic message.

    Args:
        error: Exception raised while handling the request
        headers: CORS headers for the response
        logger: Invocation StructuredLogger
        message: Log message describing the failed operation

    Returns:
        API Gateway proxy response
    """
    status, body = handle_error(error)
    if not isinstance(error, AppError):
        logger.exception(message, error=str(error), error_type=type(error).__name__)
    elif status >= 500:
        logger.error(message, error_code=error.error_code, error=error.message, details=error.details)
    else:
        logger.warning(message, error_code=error.error_code, error=error.message, details=error.details)
    return json_response(status, body, headers)
