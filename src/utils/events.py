"""
Helpers for API Gateway proxy events.

Handles both payload formats: REST APIs (v1, `httpMethod`) and HTTP APIs
(v2, `requestContext.http.method`), including base64-encoded bodies.
"""

import base64
import binascii
import json
from typing import Any, Dict, Optional, TypedDict
from urllib.parse import parse_qsl

from .errors import ValidationError


class ApiGatewayEvent(TypedDict, total=False):
    """Subset of the API Gateway proxy event the handlers read."""

    httpMethod: str
    rawPath: str
    path: str
    headers: Dict[str, str]
    queryStringParameters: Optional[Dict[str, str]]
    body: Optional[str]
    isBase64Encoded: bool
    requestContext: Dict[str, Any]


def get_method(event: Dict[str, Any]) -> str:
    """Return the upper-cased HTTP method, or empty string if absent."""
    method = (event.get("requestContext") or {}).get("http", {}).get("method") or event.get("httpMethod") or ""
    return str(method).upper()


def get_header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    wanted = name.lower()
    for key, value in (event.get("headers") or {}).items():
        if key.lower() == wanted:
            return value
    return None


def get_query(event: Dict[str, Any]) -> Dict[str, str]:
    """Return query string parameters (never None)."""
    return dict(event.get("queryStringParameters") or {})


def is_flag_set(query: Dict[str, str], name: str) -> bool:
    """True when a diagnostic flag such as `?selftest=1` is present."""
    return str(query.get(name, "")).strip().lower() in {"1", "true", "yes"}


def get_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode and parse the request body.

    JSON objects are returned as-is. Form-encoded bodies are flattened into a
    dict (last value wins). An empty body yields an empty dict.

    Args:
        event: API Gateway proxy event

    Returns:
        Parsed body

    Raises:
        ValidationError: If the body is not valid JSON or not an object
    """
    raw = event.get("body")
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw

    if event.get("isBase64Encoded"):
        try:
            raw = base64.b64decode(raw).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise ValidationError("Request body is not valid base64")

    if not raw.strip():
        return {}

    content_type = (get_header(event, "content-type") or "").lower()
    if "application/x-www-form-urlencoded" in content_type:
        return dict(parse_qsl(raw, keep_blank_values=True))

    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Request body must be valid JSON")

    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body
