"""
Customer lookup Lambda handler.

Implements:
- GET|POST /lookup: does a Shopify customer exist for this email?

The lookup tries, in order, an exact customer match, a customer search
query and a scan of recent orders, stopping at the first stage that finds
something. Two diagnostic flags skip the email requirement:
`?selftest=1` reports which settings are present and `?checkshop=1` makes
a single call to shop.json to test the token.
"""

from typing import Any, Callable, Dict, List, Optional

import requests

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.config import ShopifyConfig, cors_origin, load_config  # type: ignore[import-not-found]
    from utils.errors import ErrorCode, truncate  # type: ignore[import-not-found]
    from utils.events import ApiGatewayEvent, get_body, get_method, get_query, is_flag_set  # type: ignore[import-not-found]
    from utils.logging import StructuredLogger, get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.responses import (  # type: ignore[import-not-found]
        LookupResponse,
        cors_headers,
        error_response,
        json_response,
        method_not_allowed,
        preflight_response,
    )
    from utils.shopify import ShopifyClient  # type: ignore[import-not-found]
    from utils.validation import require_email  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from src.utils.config import ShopifyConfig, cors_origin, load_config
    from src.utils.errors import ErrorCode, truncate
    from src.utils.events import ApiGatewayEvent, get_body, get_method, get_query, is_flag_set
    from src.utils.logging import StructuredLogger, get_correlation_id, get_logger
    from src.utils.responses import (
        LookupResponse,
        cors_headers,
        error_response,
        json_response,
        method_not_allowed,
        preflight_response,
    )
    from src.utils.shopify import ShopifyClient
    from src.utils.validation import require_email

ALLOWED_METHODS = ("GET", "POST")
ORDER_SCAN_LIMIT = 5
SHOP_SAMPLE_LENGTH = 200
ORDERS_ONLY_NOTE = "Email seen in orders, not registered as a customer"

# Module-level override that tests can monkeypatch
session_factory: Optional[Callable[[], requests.Session]] = None


def _make_client(config: ShopifyConfig) -> ShopifyClient:
    session = session_factory() if session_factory is not None else None
    return ShopifyClient(config, session=session)


def _found(where: str, customers: List[Dict[str, Any]]) -> LookupResponse:
    return LookupResponse(ok=True, found=True, where=where, count=len(customers), data=customers)


def lookup_customer(client: ShopifyClient, email: str, logger: Optional[StructuredLogger] = None) -> LookupResponse:
    """
    Resolve an email against Shopify customers, then orders.

    Args:
        client: Shopify client for the store
        email: Trimmed email address
        logger: Invocation logger (optional)

    Returns:
        LookupResponse describing which stage matched, if any

    Raises:
        UpstreamError: tagged with the failing stage; later stages are skipped
    """
    logger = logger or get_logger(__name__)

    exact = client.rest_get("customers_exact", "customers.json", {"email": email}).get("customers") or []
    if exact:
        logger.info("Customer matched exactly", where="customers_exact", count=len(exact))
        return _found("customers_exact", exact)

    search = client.rest_get("customers_search", "customers/search.json", {"query": f"email:{email}"}).get("customers") or []
    if search:
        logger.info("Customer matched by search", where="customers_search", count=len(search))
        return _found("customers_search", search)

    orders = (
        client.rest_get(
            "orders",
            "orders.json",
            {"email": email, "status": "any", "limit": ORDER_SCAN_LIMIT},
        ).get("orders")
        or []
    )
    if orders:
        logger.info("Email only found in orders", where="orders", orders_count=len(orders))
        return LookupResponse(
            ok=True,
            found=False,
            where="orders",
            note=ORDERS_ONLY_NOTE,
            ordersCount=len(orders),
            orders=orders,
            data=[],
        )

    logger.info("No customer or order for email", where="none")
    return LookupResponse(ok=True, found=False, where="none", data=[])


def self_test(config: ShopifyConfig) -> Dict[str, Any]:
    """Report which connection settings are present, without calling Shopify."""
    return {"ok": True, "hasStore": config.has_store, "hasToken": config.has_token}


def check_shop(client: ShopifyClient) -> Dict[str, Any]:
    """
    Make one lightweight call to shop.json.

    A 401 means the token is wrong; a 403 means it lacks the scope. Network
    failures are raised to the caller.
    """
    ok, status, text = client.probe("shop.json")
    if ok:
        reason = "ok"
    elif status == 401:
        reason = "unauthorized"
    elif status == 403:
        reason = "forbidden"
    else:
        reason = "http_error"
    return {"ok": ok, "status": status, "reason": reason, "sample": truncate(text, SHOP_SAMPLE_LENGTH)}


def handle_lookup(event: ApiGatewayEvent, config: ShopifyConfig, logger: StructuredLogger) -> Dict[str, Any]:
    """
    Route one lookup request. CORS headers are set on every response.

    Args:
        event: API Gateway proxy event
        config: Settings for this invocation
        logger: Invocation logger

    Returns:
        API Gateway proxy response
    """
    headers = cors_headers(config.allow_origin, ALLOWED_METHODS)
    method = get_method(event)

    if method == "OPTIONS":
        return preflight_response(headers)
    if method not in ALLOWED_METHODS:
        return method_not_allowed(method, headers)

    try:
        query = get_query(event)

        if method == "GET" and is_flag_set(query, "selftest"):
            return json_response(200, self_test(config), headers)

        if method == "GET" and is_flag_set(query, "checkshop"):
            client = _make_client(config)
            try:
                result = check_shop(client)
            except requests.RequestException as e:
                logger.error("Shop check failed", error=str(e))
                return json_response(
                    500,
                    {"ok": False, "error": ErrorCode.CHECKSHOP_FAIL, "details": truncate(str(e), SHOP_SAMPLE_LENGTH)},
                    headers,
                )
            logger.info("Shop check completed", status=result["status"], reason=result["reason"])
            return json_response(200, result, headers)

        body = get_body(event) if method == "POST" else {}
        email = require_email(body, query)
        logger.info("Looking up customer", email=email)

        client = _make_client(config)
        return json_response(200, lookup_customer(client, email, logger), headers)

    except Exception as e:
        return error_response(e, headers, logger, "Lookup failed")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda entry point for the lookup endpoint.

    Preflight requests are answered before settings are loaded.

    Args:
        event: API Gateway proxy event
        context: Lambda context (unused)

    Returns:
        API Gateway proxy response
    """
    logger = get_logger(__name__, get_correlation_id(event))
    method = get_method(event)
    logger.info("lookup handler invoked", method=method)

    if method == "OPTIONS":
        return preflight_response(cors_headers(cors_origin(), ALLOWED_METHODS))

    try:
        config = load_config()
    except Exception as e:
        return error_response(e, cors_headers(cors_origin(), ALLOWED_METHODS), logger, "Could not load configuration")

    return handle_lookup(event, config, logger)
