"""
Test fixtures for Lambda function tests.

Provides API Gateway events, Shopify settings and mocked HTTP sessions.
"""

import json
from typing import Any, Callable, Dict, Generator, List, Optional
from unittest.mock import MagicMock

import pytest

from src.utils.config import ShopifyConfig
from src.utils.logging import StructuredLogger
from tests.unit.fixtures import make_session

SHOPIFY_ENV_VARS = (
    "SHOPIFY_STORE",
    "SHOPIFY_ADMIN_TOKEN",
    "SHOPIFY_ADMIN_TOKEN_PARAMETER",
    "SHOPIFY_REST_API_VERSION",
    "SHOPIFY_GRAPHQL_API_VERSION",
    "CORS_ALLOW_ORIGIN",
    "MEMBERSHIP_TAG",
    "WARRANTY_METAOBJECT_TYPE",
    "WARRANTY_METAFIELD_NAMESPACE",
    "WARRANTY_METAFIELD_KEY",
    "WARRANTY_MONTHS_TO_EXPIRE",
    "SHOPIFY_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: Any) -> None:
    """Start every test without Shopify settings in the environment."""
    for name in SHOPIFY_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def shopify_env(monkeypatch: Any) -> None:
    """Minimal environment for a configured deployment."""
    monkeypatch.setenv("SHOPIFY_STORE", "test-store.myshopify.com")
    monkeypatch.setenv("SHOPIFY_ADMIN_TOKEN", "shpat_test")


@pytest.fixture
def aws_credentials(monkeypatch: Any) -> None:
    """Set fake AWS credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def shopify_config() -> ShopifyConfig:
    """Configured settings with the defaults for everything else."""
    return ShopifyConfig(store="test-store.myshopify.com", access_token="shpat_test")


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger("test", "test-correlation-id")


@pytest.fixture
def lambda_context() -> Any:
    """Mock Lambda context."""

    class MockContext:
        function_name = "test-function"
        memory_limit_in_mb = 128
        invoked_function_arn = "arn:aws:lambda:us-east-1:123456789012:function:test"
        aws_request_id = "test-request-id"

    return MockContext()


@pytest.fixture
def api_event() -> Callable[..., Dict[str, Any]]:
    """Factory for API Gateway HTTP API (v2) proxy events."""

    def _build(
        method: str = "GET",
        query: Optional[Dict[str, str]] = None,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        if body is not None and not isinstance(body, str):
            body = json.dumps(body)
        return {
            "version": "2.0",
            "rawPath": "/",
            "headers": headers or {"content-type": "application/json"},
            "queryStringParameters": query,
            "body": body,
            "isBase64Encoded": False,
            "requestContext": {"requestId": "req-123", "http": {"method": method, "path": "/"}},
        }

    return _build


@pytest.fixture
def session_factory(monkeypatch: Any) -> Generator[Callable[..., MagicMock], None, None]:
    """
    Install a mocked requests.Session in both handler modules.

    Call the fixture with the responses to replay; returns the session.
    """
    from src.handlers import lookup, upsert

    def _install(responses: List[MagicMock]) -> MagicMock:
        session = make_session(responses)
        monkeypatch.setattr(lookup, "session_factory", lambda: session)
        monkeypatch.setattr(upsert, "session_factory", lambda: session)
        return session

    yield _install
