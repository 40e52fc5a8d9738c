"""
Shopify connection settings for the Lambda handlers.

Settings are read from the environment once per invocation and handed to
the lookup and upsert logic as a ShopifyConfig value. The Admin API token
can come straight from the environment or from an SSM SecureString.
"""

import os
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

import boto3
from botocore.exceptions import ClientError

from .errors import ConfigurationError

DEFAULT_REST_API_VERSION = "2024-10"
DEFAULT_GRAPHQL_API_VERSION = "2025-01"
DEFAULT_MEMBERSHIP_TAG = "clubdvigi"
DEFAULT_METAOBJECT_TYPE = "warranty_registration"
DEFAULT_METAFIELD_NAMESPACE = "custom"
DEFAULT_METAFIELD_KEY = "registros_de_garantia"
DEFAULT_MONTHS_TO_EXPIRE = 12
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class ShopifyConfig:
    """Connection and warranty settings for one invocation."""

    store: Optional[str] = None
    access_token: Optional[str] = None
    rest_api_version: str = DEFAULT_REST_API_VERSION
    graphql_api_version: str = DEFAULT_GRAPHQL_API_VERSION
    allow_origin: str = "*"
    membership_tag: str = DEFAULT_MEMBERSHIP_TAG
    metaobject_type: str = DEFAULT_METAOBJECT_TYPE
    metafield_namespace: str = DEFAULT_METAFIELD_NAMESPACE
    metafield_key: str = DEFAULT_METAFIELD_KEY
    months_to_expire: int = DEFAULT_MONTHS_TO_EXPIRE
    request_timeout: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def has_store(self) -> bool:
        return bool(self.store)

    @property
    def has_token(self) -> bool:
        return bool(self.access_token)

    @property
    def rest_base_url(self) -> str:
        return f"https://{self.store}/admin/api/{self.rest_api_version}"

    @property
    def graphql_url(self) -> str:
        return f"https://{self.store}/admin/api/{self.graphql_api_version}/graphql.json"

    def require_credentials(self) -> None:
        """
        Fail before any outbound call when the store or token is missing.

        Raises:
            ConfigurationError: naming the missing environment variables
        """
        missing: List[str] = []
        if not self.has_store:
            missing.append("SHOPIFY_STORE")
        if not self.has_token:
            missing.append("SHOPIFY_ADMIN_TOKEN")
        if missing:
            raise ConfigurationError(
                f"Missing {' or '.join(missing)}",
                {"missing": missing},
            )


def normalize_store(value: Optional[str]) -> Optional[str]:
    """
    Reduce a store setting to its bare host.

    Examples:
        >>> normalize_store("https://example.myshopify.com/")
        'example.myshopify.com'
        >>> normalize_store("  ") is None
        True
    """
    if not value:
        return None
    store = value.strip()
    for scheme in ("https://", "http://"):
        if store.lower().startswith(scheme):
            store = store[len(scheme) :]
    store = store.rstrip("/")
    return store or None


def cors_origin(environ: Optional[Mapping[str, str]] = None) -> str:
    """Allowed CORS origin; readable without loading the rest of the settings."""
    env: Mapping[str, str] = os.environ if environ is None else environ
    return (env.get("CORS_ALLOW_ORIGIN") or "").strip() or "*"


def _get_ssm_client() -> Any:
    """Return a fresh boto3 SSM client (created lazily so tests and moto work)."""
    return boto3.client("ssm", endpoint_url=os.getenv("SSM_ENDPOINT"))


def fetch_token_parameter(parameter_name: str) -> Optional[str]:
    """
    Read the Admin API token from an SSM parameter.

    Args:
        parameter_name: Name of a String or SecureString parameter

    Returns:
        Parameter value, or None if the parameter does not exist
    """
    try:
        response = _get_ssm_client().get_parameter(Name=parameter_name, WithDecryption=True)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "ParameterNotFound":
            return None
        raise
    value = response.get("Parameter", {}).get("Value")
    return value.strip() if value else None


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", {"value": raw})


def _float_setting(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number", {"value": raw})


def load_config(environ: Optional[Mapping[str, str]] = None) -> ShopifyConfig:
    """
    Build a ShopifyConfig from environment variables.

    Missing credentials are not an error here; handlers call
    `require_credentials()` once they know an outbound call is needed, so the
    selftest diagnostic can still report what is configured.

    Args:
        environ: Mapping to read instead of os.environ (tests)

    Returns:
        ShopifyConfig for this invocation
    """
    env: Mapping[str, str] = os.environ if environ is None else environ

    token = (env.get("SHOPIFY_ADMIN_TOKEN") or "").strip() or None
    parameter_name = (env.get("SHOPIFY_ADMIN_TOKEN_PARAMETER") or "").strip()
    if token is None and parameter_name:
        token = fetch_token_parameter(parameter_name)

    return ShopifyConfig(
        store=normalize_store(env.get("SHOPIFY_STORE")),
        access_token=token,
        rest_api_version=env.get("SHOPIFY_REST_API_VERSION") or DEFAULT_REST_API_VERSION,
        graphql_api_version=env.get("SHOPIFY_GRAPHQL_API_VERSION") or DEFAULT_GRAPHQL_API_VERSION,
        allow_origin=cors_origin(env),
        membership_tag=env.get("MEMBERSHIP_TAG") or DEFAULT_MEMBERSHIP_TAG,
        metaobject_type=env.get("WARRANTY_METAOBJECT_TYPE") or DEFAULT_METAOBJECT_TYPE,
        metafield_namespace=env.get("WARRANTY_METAFIELD_NAMESPACE") or DEFAULT_METAFIELD_NAMESPACE,
        metafield_key=env.get("WARRANTY_METAFIELD_KEY") or DEFAULT_METAFIELD_KEY,
        months_to_expire=_int_setting(env, "WARRANTY_MONTHS_TO_EXPIRE", DEFAULT_MONTHS_TO_EXPIRE),
        request_timeout=_float_setting(env, "SHOPIFY_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
    )
