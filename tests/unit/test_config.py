"""Tests for Shopify settings loading."""

from typing import Any
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from src.utils import config as config_module
from src.utils.config import (
    DEFAULT_MONTHS_TO_EXPIRE,
    ShopifyConfig,
    cors_origin,
    fetch_token_parameter,
    load_config,
    normalize_store,
)
from src.utils.errors import ConfigurationError, ErrorCode


class TestNormalizeStore:
    """Tests for normalize_store."""

    def test_bare_host_unchanged(self) -> None:
        assert normalize_store("shop.myshopify.com") == "shop.myshopify.com"

    def test_strips_scheme_and_slash(self) -> None:
        assert normalize_store("https://shop.myshopify.com/") == "shop.myshopify.com"

    def test_blank_is_none(self) -> None:
        assert normalize_store("   ") is None
        assert normalize_store(None) is None


class TestShopifyConfig:
    """Tests for ShopifyConfig."""

    def test_urls(self, shopify_config: ShopifyConfig) -> None:
        assert shopify_config.rest_base_url == "https://test-store.myshopify.com/admin/api/2024-10"
        assert shopify_config.graphql_url == "https://test-store.myshopify.com/admin/api/2025-01/graphql.json"

    def test_require_credentials_passes(self, shopify_config: ShopifyConfig) -> None:
        shopify_config.require_credentials()

    def test_require_credentials_names_missing(self) -> None:
        """Test that both missing settings are reported."""
        with pytest.raises(ConfigurationError) as exc_info:
            ShopifyConfig().require_credentials()

        assert exc_info.value.error_code == ErrorCode.CONFIGURATION_ERROR
        assert exc_info.value.status_code == 500
        assert exc_info.value.details["missing"] == ["SHOPIFY_STORE", "SHOPIFY_ADMIN_TOKEN"]

    def test_require_credentials_missing_token_only(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            ShopifyConfig(store="shop.myshopify.com").require_credentials()

        assert exc_info.value.details["missing"] == ["SHOPIFY_ADMIN_TOKEN"]


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults(self) -> None:
        """Test that an empty environment yields defaults and no credentials."""
        config = load_config({})

        assert config.store is None
        assert config.access_token is None
        assert config.allow_origin == "*"
        assert config.membership_tag == "clubdvigi"
        assert config.metaobject_type == "warranty_registration"
        assert config.metafield_namespace == "custom"
        assert config.metafield_key == "registros_de_garantia"
        assert config.months_to_expire == DEFAULT_MONTHS_TO_EXPIRE

    def test_reads_environment(self) -> None:
        config = load_config(
            {
                "SHOPIFY_STORE": "https://shop.myshopify.com",
                "SHOPIFY_ADMIN_TOKEN": " shpat_abc ",
                "CORS_ALLOW_ORIGIN": "https://dvigi.com.ar",
                "MEMBERSHIP_TAG": "club",
                "WARRANTY_MONTHS_TO_EXPIRE": "6",
                "SHOPIFY_TIMEOUT_SECONDS": "5",
            }
        )

        assert config.store == "shop.myshopify.com"
        assert config.access_token == "shpat_abc"
        assert config.allow_origin == "https://dvigi.com.ar"
        assert config.membership_tag == "club"
        assert config.months_to_expire == 6
        assert config.request_timeout == 5.0

    def test_reads_os_environ_by_default(self, shopify_env: None) -> None:
        config = load_config()

        assert config.store == "test-store.myshopify.com"
        assert config.has_token

    def test_invalid_months_to_expire(self) -> None:
        with pytest.raises(ConfigurationError):
            load_config({"WARRANTY_MONTHS_TO_EXPIRE": "twelve"})

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ConfigurationError):
            load_config({"SHOPIFY_TIMEOUT_SECONDS": "soon"})

    def test_env_token_skips_ssm(self) -> None:
        """Test that a token in the environment never triggers an SSM call."""
        with patch.object(config_module, "fetch_token_parameter") as fetch:
            config = load_config({"SHOPIFY_ADMIN_TOKEN": "shpat_env", "SHOPIFY_ADMIN_TOKEN_PARAMETER": "/shopify/token"})

        fetch.assert_not_called()
        assert config.access_token == "shpat_env"

    def test_cors_origin(self) -> None:
        assert cors_origin({}) == "*"
        assert cors_origin({"CORS_ALLOW_ORIGIN": "https://dvigi.com.ar"}) == "https://dvigi.com.ar"


class TestTokenParameter:
    """Tests for reading the Admin API token from SSM."""

    def test_reads_secure_string(self, aws_credentials: None) -> None:
        with mock_aws():
            ssm = boto3.client("ssm", region_name="us-east-1")
            ssm.put_parameter(Name="/shopify/admin-token", Value="shpat_from_ssm", Type="SecureString")

            config = load_config(
                {"SHOPIFY_STORE": "shop.myshopify.com", "SHOPIFY_ADMIN_TOKEN_PARAMETER": "/shopify/admin-token"}
            )

        assert config.access_token == "shpat_from_ssm"
        config.require_credentials()

    def test_missing_parameter_leaves_token_unset(self, aws_credentials: None) -> None:
        with mock_aws():
            token = fetch_token_parameter("/shopify/does-not-exist")

        assert token is None

    def test_other_aws_errors_propagate(self, monkeypatch: Any) -> None:
        """Test that access errors are not mistaken for a missing token."""
        client = MagicMock()
        client.get_parameter.side_effect = ClientError(
            {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetParameter"
        )
        monkeypatch.setattr(config_module, "_get_ssm_client", lambda: client)

        with pytest.raises(ClientError):
            fetch_token_parameter("/shopify/admin-token")
