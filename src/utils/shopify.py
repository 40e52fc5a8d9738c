"""
Shopify Admin API client.

Thin wrapper over a requests.Session for the REST endpoints used by the
lookup handler and the GraphQL endpoint used by the upsert handler. Every
call is tagged with a stage name so failures can say where they happened.
"""

from typing import Any, Dict, List, Optional, Tuple

import requests

from .config import ShopifyConfig
from .errors import UpstreamError


class ShopifyClient:
    """
    Admin API client bound to one store and access token.

    Example:
        client = ShopifyClient(config)
        data = client.rest_get("customers_exact", "customers.json", {"email": email})
    """

    def __init__(self, config: ShopifyConfig, session: Optional[requests.Session] = None) -> None:
        config.require_credentials()
        self.config = config
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "X-Shopify-Access-Token": config.access_token or "",
                "Content-Type": "application/json",
                "Accept": "application/json",
            }
        )

    def _url(self, path: str) -> str:
        return f"{self.config.rest_base_url}/{path.lstrip('/')}"

    def _send(self, stage: str, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.config.request_timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamError(stage, None, str(e), message="Could not reach Shopify")

    @staticmethod
    def _json(stage: str, response: requests.Response) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError(stage, response.status_code, response.text, message="Shopify returned invalid JSON")
        if not isinstance(payload, dict):
            raise UpstreamError(stage, response.status_code, payload, message="Shopify returned an unexpected payload")
        return payload

    def rest_get(self, stage: str, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a REST Admin API resource.

        Args:
            stage: Stage tag reported on failure (e.g., 'customers_exact')
            path: Path below /admin/api/<version>/ (e.g., 'customers.json')
            params: Query parameters

        Returns:
            Decoded JSON body

        Raises:
            UpstreamError: On network failure or non-2xx status
        """
        response = self._send(stage, "GET", self._url(path), params=params)
        if not response.ok:
            raise UpstreamError(stage, response.status_code, response.text)
        return self._json(stage, response)

    def probe(self, path: str = "shop.json") -> Tuple[bool, int, str]:
        """
        Raw GET used by the connection diagnostic.

        Network failures propagate as requests exceptions so the caller can
        tell them apart from HTTP-level failures.

        Returns:
            (ok, status code, response text)
        """
        response = self.session.get(self._url(path), timeout=self.config.request_timeout)
        return response.ok, response.status_code, response.text

    def graphql(self, stage: str, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a GraphQL Admin API query or mutation.

        Args:
            stage: Stage tag reported on failure
            query: GraphQL document
            variables: Query variables

        Returns:
            The `data` object of the response

        Raises:
            UpstreamError: On network failure, non-2xx status or top-level `errors`
        """
        response = self._send(
            stage,
            "POST",
            self.config.graphql_url,
            json={"query": query, "variables": variables or {}},
        )
        if not response.ok:
            raise UpstreamError(stage, response.status_code, response.text)

        payload = self._json(stage, response)
        if payload.get("errors"):
            raise UpstreamError(stage, response.status_code, payload["errors"], message="Shopify GraphQL error")
        return payload.get("data") or {}

    @staticmethod
    def check_user_errors(stage: str, result: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Raise when a mutation result carries field-level userErrors.

        Args:
            stage: Stage tag reported on failure
            result: Mutation payload (e.g., data['customerCreate'])

        Returns:
            The payload, for chaining

        Raises:
            UpstreamError: If userErrors is non-empty or the payload is missing
        """
        if result is None:
            raise UpstreamError(stage, 200, "empty mutation payload", message="Shopify returned no result")
        user_errors: List[Dict[str, Any]] = result.get("userErrors") or []
        if user_errors:
            raise UpstreamError(stage, 200, user_errors, message="Shopify rejected the input")
        return result
