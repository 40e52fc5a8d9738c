"""
Test data builders for Lambda function tests.

Provides factory functions for fake Shopify responses and payloads so test
files do not repeat HTTP mocking boilerplate.
"""

import json
from typing import Any, Dict, List, Optional
from unittest.mock import MagicMock


def make_response(status_code: int = 200, payload: Any = None, text: Optional[str] = None) -> MagicMock:
    """Build a MagicMock that behaves like a requests.Response.

    Args:
        status_code: HTTP status
        payload: Decoded JSON body; None makes .json() raise ValueError
        text: Raw body text (defaults to the JSON encoding of payload)
    """
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    if payload is not None:
        response.json.return_value = payload
        response.text = text if text is not None else json.dumps(payload)
    else:
        response.json.side_effect = ValueError("No JSON object could be decoded")
        response.text = text or ""
    return response


def graphql_response(data: Dict[str, Any]) -> MagicMock:
    """200 GraphQL response carrying `data`."""
    return make_response(200, {"data": data})


def make_session(responses: List[MagicMock]) -> MagicMock:
    """Session whose request() replays the given responses in order."""
    session = MagicMock()
    session.headers = {}
    session.request.side_effect = list(responses)
    return session


def sent_graphql(session: MagicMock, index: int) -> Dict[str, Any]:
    """JSON payload of the index-th request made on the session."""
    return session.request.call_args_list[index].kwargs["json"]


def sent_params(session: MagicMock, index: int) -> Dict[str, Any]:
    """Query parameters of the index-th request made on the session."""
    return session.request.call_args_list[index].kwargs["params"]


def make_rest_customer(customer_id: int = 101, email: str = "ana@example.com") -> Dict[str, Any]:
    """REST Admin API customer resource."""
    return {"id": customer_id, "email": email, "first_name": "Ana", "last_name": "Pérez", "tags": "clubdvigi"}


def make_customer_node(
    customer_id: str = "gid://shopify/Customer/101",
    email: str = "ana@example.com",
    tags: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """GraphQL Customer node as returned by the customers search."""
    return {
        "id": customer_id,
        "email": email,
        "firstName": "Ana",
        "lastName": "Pérez",
        "phone": None,
        "tags": tags if tags is not None else [],
    }


def search_result(*nodes: Dict[str, Any]) -> MagicMock:
    """customers(query:) response with the given nodes."""
    return graphql_response({"customers": {"edges": [{"node": node} for node in nodes]}})


def mutation_result(name: str, payload: Dict[str, Any], user_errors: Optional[List[Dict[str, Any]]] = None) -> MagicMock:
    """Mutation response with optional userErrors."""
    return graphql_response({name: {**payload, "userErrors": user_errors or []}})


def definition_result(field_definitions: Optional[List[Dict[str, str]]]) -> MagicMock:
    """metaobjectDefinitionByType response; None means the type does not exist."""
    if field_definitions is None:
        return graphql_response({"metaobjectDefinitionByType": None})
    return graphql_response(
        {
            "metaobjectDefinitionByType": {
                "id": "gid://shopify/MetaobjectDefinition/1",
                "type": "warranty_registration",
                "fieldDefinitions": field_definitions,
            }
        }
    )


def metafield_result(customer_id: str, reference_ids: Optional[List[str]]) -> MagicMock:
    """Customer metafield read; None means the metafield is not set."""
    metafield = None
    if reference_ids is not None:
        metafield = {
            "id": "gid://shopify/Metafield/9",
            "type": "list.metaobject_reference",
            "value": json.dumps(reference_ids),
            "references": {"edges": [{"node": {"id": ref}} for ref in reference_ids]},
        }
    return graphql_response({"customer": {"id": customer_id, "metafield": metafield}})


DEFAULT_FIELD_DEFINITIONS = [
    {"key": "customer", "name": "Customer"},
    {"key": "product", "name": "Product"},
    {"key": "purchase_month", "name": "Purchase month"},
    {"key": "purchase_year", "name": "Purchase year"},
    {"key": "purchase_date", "name": "Purchase date"},
    {"key": "expiry_date", "name": "Expiry date"},
]
