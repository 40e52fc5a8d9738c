"""
ID normalization utilities for Shopify global IDs.

The Admin GraphQL API addresses records as `gid://shopify/<Type>/<id>`
while the REST API and storefront forms use the bare numeric ID.
"""

from typing import Optional, Union

GID_PREFIX = "gid://shopify/"


def is_gid(id_value: Optional[str]) -> bool:
    """Return True when the value is already a Shopify global ID."""
    return bool(id_value) and str(id_value).startswith(GID_PREFIX)


def to_gid(resource_type: str, id_value: Union[str, int, None]) -> Optional[str]:
    """
    Build a Shopify global ID for a resource.

    Args:
        resource_type: GraphQL type name (e.g., 'Product', 'Customer')
        id_value: Numeric ID or an existing global ID, may be None

    Returns:
        Global ID, or None if input was empty

    Examples:
        >>> to_gid('Product', 123)
        'gid://shopify/Product/123'
        >>> to_gid('Product', 'gid://shopify/Product/123')
        'gid://shopify/Product/123'
    """
    if id_value is None:
        return None
    raw = str(id_value).strip()
    if not raw:
        return None
    if is_gid(raw):
        return raw
    return f"{GID_PREFIX}{resource_type}/{raw}"


def product_gid(id_value: Union[str, int, None]) -> Optional[str]:
    """Normalize product ID to a Product global ID."""
    return to_gid("Product", id_value)
