"""
Customer upsert Lambda handler.

Implements:
- POST /upsert: create or update a Shopify customer, tag them as a club
  member, and register one warranty metaobject per purchase

Flow (each step aborts the request on failure):
1. Find the customer by email; create it or update it, merging tags
2. Re-add the membership tag with tagsAdd if the update dropped it
3. Read the warranty metaobject definition to learn its field keys
4. Create one warranty_registration metaobject per purchase, in order
5. Merge the new metaobject IDs into the customer's list-reference metafield
"""

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.config import ShopifyConfig, cors_origin, load_config  # type: ignore[import-not-found]
    from utils.errors import UpstreamError  # type: ignore[import-not-found]
    from utils.events import ApiGatewayEvent, get_body, get_method  # type: ignore[import-not-found]
    from utils.ids import product_gid  # type: ignore[import-not-found]
    from utils.logging import StructuredLogger, get_correlation_id, get_logger  # type: ignore[import-not-found]
    from utils.responses import (  # type: ignore[import-not-found]
        UpsertResponse,
        cors_headers,
        error_response,
        json_response,
        method_not_allowed,
        preflight_response,
    )
    from utils.shopify import ShopifyClient  # type: ignore[import-not-found]
    from utils.validation import (  # type: ignore[import-not-found]
        EMAIL_KEYS,
        UPSERT_EMAIL_KEYS,
        CustomerProfile,
        PurchaseInput,
        has_tag,
        merge_unique,
        parse_customer_profile,
        parse_purchases,
        profile_to_dict,
        require_email,
    )
    from utils.warranty import warranty_dates  # type: ignore[import-not-found]
except ModuleNotFoundError:  # pragma: no cover
    from src.utils.config import ShopifyConfig, cors_origin, load_config
    from src.utils.errors import UpstreamError
    from src.utils.events import ApiGatewayEvent, get_body, get_method
    from src.utils.ids import product_gid
    from src.utils.logging import StructuredLogger, get_correlation_id, get_logger
    from src.utils.responses import (
        UpsertResponse,
        cors_headers,
        error_response,
        json_response,
        method_not_allowed,
        preflight_response,
    )
    from src.utils.shopify import ShopifyClient
    from src.utils.validation import (
        EMAIL_KEYS,
        UPSERT_EMAIL_KEYS,
        CustomerProfile,
        PurchaseInput,
        has_tag,
        merge_unique,
        parse_customer_profile,
        parse_purchases,
        profile_to_dict,
        require_email,
    )
    from src.utils.warranty import warranty_dates

ALLOWED_METHODS = ("POST",)
METAFIELD_TYPE = "list.metaobject_reference"
MAX_REFERENCES = 250

# Canonical warranty field names, resolved against the metaobject definition
FIELD_CUSTOMER = "customer"
FIELD_PRODUCT = "product"
FIELD_PURCHASE_MONTH = "purchase_month"
FIELD_PURCHASE_YEAR = "purchase_year"
FIELD_PURCHASE_DATE = "purchase_date"
FIELD_EXPIRY_DATE = "expiry_date"
WARRANTY_FIELDS = (
    FIELD_CUSTOMER,
    FIELD_PRODUCT,
    FIELD_PURCHASE_MONTH,
    FIELD_PURCHASE_YEAR,
    FIELD_PURCHASE_DATE,
    FIELD_EXPIRY_DATE,
)

# Module-level override that tests can monkeypatch
session_factory: Optional[Callable[[], requests.Session]] = None

# ---------- GraphQL documents ----------
Q_CUSTOMER_SEARCH = """
query($q: String!) {
  customers(first: 5, query: $q) {
    edges { node { id email firstName lastName phone tags } }
  }
}
"""

M_CUSTOMER_CREATE = """
mutation($input: CustomerInput!) {
  customerCreate(input: $input) {
    customer { id tags }
    userErrors { field message }
  }
}
"""

M_CUSTOMER_UPDATE = """
mutation($input: CustomerInput!) {
  customerUpdate(input: $input) {
    customer { id tags }
    userErrors { field message }
  }
}
"""

M_EMAIL_MARKETING_CONSENT = """
mutation($input: CustomerEmailMarketingConsentUpdateInput!) {
  customerEmailMarketingConsentUpdate(input: $input) {
    customer { id }
    userErrors { field message }
  }
}
"""

M_TAGS_ADD = """
mutation($id: ID!, $tags: [String!]!) {
  tagsAdd(id: $id, tags: $tags) {
    node { id }
    userErrors { field message }
  }
}
"""

Q_METAOBJECT_DEFINITION = """
query($type: String!) {
  metaobjectDefinitionByType(type: $type) {
    id
    type
    fieldDefinitions { key name }
  }
}
"""

M_METAOBJECT_CREATE = """
mutation($type: String!, $fields: [MetaobjectFieldInput!]!) {
  metaobjectCreate(metaobject: { type: $type, fields: $fields }) {
    metaobject { id }
    userErrors { field message }
  }
}
"""

Q_CUSTOMER_METAFIELD = """
query($id: ID!, $ns: String!, $key: String!) {
  customer(id: $id) {
    id
    metafield(namespace: $ns, key: $key) {
      id
      type
      value
      references(first: 250) { edges { node { ... on Metaobject { id } } } }
    }
  }
}
"""

M_METAFIELDS_SET = """
mutation($metafields: [MetafieldsSetInput!]!) {
  metafieldsSet(metafields: $metafields) {
    metafields { id key namespace type value }
    userErrors { field message }
  }
}
"""
# ---------------------------------------


def _make_client(config: ShopifyConfig) -> ShopifyClient:
    session = session_factory() if session_factory is not None else None
    return ShopifyClient(config, session=session)


def _consent_input() -> Dict[str, str]:
    return {"marketingState": "SUBSCRIBED", "marketingOptInLevel": "SINGLE_OPT_IN"}


def _profile_input(profile: CustomerProfile) -> Dict[str, Any]:
    """CustomerInput fields the caller actually supplied."""
    fields = {
        "email": profile.email,
        "firstName": profile.first_name,
        "lastName": profile.last_name,
        "phone": profile.phone,
        "note": profile.note,
    }
    return {k: v for k, v in fields.items() if v}


def find_customer(client: ShopifyClient, email: str) -> Optional[Dict[str, Any]]:
    """
    Search customers by email and keep only an exact (case-insensitive) match.

    Returns:
        Customer node, or None
    """
    data = client.graphql("customer_search", Q_CUSTOMER_SEARCH, {"q": f"email:{email}"})
    edges = (data.get("customers") or {}).get("edges") or []
    wanted = email.lower()
    for edge in edges:
        node = edge.get("node") or {}
        if str(node.get("email") or "").lower() == wanted:
            return node
    return None


def resolve_customer(
    client: ShopifyClient,
    config: ShopifyConfig,
    profile: CustomerProfile,
    logger: StructuredLogger,
) -> Tuple[str, List[str], bool]:
    """
    Create the customer, or update it while keeping every existing tag.

    Args:
        client: Shopify client
        config: Settings (membership tag)
        profile: Email and optional profile fields
        logger: Invocation logger

    Returns:
        (customer GID, tags reported by Shopify, whether the membership tag was newly applied)

    Raises:
        UpstreamError: On HTTP, GraphQL or userErrors failures
    """
    existing = find_customer(client, profile.email)

    if existing is None:
        customer_input = _profile_input(profile)
        if has_tag(profile.tags, config.membership_tag):
            customer_input["tags"] = merge_unique(profile.tags)
        else:
            customer_input["tags"] = merge_unique([config.membership_tag], profile.tags)
        if profile.accepts_marketing:
            customer_input["emailMarketingConsent"] = _consent_input()

        data = client.graphql("customer_create", M_CUSTOMER_CREATE, {"input": customer_input})
        result = client.check_user_errors("customer_create", data.get("customerCreate"))
        customer = result.get("customer") or {}
        if not customer.get("id"):
            raise UpstreamError("customer_create", 200, result, message="Shopify returned no customer")
        logger.info("Created customer", customer_id=customer["id"])
        return customer["id"], list(customer.get("tags") or []), True

    existing_tags = list(existing.get("tags") or [])
    applied_tag = not has_tag(existing_tags, config.membership_tag)

    customer_input = _profile_input(profile)
    customer_input["id"] = existing["id"]
    customer_input["tags"] = merge_unique(existing_tags, profile.tags)
    if applied_tag and not has_tag(profile.tags, config.membership_tag):
        customer_input["tags"].append(config.membership_tag)

    data = client.graphql("customer_update", M_CUSTOMER_UPDATE, {"input": customer_input})
    result = client.check_user_errors("customer_update", data.get("customerUpdate"))
    customer = result.get("customer") or {}
    logger.info("Updated customer", customer_id=existing["id"], applied_tag=applied_tag)

    if profile.accepts_marketing:
        consent = client.graphql(
            "email_marketing_consent",
            M_EMAIL_MARKETING_CONSENT,
            {"input": {"customerId": existing["id"], "emailMarketingConsent": _consent_input()}},
        )
        client.check_user_errors("email_marketing_consent", consent.get("customerEmailMarketingConsentUpdate"))

    return existing["id"], list(customer.get("tags") or []), applied_tag


def ensure_membership_tag(
    client: ShopifyClient,
    customer_id: str,
    reported_tags: List[str],
    membership_tag: str,
    logger: StructuredLogger,
) -> bool:
    """
    Add the membership tag with tagsAdd when the write response lacks it.

    The generic customer write can drop tag changes without reporting an error.

    Returns:
        True if the repair call was made
    """
    if has_tag(reported_tags, membership_tag):
        return False

    logger.warning("Membership tag missing after write, adding it", customer_id=customer_id, tag=membership_tag)
    data = client.graphql("tags_add", M_TAGS_ADD, {"id": customer_id, "tags": [membership_tag]})
    client.check_user_errors("tags_add", data.get("tagsAdd"))
    return True


def build_field_key_map(field_definitions: List[Dict[str, Any]]) -> Dict[str, str]:
    """
    Index metaobject field definitions by lowercase key and label.

    Labels are indexed as-is and with spaces turned into underscores, so a
    field labelled "Purchase month" answers to "purchase_month".
    """
    mapping: Dict[str, str] = {}
    for definition in field_definitions:
        key = str(definition.get("key") or "").strip()
        if not key:
            continue
        mapping.setdefault(key.lower(), key)
        name = str(definition.get("name") or "").strip().lower()
        if name:
            mapping.setdefault(name, key)
            mapping.setdefault(name.replace(" ", "_"), key)
    return mapping


def resolve_field_keys(client: ShopifyClient, metaobject_type: str, logger: StructuredLogger) -> Dict[str, str]:
    """
    Resolve the six warranty field identifiers from the metaobject schema.

    Names missing from the schema resolve to themselves.

    Returns:
        Canonical name -> actual field key
    """
    data = client.graphql("metaobject_definition", Q_METAOBJECT_DEFINITION, {"type": metaobject_type})
    definition = data.get("metaobjectDefinitionByType") or {}
    if not definition:
        logger.warning("Metaobject definition not found, using default field keys", type=metaobject_type)

    mapping = build_field_key_map(definition.get("fieldDefinitions") or [])
    field_keys = {name: mapping.get(name, name) for name in WARRANTY_FIELDS}
    logger.debug("Resolved warranty field keys", field_keys=field_keys)
    return field_keys


def build_warranty_fields(
    customer_id: str,
    purchase: PurchaseInput,
    field_keys: Dict[str, str],
    months_to_expire: int,
) -> List[Dict[str, str]]:
    """MetaobjectFieldInput list for one purchase."""
    purchase_date, expiry_date = warranty_dates(purchase.purchase_month, purchase.purchase_year, months_to_expire)
    values = {
        FIELD_CUSTOMER: customer_id,
        FIELD_PRODUCT: product_gid(purchase.product_id),
        FIELD_PURCHASE_MONTH: str(purchase.purchase_month),
        FIELD_PURCHASE_YEAR: str(purchase.purchase_year),
        FIELD_PURCHASE_DATE: purchase_date,
        FIELD_EXPIRY_DATE: expiry_date,
    }
    return [{"key": field_keys.get(name, name), "value": str(values[name])} for name in WARRANTY_FIELDS]


def create_warranty_registrations(
    client: ShopifyClient,
    config: ShopifyConfig,
    customer_id: str,
    purchases: List[PurchaseInput],
    field_keys: Dict[str, str],
    logger: StructuredLogger,
) -> List[str]:
    """
    Create one warranty metaobject per purchase, strictly one after another.

    The first failure aborts the remaining creations.

    Returns:
        New metaobject IDs in creation order
    """
    created: List[str] = []
    for purchase in purchases:
        fields = build_warranty_fields(customer_id, purchase, field_keys, config.months_to_expire)
        data = client.graphql(
            "metaobject_create",
            M_METAOBJECT_CREATE,
            {"type": config.metaobject_type, "fields": fields},
        )
        result = client.check_user_errors("metaobject_create", data.get("metaobjectCreate"))
        metaobject_id = (result.get("metaobject") or {}).get("id")
        if not metaobject_id:
            raise UpstreamError("metaobject_create", 200, result, message="Shopify returned no metaobject")
        logger.info(
            "Created warranty registration",
            metaobject_id=metaobject_id,
            product_id=purchase.product_id,
            index=len(created),
        )
        created.append(metaobject_id)
    return created


def existing_references(metafield: Optional[Dict[str, Any]]) -> List[str]:
    """
    IDs already stored in a list-reference metafield.

    Reads the resolved references and the raw JSON value, since either may
    be incomplete on its own.
    """
    if not metafield:
        return []

    ids: List[str] = []
    edges = (metafield.get("references") or {}).get("edges") or []
    for edge in edges:
        node_id = (edge.get("node") or {}).get("id")
        if node_id:
            ids.append(node_id)

    raw_value = metafield.get("value")
    if raw_value:
        try:
            parsed = json.loads(raw_value)
        except ValueError:
            parsed = []
        if isinstance(parsed, list):
            ids.extend(item for item in parsed if isinstance(item, str))

    return merge_unique(ids)


def link_registrations(
    client: ShopifyClient,
    config: ShopifyConfig,
    customer_id: str,
    new_ids: List[str],
    logger: StructuredLogger,
) -> int:
    """
    Read-merge-write the customer's warranty reference list.

    Concurrent upserts for the same customer can overwrite each other's
    additions.

    Returns:
        Number of references stored after the write
    """
    data = client.graphql(
        "metafield_read",
        Q_CUSTOMER_METAFIELD,
        {"id": customer_id, "ns": config.metafield_namespace, "key": config.metafield_key},
    )
    current = existing_references((data.get("customer") or {}).get("metafield"))
    merged = merge_unique(current, new_ids)
    if len(merged) > MAX_REFERENCES:
        logger.warning("Reference list exceeds the readable page size", count=len(merged), limit=MAX_REFERENCES)

    result = client.graphql(
        "metafields_set",
        M_METAFIELDS_SET,
        {
            "metafields": [
                {
                    "ownerId": customer_id,
                    "namespace": config.metafield_namespace,
                    "key": config.metafield_key,
                    "type": METAFIELD_TYPE,
                    "value": json.dumps(merged),
                }
            ]
        },
    )
    client.check_user_errors("metafields_set", result.get("metafieldsSet"))
    logger.info("Linked warranty registrations", customer_id=customer_id, previous=len(current), linked=len(merged))
    return len(merged)


def upsert_customer(
    client: ShopifyClient,
    config: ShopifyConfig,
    profile: CustomerProfile,
    purchases: List[PurchaseInput],
    logger: Optional[StructuredLogger] = None,
) -> UpsertResponse:
    """
    Ensure the customer exists with the membership tag and register purchases.

    Args:
        client: Shopify client
        config: Settings for this invocation
        profile: Email and optional profile fields
        purchases: Valid purchases, in request order
        logger: Invocation logger (optional)

    Returns:
        UpsertResponse with the customer ID and what was created and linked

    Raises:
        UpstreamError: From whichever step failed; nothing after it runs
    """
    logger = logger or get_logger(__name__)

    customer_id, reported_tags, applied_tag = resolve_customer(client, config, profile, logger)
    tag_repaired = ensure_membership_tag(client, customer_id, reported_tags, config.membership_tag, logger)

    field_keys: Dict[str, str] = {}
    created: List[str] = []
    if purchases:
        field_keys = resolve_field_keys(client, config.metaobject_type, logger)
        created = create_warranty_registrations(client, config, customer_id, purchases, field_keys, logger)

    linked = 0
    if created:
        linked = link_registrations(client, config, customer_id, created, logger)

    return UpsertResponse(
        ok=True,
        customerId=customer_id,
        created=created,
        createdMetaobjectsCount=len(created),
        metafieldLinkedCount=linked,
        appliedTag=applied_tag,
        tagRepaired=tag_repaired,
        fieldKeys=field_keys,
    )


def handle_upsert(event: ApiGatewayEvent, config: ShopifyConfig, logger: StructuredLogger) -> Dict[str, Any]:
    """
    Route one upsert request. CORS headers are set on every response.

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
        body = get_body(event)
        email = require_email(body.get("customer"), body, keys=UPSERT_EMAIL_KEYS + EMAIL_KEYS)
        profile = parse_customer_profile(body, email)
        purchases = parse_purchases(body.get("purchases"), config.months_to_expire)
        logger.info("Upserting customer", purchases=len(purchases), **profile_to_dict(profile))

        client = _make_client(config)
        return json_response(200, upsert_customer(client, config, profile, purchases, logger), headers)

    except Exception as e:
        return error_response(e, headers, logger, "Upsert failed")


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Lambda entry point for the upsert endpoint.

    Args:
        event: API Gateway proxy event
        context: Lambda context (unused)

    Returns:
        API Gateway proxy response
    """
    logger = get_logger(__name__, get_correlation_id(event))
    method = get_method(event)
    logger.info("upsert handler invoked", method=method)

    if method == "OPTIONS":
        return preflight_response(cors_headers(cors_origin(), ALLOWED_METHODS))

    try:
        config = load_config()
    except Exception as e:
        return error_response(e, cors_headers(cors_origin(), ALLOWED_METHODS), logger, "Could not load configuration")

    return handle_upsert(event, config, logger)
