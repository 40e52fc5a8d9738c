"""
Input validation utilities.

Extracts emails, customer profile fields and purchase entries from the
loosely shaped payloads that storefront forms send.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .config import DEFAULT_MONTHS_TO_EXPIRE
from .errors import ValidationError
from .warranty import warranty_dates

# Keys tried first, in order, before the generic "*email*" scan
EMAIL_KEYS = (
    "email",
    "Email",
    "e-mail",
    "mail",
    "correo",
    "correo_electronico",
    "customer[email]",
    "fields[email]",
    "contact[email]",
)

UPSERT_EMAIL_KEYS = ("email", "mail", "customer_email")

TRUE_VALUES = {"true", "1", "yes", "on", "si", "sí"}

# Form placeholders that count as "not filled in" for purchase fields
UNSET_VALUES = {"", "0"}


@dataclass(frozen=True)
class PurchaseInput:
    """One purchase to register; consumed once per request."""

    product_id: str
    purchase_month: int
    purchase_year: int


@dataclass
class CustomerProfile:
    """Optional customer attributes supplied alongside the email."""

    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    note: Optional[str] = None
    accepts_marketing: bool = False
    tags: List[str] = field(default_factory=list)


def _clean(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def extract_email(source: Optional[Mapping[str, Any]], keys: Iterable[str] = EMAIL_KEYS) -> str:
    """
    Find an email in a query string or body mapping.

    Lookup order: the explicit alias keys, a nested `customer.email`, then
    any key whose name contains "email" (case-insensitive).

    Args:
        source: Query parameters or parsed body, may be None
        keys: Alias keys tried before the generic scan

    Returns:
        Trimmed email, or empty string if none found
    """
    if not source or not isinstance(source, Mapping):
        return ""

    for key in keys:
        value = _clean(source.get(key))
        if value:
            return value

    customer = source.get("customer")
    if isinstance(customer, Mapping):
        value = _clean(customer.get("email"))
        if value:
            return value

    for key, raw in source.items():
        if "email" in str(key).lower():
            value = _clean(raw)
            if value:
                return value

    return ""


def require_email(*sources: Optional[Mapping[str, Any]], keys: Iterable[str] = EMAIL_KEYS) -> str:
    """
    Extract an email from the first source that has one.

    Raises:
        ValidationError: If no source carries a non-blank email
    """
    key_list = tuple(keys)
    for source in sources:
        email = extract_email(source, key_list)
        if email:
            return email
    raise ValidationError(
        "Missing email parameter",
        {"hint": 'Use ?email=... or send JSON {"email": "..."}'},
    )


def parse_bool(value: Any) -> bool:
    """Interpret checkbox-style values ("on", "1", "true") as booleans."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in TRUE_VALUES


def parse_tags(value: Any) -> List[str]:
    """
    Normalize tags given as a list or a comma-separated string.

    Examples:
        >>> parse_tags("vip, newsletter,,vip")
        ['vip', 'newsletter']
    """
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else str(value).split(",")
    tags: List[str] = []
    for item in items:
        tag = _clean(item)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


def merge_unique(*groups: Iterable[str]) -> List[str]:
    """Union of string groups (tags, IDs), keeping first-seen order."""
    merged: List[str] = []
    for group in groups:
        for tag in group:
            if tag and tag not in merged:
                merged.append(tag)
    return merged


def has_tag(tags: Iterable[str], tag: str) -> bool:
    """Case-insensitive tag membership, matching how Shopify compares tags."""
    wanted = tag.strip().lower()
    return any(str(t).strip().lower() == wanted for t in tags)


def _first(mappings: Iterable[Mapping[str, Any]], *keys: str) -> Optional[str]:
    for mapping in mappings:
        for key in keys:
            value = _clean(mapping.get(key))
            if value:
                return value
    return None


def parse_customer_profile(body: Mapping[str, Any], email: str) -> CustomerProfile:
    """
    Collect optional profile fields from `body.customer` or the body itself.

    Args:
        body: Parsed upsert request body
        email: Email already extracted from the request

    Returns:
        CustomerProfile with blanks left as None
    """
    nested = body.get("customer")
    sources: List[Mapping[str, Any]] = [nested] if isinstance(nested, Mapping) else []
    sources.append(body)

    marketing: Any = None
    tags: Any = None
    for source in sources:
        for key in ("accepts_marketing", "acceptsMarketing", "marketing"):
            if marketing is None and key in source:
                marketing = source[key]
        if tags is None and "tags" in source:
            tags = source["tags"]

    return CustomerProfile(
        email=email,
        first_name=_first(sources, "first_name", "firstName"),
        last_name=_first(sources, "last_name", "lastName"),
        phone=_first(sources, "phone", "telefono"),
        note=_first(sources, "note", "nota"),
        accepts_marketing=parse_bool(marketing),
        tags=parse_tags(tags),
    )


def _parse_int(value: Any, name: str, index: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(
            f"{name} must be a number",
            {"field": name, "index": index, "value": _clean(value)},
        )


def parse_purchases(value: Any, months_to_expire: int = DEFAULT_MONTHS_TO_EXPIRE) -> List[PurchaseInput]:
    """
    Turn the raw `purchases` list into PurchaseInput entries.

    Entries missing product_id, purchase_month or purchase_year (blank or 0)
    are skipped. Warranty dates are computed here so an entry whose expiry
    would fall outside the calendar is rejected before anything is written.

    Args:
        value: Raw `purchases` value from the request body
        months_to_expire: Warranty validity window in months

    Returns:
        Valid purchases in request order

    Raises:
        ValidationError: If a month or year is not numeric, month is not 1-12,
            or the warranty dates are out of range
    """
    if not isinstance(value, list):
        return []

    purchases: List[PurchaseInput] = []
    for index, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            continue
        product_id = _clean(entry.get("product_id"))
        raw_month = _clean(entry.get("purchase_month"))
        raw_year = _clean(entry.get("purchase_year"))
        if product_id in UNSET_VALUES or raw_month in UNSET_VALUES or raw_year in UNSET_VALUES:
            continue

        month = _parse_int(raw_month, "purchase_month", index)
        year = _parse_int(raw_year, "purchase_year", index)
        if not 1 <= month <= 12:
            raise ValidationError(
                "purchase_month must be between 1 and 12",
                {"field": "purchase_month", "index": index, "value": raw_month},
            )
        try:
            warranty_dates(month, year, months_to_expire)
        except (ValueError, OverflowError):
            raise ValidationError(
                "purchase_year is out of range",
                {"field": "purchase_year", "index": index, "value": raw_year},
            )
        purchases.append(PurchaseInput(product_id, month, year))

    return purchases


def profile_to_dict(profile: CustomerProfile) -> Dict[str, Any]:
    """Profile fields for logging, without the empty ones."""
    data = {
        "email": profile.email,
        "firstName": profile.first_name,
        "lastName": profile.last_name,
        "hasPhone": bool(profile.phone),
        "acceptsMarketing": profile.accepts_marketing,
        "tags": profile.tags or None,
    }
    return {k: v for k, v in data.items() if v is not None}
