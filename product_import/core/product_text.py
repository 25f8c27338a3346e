"""
Product payload helpers.

Deterministic embedding text, text hashing and image URL extraction for
product JSON payloads.

Dependencies: None (pure domain layer)
System role: Shared product semantics for the worker and enrichers
"""

import hashlib
from typing import Any

SLIDE_IMAGE_FIELDS = [f"slide_image{index}" for index in range(1, 9)]


def hash_text(text: str, source: str | None = None) -> str:
    """
    sha256 hex digest used as the text embedding upsert key.

    Captions hash together with their source so identical captions of
    different slides stay distinct rows.
    """
    payload = f"{source}:{text}" if source else text
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _join_non_empty(parts: list[Any], delimiter: str) -> str:
    return delimiter.join(part for part in (_clean(p) for p in parts) if part)


def _format_categories(categories: Any) -> tuple[str, str]:
    """Return ("a > b > c / d > e", "a / b / c / d / e") for the category list."""
    if not isinstance(categories, list):
        return "", ""
    paths = []
    keywords = []
    for category in categories:
        if not isinstance(category, dict):
            continue
        names = [category.get(f"category{level}_name") for level in (1, 2, 3)]
        path = _join_non_empty(names, " > ")
        if path:
            paths.append(path)
        keywords.extend(_clean(name) for name in names if _clean(name))
    return " / ".join(paths), " / ".join(keywords)


def build_product_embedding_text(product: dict[str, Any]) -> str:
    """
    Build the text embedded for a product.

    One labelled line per populated field, in a fixed order, so the same
    payload always yields the same text (and therefore the same hash).

    Args:
        product: Normalised product payload

    Returns:
        Multi-line text; empty fields are omitted
    """
    region = _join_non_empty([product.get("prefecture_name"), product.get("city_name")], " ")
    categories, category_keywords = _format_categories(product.get("categories"))
    allergens = product.get("allergens")
    allergen_text = " / ".join(_clean(a) for a in allergens if _clean(a)) if isinstance(allergens, list) else ""
    amount = product.get("amount")
    amount_text = f"{amount} JPY" if amount not in (None, "") else ""
    features = _join_non_empty(
        [product.get("bulk_text"), product.get("imperfect_text"), product.get("imperfect_additional_text")],
        " ",
    )

    lines = [
        ("City code", _clean(product.get("city_code"))),
        ("Region", region),
        ("Name", _clean(product.get("name"))),
        ("Catchphrase", _clean(product.get("catchphrase"))),
        ("Description", _clean(product.get("description"))),
        ("Features", features),
        ("Categories", categories),
        ("Category keywords", category_keywords),
        ("Usage", _clean(product.get("application_text"))),
        ("Price", amount_text),
        ("Shipping", _clean(product.get("shipping_text"))),
        ("Allergens", allergen_text),
    ]
    return "\n".join(f"{label}: {value}" for label, value in lines if value)


def product_image_urls(product: dict[str, Any]) -> list[tuple[int, str]]:
    """
    Image URLs of a product as (slide_index, url) pairs.

    slide_index 0 is the main image, 1..8 the slide images; blank entries
    are dropped.
    """
    urls = []
    main = _clean(product.get("image"))
    if main:
        urls.append((0, main))
    for index, field_name in enumerate(SLIDE_IMAGE_FIELDS, start=1):
        url = _clean(product.get(field_name))
        if url:
            urls.append((index, url))
    return urls
