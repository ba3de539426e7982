"""
Product category inference for commission rates.

Classifies a product snapshot into mobile / tablet / laptop / accessories
when the product does not carry an explicit category. Rules are checked in
a fixed order and the first match wins; rates differ per category, so the
order must not change.
"""
from typing import Any, Mapping, Optional

from cashmitra.db.models.commission_settings import ProductCategory

KNOWN_CATEGORIES = frozenset(c.value for c in ProductCategory)


def _lower(value: Any) -> str:
    return str(value).lower() if value else ""


def _from_super_category(super_category: Mapping[str, Any]) -> Optional[str]:
    name = _lower(super_category.get("name"))
    slug = _lower(super_category.get("slug"))

    if "mobile" in name or slug == "mobile":
        return ProductCategory.MOBILE.value
    if "tablet" in name or slug == "tablet":
        return ProductCategory.TABLET.value
    if "laptop" in name or slug == "laptops":
        return ProductCategory.LAPTOP.value
    return None


def _from_category_name(category_name: str) -> Optional[str]:
    if "mobile" in category_name or "phone" in category_name:
        return ProductCategory.MOBILE.value
    if "tablet" in category_name or "ipad" in category_name:
        return ProductCategory.TABLET.value
    if "laptop" in category_name or "computer" in category_name:
        return ProductCategory.LAPTOP.value
    return None


def _from_name_and_brand(text: str) -> Optional[str]:
    if any(word in text for word in ("iphone", "samsung", "mobile", "phone")):
        return ProductCategory.MOBILE.value
    # "tab" also catches "tablet"; kept as a plain substring match
    if any(word in text for word in ("ipad", "tablet", "tab")):
        return ProductCategory.TABLET.value
    if any(word in text for word in ("laptop", "macbook", "computer")):
        return ProductCategory.LAPTOP.value
    return None


def get_category_from_product(product_data: Optional[Mapping[str, Any]]) -> str:
    """
    Infer the commission category of a product.

    Priority:
        1. explicit ``category`` when it is a known category
        2. ``category_id.super_category`` name / slug
        3. ``category_id.name``
        4. keywords in ``name`` + ``brand``
        5. ``accessories``
    """
    if not product_data:
        return ProductCategory.ACCESSORIES.value

    explicit = _lower(product_data.get("category"))
    if explicit in KNOWN_CATEGORIES:
        return explicit

    # An unpopulated reference (bare id) carries no category information
    category_ref = product_data.get("category_id")
    if not isinstance(category_ref, Mapping):
        category_ref = {}

    super_category = category_ref.get("super_category")
    if isinstance(super_category, Mapping):
        matched = _from_super_category(super_category)
        if matched:
            return matched

    category_name = _lower(category_ref.get("name"))
    if category_name:
        matched = _from_category_name(category_name)
        if matched:
            return matched

    if product_data.get("name") or product_data.get("brand"):
        combined = f"{_lower(product_data.get('name'))} {_lower(product_data.get('brand'))}"
        matched = _from_name_and_brand(combined)
        if matched:
            return matched

    return ProductCategory.ACCESSORIES.value
