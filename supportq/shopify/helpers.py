"""Pure helpers for Shopify Admin REST calls"""

from __future__ import annotations

import hashlib
import hmac
import os
import re
from collections.abc import Mapping
from typing import Any

from supportq.config import SHOPIFY_DEFAULT_API_VERSION

_SHOP_DOMAIN = re.compile(r"^[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.myshopify\.com$", re.IGNORECASE)

FREE_DISCOUNT = {"value_type": "percentage", "value": "100.0"}


def is_valid_shop_domain(shop: str | None) -> bool:
    """Only *.myshopify.com hosts are accepted (no custom domains)."""
    return bool(shop) and _SHOP_DOMAIN.match(shop) is not None


def shopify_api_base(shop: str, default_version: str = SHOPIFY_DEFAULT_API_VERSION) -> str:
    """Admin API base URL; SHOPIFY_API_VERSION overrides the version at call time."""
    api_version = os.getenv("SHOPIFY_API_VERSION") or default_version
    return f"https://{shop}/admin/api/{api_version}"


def build_replacement_draft_body(order: Mapping[str, Any], note: str) -> dict[str, Any]:
    """
    Draft order body for a free replacement of order.

    Variant lines are re-ordered by variant id; custom lines keep their
    title and price. Every line carries a 100% discount.
    """
    line_items: list[dict[str, Any]] = []
    for item in order.get("line_items") or []:
        if item.get("variant_id"):
            line_items.append(
                {
                    "variant_id": item["variant_id"],
                    "quantity": item.get("quantity") or 1,
                    "applied_discount": dict(FREE_DISCOUNT),
                    "title": item.get("title"),
                }
            )
        else:
            price = item.get("price")
            line_items.append(
                {
                    "title": item.get("title") or "Replacement Item",
                    "quantity": item.get("quantity") or 1,
                    "price": str(price if price is not None else "0.0"),
                    "applied_discount": dict(FREE_DISCOUNT),
                }
            )

    draft: dict[str, Any] = {
        "line_items": line_items,
        "shipping_address": order.get("shipping_address"),
        "billing_address": order.get("billing_address"),
        "note": note,
        "use_customer_default_address": True,
    }
    customer = order.get("customer")
    if customer:
        draft["customer"] = {"id": customer.get("id")}
    return {"draft_order": draft}


def verify_hmac(query: Mapping[str, str], secret: str) -> bool:
    """
    Verify the hmac parameter Shopify appends to OAuth redirects.

    The message is every other query parameter, sorted, joined as k=v&k=v.
    """
    provided = query.get("hmac")
    if not provided or not secret:
        return False
    message = "&".join(
        f"{key}={value}" for key, value in sorted(query.items()) if key not in ("hmac", "signature")
    )
    digest = hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, provided)
