"""Shopify OAuth install flow

install: redirect the merchant to https://{shop}/admin/oauth/authorize
callback: verify state and HMAC, exchange the code for an offline access
token, store it encrypted (provider "shopify", meta {shop, scope})
"""

from __future__ import annotations

import secrets
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlencode

import httpx

from supportq.infrastructure import settings
from supportq.infrastructure.http import fetch_with_retry, safe_json
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import log_event
from supportq.shopify.helpers import is_valid_shop_domain, verify_hmac
from supportq.storage.token_repository import TokenRepository
from supportq.utils.redaction import redact

logger = get_logger(__name__)

SHOPIFY_PROVIDER = "shopify"
STATE_COOKIE = "shopify_oauth_state"


class ShopifyOAuthError(Exception):
    """OAuth failure with the HTTP status the callback route should return."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def build_install_url(shop: str, state: str) -> str:
    """
    Raises:
        ShopifyOAuthError: 400 for an invalid shop or missing SHOPIFY_API_KEY
    """
    if not is_valid_shop_domain(shop) or not settings.SHOPIFY_API_KEY:
        raise ShopifyOAuthError("Missing shop or SHOPIFY_API_KEY")
    query = urlencode(
        {
            "client_id": settings.SHOPIFY_API_KEY,
            "scope": settings.SHOPIFY_SCOPES,
            "redirect_uri": settings.SHOPIFY_REDIRECT_URI,
            "state": state,
        }
    )
    return f"https://{shop}/admin/oauth/authorize?{query}"


def complete_install(
    user_id: str,
    query: Mapping[str, str],
    cookie_state: str | None,
    tokens: TokenRepository | None = None,
    client: httpx.Client | None = None,
) -> dict[str, Any]:
    """
    Validate the OAuth redirect and store the merchant's access token

    Args:
        query: All query parameters of the redirect (needed for the HMAC)
        cookie_state: Value of the state cookie set by the install route

    Returns:
        Stored meta {shop, scope}

    Raises:
        ShopifyOAuthError: 400 for bad parameters/state/HMAC, 500 when API
            credentials are missing, 502 when the token exchange fails

    Side Effects:
        - Upserts the user's "shopify" row in tokens
    """
    code = query.get("code")
    state = query.get("state")
    shop = query.get("shop") or settings.SHOPIFY_SHOP
    if not code or not state or not shop:
        raise ShopifyOAuthError("Missing required parameters")
    if not cookie_state or not secrets.compare_digest(cookie_state, state):
        raise ShopifyOAuthError("Invalid state")
    if not is_valid_shop_domain(shop):
        raise ShopifyOAuthError("Invalid shop domain")
    if not settings.SHOPIFY_API_KEY or not settings.SHOPIFY_API_SECRET:
        raise ShopifyOAuthError("Missing Shopify API credentials", status_code=500)
    if not verify_hmac(query, settings.SHOPIFY_API_SECRET):
        raise ShopifyOAuthError("Invalid HMAC")

    response = fetch_with_retry(
        f"https://{shop}/admin/oauth/access_token",
        "POST",
        json={
            "client_id": settings.SHOPIFY_API_KEY,
            "client_secret": settings.SHOPIFY_API_SECRET,
            "code": code,
        },
        client=client,
    )
    token = safe_json(response)
    if not response.is_success or not isinstance(token, dict) or not token.get("access_token"):
        logger.warning("Shopify token exchange failed for %s: %d", shop, response.status_code)
        raise ShopifyOAuthError("Token exchange failed", status_code=502)

    meta = {"shop": shop, "scope": token.get("scope")}
    (tokens or TokenRepository()).store(user_id, SHOPIFY_PROVIDER, token, meta)
    log_event("shopify.oauth.connected", user=redact(user_id), shop=shop)
    return meta
