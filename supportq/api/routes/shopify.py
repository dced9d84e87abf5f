"""Shopify OAuth install endpoints"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse

from supportq.api.middleware.user_auth import get_current_user_id
from supportq.api.oauth_state import (
    clear_state_cookie,
    new_state,
    read_state_cookie,
    set_state_cookie,
)
from supportq.infrastructure import settings as env
from supportq.shopify.oauth import STATE_COOKIE, ShopifyOAuthError, build_install_url, complete_install
from supportq.utils.error_sanitizer import sanitize_error_message

router = APIRouter(prefix="/api/shopify", tags=["shopify"])

SETTINGS_PAGE = "/settings"


@router.get("/install")
async def install(
    shop: str | None = Query(None, max_length=255),
    user_id: str = Depends(get_current_user_id),
) -> RedirectResponse:
    """Redirect the merchant to Shopify's app authorization page."""
    state = new_state()
    try:
        url = build_install_url((shop or env.SHOPIFY_SHOP).strip().lower(), state)
    except ShopifyOAuthError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message) from None
    response = RedirectResponse(url, status_code=302)
    set_state_cookie(response, STATE_COOKIE, state, user_id)
    return response


@router.get("/callback")
def callback(request: Request) -> RedirectResponse:
    """
    Finish the install: verify state and HMAC, store the access token.

    Side Effects:
        - Exchanges the code with the shop and stores the token encrypted
    """
    query = dict(request.query_params)
    cookie_state, user_id = read_state_cookie(request, STATE_COOKIE, query.get("state"))
    try:
        complete_install(user_id or "", query, cookie_state if user_id else None)
    except ShopifyOAuthError as e:
        raise HTTPException(
            status_code=e.status_code, detail=sanitize_error_message(e.message, e.status_code)
        ) from None

    response = RedirectResponse(SETTINGS_PAGE, status_code=302)
    clear_state_cookie(response, STATE_COOKIE)
    return response
