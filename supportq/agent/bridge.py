"""
Bridge between stored user state and the agent/executor.

Resolves per-user LLM options and Shopify credentials from the database
so callers only pass a user id.
"""

from __future__ import annotations

from typing import Any

import httpx

from supportq.agent.proposer import ActionProposer, ProposalBatch
from supportq.contracts.envelope import Result
from supportq.infrastructure import settings as env
from supportq.llm.gemini import LlmOptions
from supportq.shopify.executor import ShopifyAuth, run_shopify_action
from supportq.storage.settings_repository import SettingsRepository
from supportq.storage.token_repository import SHOPIFY_PROVIDERS, TokenRepository


def resolve_llm_options(user_id: str, settings_repo: SettingsRepository | None = None) -> LlmOptions:
    """LLM provider/model/base URL from settings plus the decrypted API key."""
    repo = settings_repo or SettingsRepository()
    user_settings = repo.get(user_id)
    if user_settings is None:
        return LlmOptions()
    return LlmOptions(
        provider=user_settings.llm_provider or "",
        model=user_settings.llm_model or "",
        base_url=user_settings.llm_base_url or "",
        api_key=repo.get_llm_api_key(user_id),
    )


def propose_for_user(user_id: str, content: str) -> ProposalBatch:
    """Propose actions for content using the user's LLM settings."""
    return ActionProposer(resolve_llm_options(user_id)).propose(content)


def load_shopify_auth(user_id: str) -> ShopifyAuth | Result:
    """
    Shopify credentials for the user, or a failure Result.

    Shop precedence: settings.shop_domain, then the token's meta["shop"],
    then SHOPIFY_SHOP.
    """
    stored = TokenRepository().get(user_id, SHOPIFY_PROVIDERS)
    if stored is None:
        return Result.failure("shopify_auth_missing", "Missing Shopify token")

    user_settings = SettingsRepository().get(user_id)
    shop = (
        (user_settings.shop_domain if user_settings else None)
        or stored.meta.get("shop")
        or env.SHOPIFY_SHOP
    )
    if not stored.access_token or not shop:
        return Result.failure("shopify_auth_invalid", "Invalid Shopify auth")
    return ShopifyAuth(shop=shop, access_token=stored.access_token)


def run_action_for_user(
    user_id: str,
    action_type: str,
    payload: dict[str, Any],
    correlation_id: str | None = None,
    client: httpx.Client | None = None,
) -> Result:
    """Execute one action with the user's stored Shopify credentials."""
    auth = load_shopify_auth(user_id)
    if isinstance(auth, Result):
        return auth
    return run_shopify_action(action_type, payload, auth, correlation_id=correlation_id, client=client)
