"""
User settings endpoints.

Secrets never leave the server: the LLM API key and OAuth tokens are
reported only as has_* flags.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from supportq.api.middleware.user_auth import get_current_user_id
from supportq.infrastructure import settings as env
from supportq.observability.logging import get_logger
from supportq.shopify.helpers import is_valid_shop_domain
from supportq.storage.models import UserSettings, to_iso
from supportq.storage.settings_repository import SettingsRepository
from supportq.storage.token_repository import GMAIL_PROVIDERS, SHOPIFY_PROVIDERS, TokenRepository
from supportq.utils.error_sanitizer import get_safe_error_detail

router = APIRouter(prefix="/api/settings", tags=["settings"])
logger = get_logger(__name__)

TEXT_FIELDS = ("shop_domain", "gmail_label_query", "llm_provider", "llm_model", "llm_base_url")


class SettingsUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    shop_domain: str | None = Field(default=None, max_length=255)
    gmail_label_query: str | None = Field(default=None, max_length=500)
    llm_provider: str | None = Field(default=None, max_length=50)
    llm_model: str | None = Field(default=None, max_length=100)
    llm_base_url: str | None = Field(default=None, max_length=500)
    llm_api_key: str | None = Field(default=None, max_length=500)
    gmail_auto_pull_enabled: bool | None = None
    gmail_polling_interval_sec: int | None = Field(default=None, ge=60, le=86400)

    @field_validator("shop_domain")
    @classmethod
    def validate_shop(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return v
        v = v.strip().lower()
        if not is_valid_shop_domain(v):
            raise ValueError("shop_domain must be a *.myshopify.com domain")
        return v


def _settings_body(user_id: str, row: UserSettings | None) -> dict[str, Any]:
    tokens = TokenRepository()
    row = row or UserSettings(user_id=user_id)
    return {
        "shop_domain": row.shop_domain or env.SHOPIFY_SHOP,
        "gmail_label_query": row.gmail_label_query or env.GMAIL_LABEL_QUERY,
        "llm_provider": row.llm_provider or "",
        "llm_model": row.llm_model or "",
        "llm_base_url": row.llm_base_url or "",
        "has_llm_api_key": bool(row.encrypted_llm_api_key),
        "has_gmail_token": tokens.has_token(user_id, GMAIL_PROVIDERS),
        "has_shopify_token": tokens.has_token(user_id, SHOPIFY_PROVIDERS),
        "gmail_auto_pull_enabled": row.gmail_auto_pull_enabled,
        "gmail_polling_interval_sec": row.gmail_polling_interval_sec,
        "last_poll_at": to_iso(row.last_poll_at),
        "last_poll_fetched": row.last_poll_fetched,
        "last_poll_proposed": row.last_poll_proposed,
        "last_poll_error": row.last_poll_error,
        "gmail_last_history_id": row.gmail_last_history_id,
    }


@router.get("")
async def get_settings(user_id: str = Depends(get_current_user_id)) -> dict[str, Any]:
    return _settings_body(user_id, SettingsRepository().get(user_id))


@router.post("")
async def update_settings(
    request: SettingsUpdateRequest, user_id: str = Depends(get_current_user_id)
) -> dict[str, Any]:
    """
    Upsert settings for the current user.

    llm_api_key: a non-empty value replaces the stored key, "" clears it.

    Side Effects:
        - Upserts user_settings (API key encrypted)
    """
    fields = request.model_dump(exclude_unset=True)
    api_key = fields.pop("llm_api_key", None)
    for name in TEXT_FIELDS:
        if isinstance(fields.get(name), str):
            fields[name] = fields[name].strip() or None
    # Text fields may be cleared with null; flags and intervals may not
    fields = {k: v for k, v in fields.items() if v is not None or k in TEXT_FIELDS}

    try:
        row = SettingsRepository().upsert(
            user_id, fields, llm_api_key=api_key.strip() if api_key is not None else None
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=get_safe_error_detail(e, 400)) from None

    return {"ok": True, "settings": _settings_body(user_id, row)}
