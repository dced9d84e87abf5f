"""Gmail OAuth2

- Authorization URL and code exchange use google-auth-oauthlib's web Flow
- Access-token refresh is a plain token-endpoint POST through
  fetch_with_retry, so it shares the retry/backoff policy of every other
  Gmail call
- Tokens are persisted encrypted via TokenRepository (provider "google")
"""

from __future__ import annotations

import os
from datetime import timedelta
from typing import Any

import httpx
from google_auth_oauthlib.flow import Flow

from supportq.config import (
    GMAIL_AUTH_URL,
    GMAIL_REFRESH_BACKOFF,
    GMAIL_REFRESH_RETRIES,
    GMAIL_REFRESH_TIMEOUT,
    GMAIL_TOKEN_URL,
)
from supportq.infrastructure import settings
from supportq.infrastructure.http import fetch_with_retry, safe_json
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter, log_event
from supportq.storage.models import to_iso, utc_now
from supportq.storage.token_repository import TokenRepository
from supportq.utils.redaction import redact

logger = get_logger(__name__)

# Google may return a superset of the requested scopes (include_granted_scopes)
os.environ.setdefault("OAUTHLIB_RELAX_TOKEN_SCOPE", "1")

GMAIL_PROVIDER = "google"


class GmailOAuthError(Exception):
    """Raised when the OAuth client is misconfigured or the code exchange fails"""


def _scopes() -> list[str]:
    return [scope for scope in settings.GOOGLE_SCOPES.split() if scope]


def build_flow(state: str | None = None) -> Flow:
    """
    Web-server OAuth flow for the configured Google client

    Raises:
        GmailOAuthError: If GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are unset
    """
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        raise GmailOAuthError("Google OAuth client is not configured")

    client_config = {
        "web": {
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "auth_uri": GMAIL_AUTH_URL,
            "token_uri": GMAIL_TOKEN_URL,
            "redirect_uris": [settings.GOOGLE_REDIRECT_URI],
        }
    }
    return Flow.from_client_config(
        client_config,
        scopes=_scopes(),
        redirect_uri=settings.GOOGLE_REDIRECT_URI,
        state=state,
        autogenerate_code_verifier=False,
    )


def build_authorization_url(state: str) -> str:
    """Consent-screen URL requesting offline access (so a refresh token is issued)."""
    url, _ = build_flow(state=state).authorization_url(
        access_type="offline",
        prompt="consent",
        include_granted_scopes="true",
    )
    return url


def exchange_code(
    user_id: str, code: str, state: str, tokens: TokenRepository | None = None
) -> dict[str, Any]:
    """
    Exchange an authorization code and store the token encrypted

    Returns:
        The stored meta (scope, token_type, expires_in)

    Raises:
        GmailOAuthError: If the token endpoint rejects the code

    Side Effects:
        - Upserts the user's "google" row in tokens
    """
    flow = build_flow(state=state)
    try:
        token = dict(flow.fetch_token(code=code))
    except Exception as e:
        # oauthlib raises a zoo of exception types for a rejected code
        counter("gmail.oauth.exchange_failed")
        logger.warning("Gmail code exchange failed for %s: %s", redact(user_id), type(e).__name__)
        raise GmailOAuthError("Token exchange failed") from e

    meta = {
        "scope": token.get("scope"),
        "token_type": token.get("token_type"),
        "expires_in": token.get("expires_in"),
    }
    (tokens or TokenRepository()).store(user_id, GMAIL_PROVIDER, token, meta)
    log_event("gmail.oauth.connected", user=redact(user_id))
    return meta


def refresh_access_token(
    refresh_token: str, client: httpx.Client | None = None
) -> dict[str, Any] | None:
    """
    Trade a refresh token for a new access token

    Returns:
        Token endpoint response (access_token, expires_in, ...) with an
        added expires_at, or None if the refresh was rejected

    Side Effects:
        - POSTs to the Google token endpoint (with retry)
    """
    if not settings.GOOGLE_CLIENT_ID or not settings.GOOGLE_CLIENT_SECRET:
        logger.warning("Cannot refresh Gmail token: OAuth client not configured")
        return None

    response = fetch_with_retry(
        GMAIL_TOKEN_URL,
        "POST",
        data={
            "grant_type": "refresh_token",
            "client_id": settings.GOOGLE_CLIENT_ID,
            "client_secret": settings.GOOGLE_CLIENT_SECRET,
            "refresh_token": refresh_token,
        },
        timeout=GMAIL_REFRESH_TIMEOUT,
        retries=GMAIL_REFRESH_RETRIES,
        backoff=GMAIL_REFRESH_BACKOFF,
        client=client,
    )
    body = safe_json(response)
    if not response.is_success or not isinstance(body, dict) or not body.get("access_token"):
        counter("gmail.token_refresh_failed")
        logger.warning("Gmail token refresh failed with status %d", response.status_code)
        return None

    expires_in = body.get("expires_in")
    if isinstance(expires_in, int | float):
        body["expires_at"] = to_iso(utc_now() + timedelta(seconds=expires_in))
    counter("gmail.token_refreshed")
    return body
