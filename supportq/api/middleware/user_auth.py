"""
User authentication for the SupportQ API.

Single-user by default: every request acts as SUPPORTQ_DEFAULT_USER_ID
("default"). With AUTH_REQUIRED=true, requests must carry a Google OAuth
bearer token, verified against Google's tokeninfo endpoint and cached.
"""

from __future__ import annotations

import os

import httpx
from cachetools import TTLCache
from fastapi import HTTPException, Request, status

from supportq.observability.logging import get_logger
from supportq.utils.redaction import redact

logger = get_logger(__name__)

GOOGLE_TOKEN_INFO_URL = "https://oauth2.googleapis.com/tokeninfo"

_CACHE_MAX_SIZE = 1000
_CACHE_TTL_SECONDS = 600

# token -> Google user id ("sub")
_token_cache: TTLCache[str, str] = TTLCache(maxsize=_CACHE_MAX_SIZE, ttl=_CACHE_TTL_SECONDS)


def auth_required() -> bool:
    return os.getenv("AUTH_REQUIRED", "false").lower() == "true"


def default_user_id() -> str:
    return os.getenv("SUPPORTQ_DEFAULT_USER_ID", "default")


async def verify_google_token(token: str) -> str:
    """
    Verify a Google OAuth token and return the user's Google id.

    Raises:
        HTTPException: 401 for an invalid token or wrong audience, 503 when
            Google cannot be reached
    """
    if token in _token_cache:
        return _token_cache[token]

    async with httpx.AsyncClient() as client:
        try:
            response = await client.get(
                GOOGLE_TOKEN_INFO_URL, params={"access_token": token}, timeout=10.0
            )
        except httpx.RequestError as e:
            logger.warning("Token validation request failed: %s", type(e).__name__)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Authentication service unavailable",
            ) from e

    if response.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    info = response.json()
    expected_client_id = os.getenv("GOOGLE_CLIENT_ID")
    if expected_client_id and info.get("aud") != expected_client_id:
        logger.warning("Token audience mismatch")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token not issued for this application",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = info.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
            headers={"WWW-Authenticate": "Bearer"},
        )

    _token_cache[token] = user_id
    logger.info("Authenticated user %s (cache size: %d)", redact(user_id), len(_token_cache))
    return user_id


def _extract_bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format. Expected: Bearer <token>",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return parts[1]


async def get_current_user_id(request: Request) -> str:
    """
    FastAPI dependency returning the acting user id.

    Usage:
        @router.get("/endpoint")
        async def endpoint(user_id: str = Depends(get_current_user_id)):
            ...
    """
    if not auth_required():
        return default_user_id()
    token = _extract_bearer_token(request.headers.get("Authorization"))
    return await verify_google_token(token)


def clear_token_cache() -> None:
    """Clear the token cache. Useful for testing."""
    _token_cache.clear()
