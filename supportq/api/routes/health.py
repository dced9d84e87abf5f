"""Health check endpoints.

- /health - Service health including credential presence
- /health/db - Database connection pool health
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter

from supportq.config import APP_VERSION
from supportq.infrastructure import settings
from supportq.observability.telemetry import snapshot

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Service status and configuration readiness (no external calls)."""
    return {
        "ok": True,
        "status": "healthy",
        "service": "SupportQ API",
        "version": APP_VERSION,
        "timestamp": datetime.now(UTC).isoformat(),
        "config": {
            "google_oauth": bool(settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET),
            "shopify_oauth": bool(settings.SHOPIFY_API_KEY and settings.SHOPIFY_API_SECRET),
            "llm": bool(settings.GOOGLE_API_KEY or settings.GOOGLE_CLOUD_PROJECT),
            "cron": bool(settings.CRON_SECRET),
        },
    }


@router.get("/health/db")
async def database_health() -> dict[str, Any]:
    """
    Connection pool health metrics.

    Alerts if pool usage exceeds 80%.
    """
    from supportq.infrastructure.database import get_pool_stats

    stats = get_pool_stats()
    usage_percent = stats["usage_percent"]

    return {
        "status": "degraded" if usage_percent > 80 else "healthy",
        "pool": stats,
        "warning": "Pool usage high" if usage_percent > 80 else None,
        "counters": snapshot()["counters"],
    }
