"""Scheduled Gmail poll trigger for external cron"""

from __future__ import annotations

import secrets
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Query

from supportq.config import POLL_DEFAULT_MAX_RESULTS, POLL_MAX_RESULTS_CAP
from supportq.gmail.scheduler import poll_all_users
from supportq.infrastructure import settings
from supportq.observability.logging import get_logger

router = APIRouter(prefix="/api/cron", tags=["cron"])
logger = get_logger(__name__)


def _authorized(provided: str | None) -> bool:
    expected = settings.CRON_SECRET
    if not expected or not provided:
        return False
    return secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


@router.get("/gmail-poll")
def cron_gmail_poll(
    x_cron_secret: str | None = Header(None),
    secret: str | None = Query(None),
    max_results: int = Query(
        POLL_DEFAULT_MAX_RESULTS, alias="maxResults", ge=1, le=POLL_MAX_RESULTS_CAP
    ),
) -> dict[str, Any]:
    """
    Poll every user with auto-pull enabled.

    Skips the per-user throttle but keeps the per-user lock.

    Side Effects:
        - Gmail API calls, email/proposal inserts, poll bookkeeping per user
    """
    if not _authorized(x_cron_secret or secret):
        raise HTTPException(status_code=401, detail="Unauthorized")

    results = poll_all_users(max_results)
    logger.info("Cron poll processed %d users", len(results))
    return {"processed_users": len(results), "results": results}
