"""
HTTP retry/backoff shared by the Gmail client and the Shopify executor.

fetch_with_retry() retries 429 and 5xx responses and transport errors.
The last response is returned as-is (callers inspect status codes); the
last transport error is re-raised.

Wait before retry N (0-based):
    Retry-After seconds if the server sent one, else
    backoff * 2**N + uniform(0, 0.25)

Mutating requests carry an X-Idempotency-Key that stays the same across
retries of one call, so the remote side can drop duplicates.
"""

from __future__ import annotations

import random
import time
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from functools import lru_cache
from typing import Any

import httpx

from supportq.config import (
    HTTP_BACKOFF_SECONDS,
    HTTP_JITTER_SECONDS,
    HTTP_MAX_RETRY_AFTER_SECONDS,
    HTTP_RETRIES,
    HTTP_TIMEOUT_SECONDS,
)
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter

logger = get_logger(__name__)

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
IDEMPOTENCY_HEADER = "X-Idempotency-Key"


@dataclass(frozen=True)
class RetryInfo:
    """Passed to on_retry before each backoff sleep."""

    attempt: int
    wait_seconds: float
    reason: str  # "response" or "error"
    status: int | None = None


@lru_cache(maxsize=1)
def get_http_client() -> httpx.Client:
    """Process-wide httpx client (connection pooling across calls)."""
    return httpx.Client(follow_redirects=False)


def _sleep(seconds: float) -> None:
    time.sleep(seconds)


def is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


def parse_retry_after(value: str | None) -> float | None:
    """
    Parse a Retry-After header (delta-seconds or HTTP-date).

    Returns None when absent, unparseable or not in the future.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=UTC)
        seconds = (when - datetime.now(UTC)).total_seconds()
    if seconds <= 0:
        return None
    return min(seconds, HTTP_MAX_RETRY_AFTER_SECONDS)


def compute_backoff(backoff: float, attempt: int) -> float:
    return backoff * (2**attempt) + random.uniform(0, HTTP_JITTER_SECONDS)


def _with_idempotency_key(
    method: str, headers: Mapping[str, str] | None, idempotency_key: str | None
) -> dict[str, str]:
    out = dict(headers or {})
    if method in MUTATING_METHODS and not any(
        key.lower() == IDEMPOTENCY_HEADER.lower() for key in out
    ):
        out[IDEMPOTENCY_HEADER] = idempotency_key or str(uuid.uuid4())
    return out


def _log_retry(correlation_id: str | None, info: RetryInfo, url: str) -> None:
    counter("http.retry")
    logger.warning(
        "http.retry cid=%s attempt=%d wait=%.3fs reason=%s status=%s url=%s",
        correlation_id or "-",
        info.attempt,
        info.wait_seconds,
        info.reason,
        info.status if info.status is not None else "-",
        url.split("?", 1)[0],
    )


def fetch_with_retry(
    url: str,
    method: str = "GET",
    *,
    headers: Mapping[str, str] | None = None,
    params: Mapping[str, Any] | None = None,
    json: Any = None,
    data: Mapping[str, Any] | None = None,
    content: str | bytes | None = None,
    timeout: float = HTTP_TIMEOUT_SECONDS,
    retries: int = HTTP_RETRIES,
    backoff: float = HTTP_BACKOFF_SECONDS,
    idempotency_key: str | None = None,
    on_retry: Callable[[RetryInfo], None] | None = None,
    correlation_id: str | None = None,
    client: httpx.Client | None = None,
) -> httpx.Response:
    """
    Send an HTTP request, retrying transient failures.

    Args:
        retries: Extra attempts after the first (total = retries + 1)
        backoff: Base delay in seconds for exponential backoff
        idempotency_key: Reused for every attempt; generated when omitted
            on mutating methods
        on_retry: Called with RetryInfo before each sleep; its errors are
            logged and never stop the retry loop

    Returns:
        The final httpx.Response (possibly a non-2xx)

    Raises:
        httpx.TransportError: If the final attempt fails at the transport level

    Side Effects:
        - Sleeps between attempts
        - Logs and counts each retry ("http.retry")
    """
    method = method.upper()
    request_headers = _with_idempotency_key(method, headers, idempotency_key)
    http = client or get_http_client()

    attempt = 0
    while True:
        try:
            response = http.request(
                method,
                url,
                headers=request_headers,
                params=params,
                json=json,
                data=data,
                content=content,
                timeout=timeout,
            )
        except httpx.TransportError as exc:
            if attempt >= retries:
                raise
            info = RetryInfo(attempt + 1, compute_backoff(backoff, attempt), "error")
            logger.debug("Transport error on %s %s: %s", method, url, exc)
        else:
            if attempt >= retries or not is_retryable_status(response.status_code):
                return response
            retry_after = parse_retry_after(response.headers.get("Retry-After"))
            wait = retry_after if retry_after is not None else compute_backoff(backoff, attempt)
            info = RetryInfo(attempt + 1, wait, "response", response.status_code)
            response.close()

        _log_retry(correlation_id, info, url)
        if on_retry is not None:
            try:
                on_retry(info)
            except Exception:
                logger.warning("on_retry callback failed", exc_info=True)
        _sleep(info.wait_seconds)
        attempt += 1


def safe_json(response: httpx.Response) -> Any:
    """Response body as JSON, or as text when it isn't JSON."""
    try:
        return response.json()
    except ValueError:
        return response.text


def to_obj(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    return {"value": value}
