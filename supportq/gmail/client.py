"""Gmail REST client for one user

Every call goes through fetch_with_retry with Gmail's retry policy. A 401
triggers a single refresh of the stored token (merged, re-encrypted and
saved) followed by one replay of the request. A process-wide circuit
breaker stops hammering Gmail after repeated 429/5xx/transport failures.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import httpx

from supportq.config import (
    GMAIL_API_BASE,
    GMAIL_BACKOFF_SECONDS,
    GMAIL_CIRCUIT_FAIL_MAX,
    GMAIL_CIRCUIT_RESET_SECONDS,
    GMAIL_HISTORY_MAX_PAGES,
    GMAIL_HISTORY_MIN_PAGE_SIZE,
    GMAIL_RETRIES,
)
from supportq.gmail.oauth import refresh_access_token
from supportq.infrastructure.http import fetch_with_retry, is_retryable_status, safe_json
from supportq.infrastructure.retry import CircuitBreaker
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter
from supportq.storage.models import StoredToken
from supportq.storage.token_repository import GMAIL_PROVIDERS, TokenRepository
from supportq.utils.redaction import redact

logger = get_logger(__name__)

GMAIL_CIRCUIT = CircuitBreaker(
    "gmail.api", fail_max=GMAIL_CIRCUIT_FAIL_MAX, reset_timeout=GMAIL_CIRCUIT_RESET_SECONDS
)


class GmailError(Exception):
    """Gmail failure carrying a stable error code for the Result envelope."""

    def __init__(self, code: str, message: str, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status


@dataclass
class HistoryDelta:
    """Message ids added since a history cursor, in first-seen order."""

    message_ids: list[str] = field(default_factory=list)
    max_history_id: int | None = None


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class GmailClient:
    """
    Authenticated Gmail API access for one user.

    Raises:
        GmailError: GMAIL_NO_TOKEN when the user never connected Gmail,
            GMAIL_NO_ACCESS_TOKEN when the stored token has no access token
    """

    def __init__(
        self,
        user_id: str,
        tokens: TokenRepository | None = None,
        http_client: httpx.Client | None = None,
    ):
        self.user_id = user_id
        self.tokens = tokens or TokenRepository()
        self._http = http_client

        stored = self.tokens.get(user_id, GMAIL_PROVIDERS)
        if stored is None:
            raise GmailError("GMAIL_NO_TOKEN", "Gmail is not connected")
        if not stored.access_token:
            raise GmailError("GMAIL_NO_ACCESS_TOKEN", "Stored Gmail token has no access token")
        self._stored: StoredToken = stored
        self._access_token: str = stored.access_token

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> httpx.Response:
        """
        Call a Gmail endpoint relative to users/me

        Raises:
            GmailError: GMAIL_UNAVAILABLE while the circuit is open
            httpx.TransportError: If every attempt failed at the transport level
        """
        if not GMAIL_CIRCUIT.allow_request():
            raise GmailError("GMAIL_UNAVAILABLE", "Gmail API temporarily unavailable")

        try:
            response = self._send(method, path, params=params, json=json)
            if response.status_code == 401 and self._refresh():
                response.close()
                response = self._send(method, path, params=params, json=json)
        except httpx.TransportError:
            GMAIL_CIRCUIT.record_failure()
            raise

        if is_retryable_status(response.status_code):
            GMAIL_CIRCUIT.record_failure()
        else:
            GMAIL_CIRCUIT.record_success()
        return response

    def _send(
        self, method: str, path: str, *, params: dict[str, Any] | None, json: Any
    ) -> httpx.Response:
        return fetch_with_retry(
            f"{GMAIL_API_BASE}/{path.lstrip('/')}",
            method,
            headers={"Authorization": f"Bearer {self._access_token}"},
            params=params,
            json=json,
            retries=GMAIL_RETRIES,
            backoff=GMAIL_BACKOFF_SECONDS,
            client=self._http,
        )

    def _refresh(self) -> bool:
        """
        Refresh the access token once

        Side Effects:
            - Re-encrypts and saves the merged token on success
        """
        refresh_token = self._stored.refresh_token
        if not refresh_token:
            logger.info("Gmail 401 for %s and no refresh token stored", redact(self.user_id))
            return False

        refreshed = refresh_access_token(refresh_token, client=self._http)
        if not refreshed:
            return False

        merged = {**self._stored.token, **refreshed}
        self.tokens.update_token(self._stored.id, merged)
        self._stored = self._stored.model_copy(update={"token": merged})
        self._access_token = refreshed["access_token"]
        logger.info("Refreshed Gmail access token for %s", redact(self.user_id))
        return True

    def list_history(
        self, start_history_id: str, max_results: int, *, max_pages: int = GMAIL_HISTORY_MAX_PAGES
    ) -> HistoryDelta:
        """
        Messages added since start_history_id

        Reads up to max_pages pages. A non-OK page (e.g. 404
        for an expired cursor) stops paging and returns what was collected.
        """
        delta = HistoryDelta()
        seen: set[str] = set()
        page_token: str | None = None

        for _ in range(max_pages):
            params: dict[str, Any] = {
                "startHistoryId": start_history_id,
                "maxResults": max(GMAIL_HISTORY_MIN_PAGE_SIZE, max_results),
                "historyTypes": "messageAdded",
            }
            if page_token:
                params["pageToken"] = page_token

            response = self.request("GET", "history", params=params)
            if not response.is_success:
                counter("gmail.history.page_failed")
                logger.info("Gmail history page failed with status %d", response.status_code)
                break

            data = safe_json(response)
            if not isinstance(data, dict):
                break
            for record in data.get("history") or []:
                record_id = _as_int(record.get("id"))
                if record_id is not None and (
                    delta.max_history_id is None or record_id > delta.max_history_id
                ):
                    delta.max_history_id = record_id
                for added in record.get("messagesAdded") or []:
                    message_id = (added.get("message") or {}).get("id")
                    if message_id and message_id not in seen:
                        seen.add(message_id)
                        delta.message_ids.append(message_id)

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return delta

    def list_messages(self, query: str, max_results: int) -> list[str]:
        """
        Message ids matching a Gmail search query

        Raises:
            GmailError: GMAIL_LIST_FAILED on a non-OK response
        """
        response = self.request("GET", "messages", params={"q": query, "maxResults": max_results})
        if not response.is_success:
            raise GmailError(
                "GMAIL_LIST_FAILED",
                f"Gmail list failed: {response.status_code}",
                status=response.status_code,
            )
        data = safe_json(response)
        messages = data.get("messages") if isinstance(data, dict) else None
        return [m["id"] for m in messages or [] if m.get("id")]

    def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Full message payload, or None if Gmail returned non-OK."""
        response = self.request("GET", f"messages/{message_id}", params={"format": "full"})
        if not response.is_success:
            counter("gmail.get_message.failed")
            return None
        data = safe_json(response)
        return data if isinstance(data, dict) else None

    def send_message(self, raw: str, thread_id: str | None = None) -> dict[str, Any]:
        """
        Send an RFC 2822 message (base64url, unpadded)

        Raises:
            GmailError: GMAIL_SEND_FAILED on a non-OK response
        """
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id
        response = self.request("POST", "messages/send", json=body)
        data = safe_json(response)
        if not response.is_success or not isinstance(data, dict):
            raise GmailError(
                "GMAIL_SEND_FAILED",
                f"Gmail send failed: {response.status_code}",
                status=response.status_code,
            )
        return data
