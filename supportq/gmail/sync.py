"""
Gmail sync - pull new support email and turn it into proposals.

Delta sync reads the History API from the stored cursor; when that yields
nothing (no cursor, expired cursor, transport failure) a label query
lists recent messages instead. Every message is stored once per user and
every proposal once per (email, action, payload), so overlapping or
repeated polls are harmless.

poll() wraps poll_for_user() with a minimum interval between polls and a
per-user in-process lock.
"""

from __future__ import annotations

import math
import threading
import uuid
from collections.abc import Callable
from datetime import datetime
from email.message import EmailMessage
from typing import Any

import httpx

from supportq.agent.bridge import propose_for_user
from supportq.config import POLL_DEFAULT_MAX_RESULTS, POLL_MAX_RESULTS_CAP, POLL_MIN_INTERVAL_SECONDS
from supportq.contracts.envelope import Result
from supportq.gmail.client import GmailClient, GmailError
from supportq.gmail.parser import GmailParsingError, ParsedMessage, encode_base64url, parse_message
from supportq.infrastructure import settings as env
from supportq.observability.logging import get_logger
from supportq.observability.telemetry import counter, log_event, time_block
from supportq.proposals.repository import ProposalRepository
from supportq.storage.email_repository import EmailRepository
from supportq.storage.models import EmailRecord, utc_now
from supportq.storage.settings_repository import SettingsRepository
from supportq.utils.redaction import redact, redact_email_address

logger = get_logger(__name__)


def _as_int(value: str | int | None) -> int | None:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def resolve_label_query(user_id: str, settings_repo: SettingsRepository | None = None) -> str:
    user_settings = (settings_repo or SettingsRepository()).get(user_id)
    return (user_settings.gmail_label_query if user_settings else None) or env.GMAIL_LABEL_QUERY


class GmailSync:
    """
    One poll for one user.

    Args:
        http_client: Injected into GmailClient (tests pass a MockTransport client)
        proposer: content -> (actions, model_meta); defaults to the user's LLM settings
    """

    def __init__(
        self,
        user_id: str,
        http_client: httpx.Client | None = None,
        proposer: Callable[[str], Any] | None = None,
    ):
        self.user_id = user_id
        self.settings_repo = SettingsRepository()
        self.http_client = http_client
        self.proposer = proposer or (lambda content: propose_for_user(user_id, content))

    def run(self, max_results: int = POLL_DEFAULT_MAX_RESULTS) -> Result:
        user_settings = self.settings_repo.get(self.user_id)
        label_query = (
            user_settings.gmail_label_query if user_settings else None
        ) or env.GMAIL_LABEL_QUERY

        if not user_settings or not user_settings.gmail_auto_pull_enabled:
            return Result.success(
                data={"disabled": True, "fetched": 0, "proposed": 0, "label_query": label_query}
            )

        try:
            client = GmailClient(self.user_id, http_client=self.http_client)
        except GmailError as e:
            return Result.failure(e.code, e.message)

        previous_cursor = user_settings.gmail_last_history_id
        message_ids: list[str] = []
        delta_cursor: int | None = None

        if previous_cursor:
            try:
                delta = client.list_history(previous_cursor, max_results)
            except (httpx.TransportError, GmailError) as e:
                counter("gmail.sync.history_failed")
                logger.warning("History sync failed for %s: %s", redact(self.user_id), e)
            else:
                message_ids = delta.message_ids
                if message_ids:
                    delta_cursor = delta.max_history_id

        if not message_ids:
            counter("gmail.sync.list_fallback")
            try:
                message_ids = client.list_messages(label_query, max_results)
            except GmailError as e:
                return self._fail(e.code, e.message)
            except httpx.TransportError as e:
                return self._fail("GMAIL_LIST_FAILED", f"Gmail list failed: {type(e).__name__}")

        fetched = 0
        proposed = 0
        max_message_history: int | None = None

        for message_id in message_ids:
            if EmailRepository.exists(self.user_id, message_id):
                counter("gmail.sync.duplicate")
                continue

            try:
                raw = client.get_message(message_id)
            except (httpx.TransportError, GmailError) as e:
                logger.warning("Fetching message failed: %s", type(e).__name__)
                continue
            if raw is None:
                continue

            try:
                parsed = parse_message(raw)
            except GmailParsingError as e:
                logger.warning("Skipping unparseable message: %s", e)
                continue

            message_history = _as_int(parsed.history_id)
            if message_history is not None and (
                max_message_history is None or message_history > max_message_history
            ):
                max_message_history = message_history

            email = self._store(parsed)
            if email is None:
                continue
            fetched += 1
            proposed += self._propose(email, parsed)

        new_cursor = max_message_history or delta_cursor
        self.settings_repo.record_poll(
            self.user_id,
            polled_at=utc_now(),
            fetched=fetched,
            proposed=proposed,
            error=None,
            history_id=str(new_cursor) if new_cursor is not None else None,
        )
        log_event(
            "gmail.sync.complete",
            user=redact(self.user_id),
            fetched=fetched,
            proposed=proposed,
            candidates=len(message_ids),
        )
        return Result.success(
            data={"disabled": False, "fetched": fetched, "proposed": proposed, "label_query": label_query}
        )

    def _fail(self, code: str, message: str) -> Result:
        self.settings_repo.record_poll(
            self.user_id, polled_at=utc_now(), fetched=0, proposed=0, error=message
        )
        counter("gmail.sync.failed")
        return Result.failure(code, message)

    def _store(self, parsed: ParsedMessage) -> EmailRecord | None:
        """Insert the message; None if a concurrent poll stored it first."""
        record = EmailRecord(
            id=str(uuid.uuid4()),
            user_id=self.user_id,
            gmail_message_id=parsed.id,
            thread_id=parsed.thread_id,
            history_id=parsed.history_id,
            from_address=parsed.from_address,
            to_address=parsed.to_address,
            subject=parsed.subject,
            snippet=parsed.snippet,
            body_hash=parsed.body_hash,
            labels=parsed.labels,
            received_at=parsed.received_at,
        )
        stored = EmailRepository.insert_if_absent(record)
        if stored.id != record.id:
            return None
        logger.debug(
            "Stored message %s from %s", parsed.id, redact_email_address(parsed.from_address)
        )
        return stored

    def _propose(self, email: EmailRecord, parsed: ParsedMessage) -> int:
        """Generate and store proposals; returns the number inserted."""
        try:
            batch = self.proposer(parsed.content)
            inserted = 0
            for action in batch.actions:
                if ProposalRepository.insert_if_absent(
                    email_id=email.id,
                    user_id=self.user_id,
                    action_type=action.action_type,
                    payload=action.payload,
                    summary=action.summary,
                    model_meta=batch.model_meta,
                ):
                    inserted += 1
            return inserted
        except Exception:
            # One bad email must not stop the poll
            counter("gmail.sync.propose_failed")
            logger.exception("Proposal generation failed for message %s", parsed.id)
            return 0


def poll_for_user(
    user_id: str,
    max_results: int = POLL_DEFAULT_MAX_RESULTS,
    http_client: httpx.Client | None = None,
) -> Result:
    """
    Run one Gmail sync for the user (no throttle or lock).

    Returns:
        Result with data {disabled, fetched, proposed, label_query}, or a
        failure with GMAIL_NO_TOKEN, GMAIL_NO_ACCESS_TOKEN,
        GMAIL_LIST_FAILED or GMAIL_UNAVAILABLE

    Side Effects:
        - Gmail API calls (and token refresh)
        - Inserts emails and proposals
        - Updates poll bookkeeping in user_settings
    """
    max_results = max(1, min(max_results, POLL_MAX_RESULTS_CAP))
    with time_block("gmail.sync.duration"):
        return GmailSync(user_id, http_client=http_client).run(max_results)


class PollGuard:
    """Throttle plus a per-user lock around poll_for_user."""

    def __init__(self, min_interval_seconds: float = POLL_MIN_INTERVAL_SECONDS):
        self.min_interval_seconds = min_interval_seconds
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def throttle_wait(self, last_poll_at: datetime | None, now: datetime | None = None) -> float:
        """Seconds left before the next poll is allowed (0 when allowed)."""
        if last_poll_at is None:
            return 0.0
        elapsed = ((now or utc_now()) - last_poll_at).total_seconds()
        return max(0.0, self.min_interval_seconds - elapsed)

    def acquire(self, user_id: str) -> bool:
        with self._lock:
            if user_id in self._active:
                return False
            self._active.add(user_id)
            return True

    def release(self, user_id: str) -> None:
        with self._lock:
            self._active.discard(user_id)

    def is_active(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._active


POLL_GUARD = PollGuard()


def poll(
    user_id: str,
    max_results: int = POLL_DEFAULT_MAX_RESULTS,
    *,
    throttle: bool = True,
    guard: PollGuard | None = None,
    http_client: httpx.Client | None = None,
) -> Result:
    """
    Guarded poll for interactive and scheduled callers.

    Returns:
        POLL_THROTTLED if the last poll was under the minimum interval ago,
        POLL_CONCURRENT if a poll for this user is running, else the
        poll_for_user result
    """
    guard = guard or POLL_GUARD
    if throttle:
        user_settings = SettingsRepository().get(user_id)
        wait = guard.throttle_wait(user_settings.last_poll_at if user_settings else None)
        if wait > 0:
            counter("gmail.poll.throttled")
            return Result.failure(
                "POLL_THROTTLED", f"Please wait {math.ceil(wait)}s before polling again."
            )

    if not guard.acquire(user_id):
        counter("gmail.poll.concurrent")
        return Result.failure("POLL_CONCURRENT", "A poll is already running for this user.")
    try:
        return poll_for_user(user_id, max_results, http_client=http_client)
    finally:
        guard.release(user_id)


def load_emails(
    user_id: str,
    label_query: str | None = None,
    max_results: int = POLL_DEFAULT_MAX_RESULTS,
    http_client: httpx.Client | None = None,
) -> Result:
    """
    List and fetch messages for display; nothing is stored.

    Returns:
        Result with data {emails: [summary + body], label_query}
    """
    max_results = max(1, min(max_results, POLL_MAX_RESULTS_CAP))
    label_query = label_query or resolve_label_query(user_id)
    try:
        client = GmailClient(user_id, http_client=http_client)
        message_ids = client.list_messages(label_query, max_results)
    except GmailError as e:
        return Result.failure(e.code, e.message)
    except httpx.TransportError as e:
        return Result.failure("GMAIL_LIST_FAILED", f"Gmail list failed: {type(e).__name__}")

    emails: list[dict[str, Any]] = []
    for message_id in message_ids:
        try:
            raw = client.get_message(message_id)
        except (httpx.TransportError, GmailError):
            continue
        if raw is None:
            continue
        try:
            parsed = parse_message(raw)
        except GmailParsingError:
            continue
        emails.append({**parsed.summary(), "body": parsed.body})
    return Result.success(data={"emails": emails, "label_query": label_query})


def build_reply(to: str, subject: str, body: str) -> str:
    """RFC 2822 text/plain UTF-8 message, base64url without padding."""
    message = EmailMessage()
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body, charset="utf-8")
    return encode_base64url(message.as_bytes())


def send_reply(
    user_id: str,
    thread_id: str | None,
    to: str,
    subject: str,
    body: str,
    http_client: httpx.Client | None = None,
) -> Result:
    """
    Send a reply in the thread.

    Returns:
        Result with data {id, thread_id}, or GMAIL_SEND_FAILED / token codes
    """
    try:
        client = GmailClient(user_id, http_client=http_client)
        sent = client.send_message(build_reply(to, subject, body), thread_id)
    except GmailError as e:
        return Result.failure(e.code, e.message)
    except httpx.TransportError as e:
        return Result.failure("GMAIL_SEND_FAILED", f"Gmail send failed: {type(e).__name__}")

    counter("gmail.reply.sent")
    log_event(
        "gmail.reply.sent", user=redact(user_id), to=redact_email_address(to), thread_id=thread_id
    )
    return Result.success(data={"id": sent.get("id"), "thread_id": sent.get("threadId")})
