"""
Gmail message parsing.

Turns a users.messages.get(format=full) payload into a ParsedMessage.
Side-effect free apart from telemetry counters; missing headers yield
None rather than errors because support mail is messy.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from supportq.observability.telemetry import counter
from supportq.utils.html import html_to_text

_TEXT_PLAIN = "text/plain"
_TEXT_HTML = "text/html"


class GmailParsingError(ValueError):
    """Raised when a Gmail payload cannot be decoded."""


@dataclass
class ParsedMessage:
    id: str
    thread_id: str | None
    history_id: str | None
    subject: str | None
    from_address: str | None
    to_address: str | None
    date_header: str | None
    received_at: datetime
    snippet: str
    body: str
    body_hash: str
    labels: list[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        """Text handed to the proposer: snippet, blank line, body."""
        return "\n\n".join(part for part in (self.snippet, self.body) if part)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "from": self.from_address,
            "to": self.to_address,
            "date": self.date_header,
            "snippet": self.snippet,
            "labels": self.labels,
        }


def header_lookup(headers: Iterable[dict[str, str]], name: str) -> str | None:
    name_lower = name.lower()
    for header in headers:
        if header.get("name", "").lower() == name_lower:
            return header.get("value")
    return None


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 (padding is often stripped)."""
    padding = "=" * (-len(data) % 4)
    try:
        decoded = base64.urlsafe_b64decode((data + padding).encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as exc:
        raise GmailParsingError("failed to decode message body") from exc
    return decoded.decode("utf-8", errors="replace")


def encode_base64url(raw: bytes) -> str:
    """URL-safe base64 without padding, as messages.send expects."""
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _find_part(payload: dict[str, Any], mime_type: str) -> str | None:
    """Depth-first search for the first part of mime_type that has inline data."""
    if payload.get("mimeType", "").lower().startswith(mime_type):
        data = (payload.get("body") or {}).get("data")
        if data:
            try:
                return decode_base64url(data)
            except GmailParsingError:
                counter("gmail.parse.undecodable_part")
    for part in payload.get("parts") or []:
        found = _find_part(part, mime_type)
        if found is not None:
            return found
    return None


def extract_body(payload: dict[str, Any]) -> str:
    """
    Plain-text body of a message payload.

    text/plain anywhere in the part tree wins; otherwise the first
    text/html part is converted to text. Returns "" when neither exists.
    """
    if not payload:
        return ""
    text = _find_part(payload, _TEXT_PLAIN)
    if text is not None:
        return text.strip()
    html = _find_part(payload, _TEXT_HTML)
    if html is not None:
        return html_to_text(html)
    return ""


def parse_received_at(date_header: str | None, now: datetime | None = None) -> datetime:
    """Date header as an aware UTC datetime; falls back to now when missing or malformed."""
    fallback = now or datetime.now(UTC)
    if not date_header:
        return fallback
    try:
        parsed = parsedate_to_datetime(date_header)
    except (TypeError, ValueError, IndexError):
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def parse_message(message: dict[str, Any]) -> ParsedMessage:
    """
    Convert a Gmail API message into ParsedMessage.

    Raises:
        GmailParsingError: If the message has no id
    """
    if not isinstance(message, dict) or not message.get("id"):
        raise GmailParsingError("message id missing")

    payload = message.get("payload") or {}
    headers = payload.get("headers") or []
    date_header = header_lookup(headers, "Date")
    body = extract_body(payload)
    history_id = message.get("historyId")

    counter("gmail.parsed.count")
    return ParsedMessage(
        id=str(message["id"]),
        thread_id=message.get("threadId"),
        history_id=str(history_id) if history_id is not None else None,
        subject=header_lookup(headers, "Subject"),
        from_address=header_lookup(headers, "From"),
        to_address=header_lookup(headers, "To"),
        date_header=date_header,
        received_at=parse_received_at(date_header),
        snippet=message.get("snippet") or "",
        body=body,
        body_hash=sha256_hex(body),
        labels=list(message.get("labelIds") or []),
    )
