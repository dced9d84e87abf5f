"""
Storage models for tokens, settings and fetched emails.

Timestamps are stored as ISO-8601 UTC strings with microseconds so that
lexicographic order in SQLite matches chronological order.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    """Return current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def load_json(value: str | None, default: Any = None) -> Any:
    """Decode a JSON column, returning default for NULL or malformed values."""
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


class StoredToken(BaseModel):
    """A decrypted OAuth token row."""

    id: str
    user_id: str
    provider: str
    token: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime

    @property
    def access_token(self) -> str | None:
        # Older rows were written with camelCase keys
        return self.token.get("access_token") or self.token.get("accessToken")

    @property
    def refresh_token(self) -> str | None:
        return self.token.get("refresh_token") or self.token.get("refreshToken")


class UserSettings(BaseModel):
    """Per-user configuration plus Gmail poll bookkeeping."""

    model_config = ConfigDict(frozen=False)

    user_id: str
    shop_domain: str | None = None
    gmail_label_query: str | None = None
    llm_provider: str | None = None
    llm_model: str | None = None
    llm_base_url: str | None = None
    encrypted_llm_api_key: str | None = None
    gmail_auto_pull_enabled: bool = False
    gmail_polling_interval_sec: int = 300
    last_poll_at: datetime | None = None
    last_poll_fetched: int | None = None
    last_poll_proposed: int | None = None
    last_poll_error: str | None = None
    gmail_last_history_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> UserSettings:
        return cls(
            user_id=row["user_id"],
            shop_domain=row.get("shop_domain"),
            gmail_label_query=row.get("gmail_label_query"),
            llm_provider=row.get("llm_provider"),
            llm_model=row.get("llm_model"),
            llm_base_url=row.get("llm_base_url"),
            encrypted_llm_api_key=row.get("encrypted_llm_api_key"),
            gmail_auto_pull_enabled=bool(row.get("gmail_auto_pull_enabled")),
            gmail_polling_interval_sec=row.get("gmail_polling_interval_sec") or 300,
            last_poll_at=parse_iso(row.get("last_poll_at")),
            last_poll_fetched=row.get("last_poll_fetched"),
            last_poll_proposed=row.get("last_poll_proposed"),
            last_poll_error=row.get("last_poll_error"),
            gmail_last_history_id=row.get("gmail_last_history_id"),
            created_at=parse_iso(row.get("created_at")),
            updated_at=parse_iso(row.get("updated_at")),
        )


class EmailRecord(BaseModel):
    """A Gmail message as persisted (headers and hashes only, no body)."""

    id: str
    user_id: str
    gmail_message_id: str
    thread_id: str | None = None
    history_id: str | None = None
    from_address: str | None = None
    to_address: str | None = None
    subject: str | None = None
    snippet: str | None = None
    body_hash: str | None = None
    labels: list[str] = Field(default_factory=list)
    summary: str | None = None
    received_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to dict for database storage."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "gmail_message_id": self.gmail_message_id,
            "thread_id": self.thread_id,
            "history_id": self.history_id,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "subject": self.subject,
            "snippet": self.snippet,
            "body_hash": self.body_hash,
            "labels": json.dumps(self.labels),
            "summary": self.summary,
            "received_at": to_iso(self.received_at),
            "created_at": to_iso(self.created_at),
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> EmailRecord:
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            gmail_message_id=row["gmail_message_id"],
            thread_id=row.get("thread_id"),
            history_id=row.get("history_id"),
            from_address=row.get("from_address"),
            to_address=row.get("to_address"),
            subject=row.get("subject"),
            snippet=row.get("snippet"),
            body_hash=row.get("body_hash"),
            labels=load_json(row.get("labels"), []),
            summary=row.get("summary"),
            received_at=parse_iso(row.get("received_at")),
            created_at=parse_iso(row.get("created_at")) or utc_now(),
        )


